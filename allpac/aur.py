"""
AUR (build-from-source) backend.

Metadata comes from the AUR RPC interface; installation clones the
package's git repository into an isolated working directory under the
build cache and runs makepkg. Installed packages end up in pacman's local
database, so removal and installed-version queries go through pacman.

Cache layout: <cache>/<package>/<token>/ where token is unique per build,
so concurrent builds (even of the same package) never share a directory.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import threading
import time
import urllib.parse
import urllib.request
from pathlib import Path
from typing import Any, Sequence

from .backends import BackendAdapter
from .errors import BackendError, InstallError, NotFoundError
from .package_list import Source

logger = logging.getLogger(__name__)

USER_AGENT = "allpac/1.0"
RPC_VERSION = 5


def http_get(url: str, timeout: int | None = 10) -> bytes:
    """Perform HTTP GET request.

    Args:
        url: URL to fetch
        timeout: Timeout in seconds

    Returns:
        Response body as bytes

    Raises:
        BackendError: If request fails
    """
    try:
        req = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
        with urllib.request.urlopen(req, timeout=timeout) as response:
            return response.read()
    except Exception as e:
        raise BackendError(f"Failed to fetch {url}: {e}", source="aur") from e


_ASSIGNMENT = re.compile(r"^\s*([A-Za-z_]\w*)=(.*)$")
_REFERENCE = re.compile(r"\$\{(\w+)(?://([^/}]*)/([^}]*))?\}|\$([A-Za-z_]\w*)")


def _expand(value: str, variables: dict[str, str]) -> str:
    def substitute(match: re.Match) -> str:
        name = match.group(1) or match.group(4)
        if name not in variables:
            return match.group(0)
        expanded = variables[name]
        if match.group(2):
            expanded = expanded.replace(match.group(2), match.group(3))
        return expanded

    return _REFERENCE.sub(substitute, value)


def parse_pkgbuild_version(pkgbuild_text: str) -> str:
    """
    Derive '[epoch:]pkgver-pkgrel' from PKGBUILD assignments.

    The result matches the Version field the AUR RPC reports. References to
    earlier assignments ($var, ${var}, ${var//pattern/replacement}) are
    expanded; anything else is left to makepkg.

    Raises:
        ValueError: If pkgver is missing or refers to an unknown variable
    """
    variables: dict[str, str] = {}
    for line in pkgbuild_text.splitlines():
        match = _ASSIGNMENT.match(line)
        if not match or match.group(1) in variables or match.group(2).startswith("("):
            continue
        value = re.sub(r"\s+#.*$", "", match.group(2)).strip().strip("'\"")
        variables[match.group(1)] = _expand(value, variables)

    values = {key: variables[key] for key in ("pkgver", "pkgrel", "epoch") if key in variables}
    if not values.get("pkgver"):
        raise ValueError("pkgver not found in PKGBUILD")
    if "$" in values["pkgver"]:
        raise ValueError(f"cannot expand pkgver={values['pkgver']}")

    version = values["pkgver"]
    if values.get("pkgrel"):
        version += f"-{values['pkgrel']}"
    if values.get("epoch") and values["epoch"] != "0":
        version = f"{values['epoch']}:{version}"
    return version


def build_token() -> str:
    """Unique working-directory token for one build."""
    return f"{time.time_ns()}-{os.getpid()}-{threading.get_ident()}"


class AurAdapter(BackendAdapter):
    """AUR packages: RPC lookups, git clone and makepkg builds."""

    source = Source.AUR
    binary = "makepkg"

    def __init__(
        self,
        cache_dir: Path | str,
        base_url: str = "https://aur.archlinux.org",
        timeout: int | None = None,
        use_sudo: bool = True,
        verbose: bool = False,
    ):
        super().__init__(timeout=timeout, use_sudo=use_sudo, verbose=verbose)
        self.cache_dir = Path(cache_dir)
        self.base_url = base_url.rstrip("/")

    def _rpc(self, query: str) -> dict[str, Any]:
        url = f"{self.base_url}/rpc/?v={RPC_VERSION}&{query}"
        logger.debug(f"AUR RPC request: {url}")
        try:
            data = json.loads(http_get(url, timeout=self.timeout))
        except json.JSONDecodeError as e:
            raise BackendError(f"error decoding AUR response: {e}", source="aur") from e
        if not isinstance(data, dict):
            raise BackendError("error decoding AUR response: expected an object", source="aur")
        if data.get("type") == "error":
            raise BackendError(f"AUR error: {data.get('error', 'unknown error')}", source="aur")
        return data

    def repo_url(self, name: str) -> str:
        return f"{self.base_url}/{name}.git"

    def search(self, name: str) -> list[str]:
        data = self._rpc(f"type=search&arg={urllib.parse.quote(name)}")
        results = []
        for entry in data.get("results", []):
            line = f"{entry.get('Name', '')} {entry.get('Version', '')}".strip()
            if entry.get("Description"):
                line += f" - {entry['Description']}"
            results.append(line)
        return results

    def latest_version(self, name: str) -> str:
        data = self._rpc(f"type=info&arg[]={urllib.parse.quote(name)}")
        for entry in data.get("results", []):
            if entry.get("Name") == name and entry.get("Version"):
                return entry["Version"]
        raise NotFoundError(f"package {name} not found in AUR", package=name, source="aur")

    def installed_version(self, name: str) -> str:
        result = self._run("pacman", "-Q", name, package=name)
        if not result.success:
            raise NotFoundError(f"package {name} is not installed", package=name, source="aur")
        parts = result.stdout.split()
        if len(parts) < 2:
            raise BackendError(f"Unexpected 'pacman -Q' output: {result.stdout.strip()}", package=name, source="aur")
        return parts[1]

    def package_cache_dir(self, name: str) -> Path:
        """
        Build cache directory of one package.

        Raises:
            BackendError: If name is empty, '.', '..' or contains a path separator
        """
        separators = {"/", os.sep, os.altsep} - {None}
        if name in ("", ".", "..") or any(sep in name for sep in separators):
            raise BackendError(f"invalid AUR package name: {name!r}", package=name, source="aur")
        return self.cache_dir / name

    def install(self, name: str) -> str:
        """
        Clone and build a package in a fresh working directory.

        Returns:
            Installed version as pacman reports it, falling back to the PKGBUILD
            version when pacman cannot be queried

        Raises:
            InstallError: If the clone, build or version extraction fails
        """
        workdir = self.package_cache_dir(name) / build_token()
        try:
            workdir.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InstallError(f"error creating build directory: {e}", package=name, source="aur") from e

        logger.info(f"Cloning {self.repo_url(name)} into {workdir}")
        try:
            clone = self._run("git", "clone", "--depth", "1", self.repo_url(name), str(workdir), package=name)
            if not clone.success:
                raise InstallError(f"error cloning AUR repo: {clone.error_summary()}", package=name, source="aur")

            pkgbuild = workdir / "PKGBUILD"
            if not pkgbuild.exists():
                raise InstallError(
                    f"package {name} not found in AUR (empty repository)", package=name, source="aur"
                )

            logger.info(f"Building {name} with makepkg")
            build = self._run("makepkg", "-si", "--noconfirm", package=name, cwd=str(workdir))
            if not build.success:
                raise InstallError(
                    f"error building package with makepkg: {build.error_summary()}", package=name, source="aur"
                )
        except InstallError:
            raise
        except BackendError as e:
            raise InstallError(e.message, package=name, source="aur", remediation=e.remediation) from e

        try:
            version = self.installed_version(name)
        except (NotFoundError, BackendError) as e:
            logger.warning(f"Could not query installed version of {name}, reading PKGBUILD: {e.message}")
            try:
                version = parse_pkgbuild_version(pkgbuild.read_text(encoding="utf-8", errors="replace"))
            except (OSError, ValueError) as e:
                raise InstallError(f"error extracting version from PKGBUILD: {e}", package=name, source="aur") from e

        logger.info(f"Built and installed {name} {version} from AUR")
        return version

    def _uninstall_command(self, name):
        return ("pacman", "-Rns", "--noconfirm", name), True

    def batch_update(self, names: Sequence[str]) -> None:
        """Rebuild packages one after another; AUR has no multi-package update."""
        failed: list[str] = []
        for name in names:
            try:
                self.install(name)
            except BackendError as e:
                logger.error(f"Error updating AUR package {name}: {e.message}")
                failed.append(name)
        if failed:
            raise BackendError(f"Error updating AUR packages: {', '.join(failed)}", source="aur")

    def discard_cache(self, name: str) -> None:
        """Remove every cached clone and build of one package."""
        target = self.package_cache_dir(name)
        if target.exists():
            logger.info(f"Discarding cached builds of {name}: {target}")
            shutil.rmtree(target)

    def is_available(self) -> bool:
        return shutil.which("git") is not None and shutil.which("makepkg") is not None
