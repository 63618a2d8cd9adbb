"""
Backend adapters for the native package tools.

One adapter per backend (pacman, snap, flatpak; the AUR adapter lives in
aur.py), all honoring the same contract:

- search(name) -> raw result lines (empty list is not an error)
- latest_version(name) -> latest version the backend offers
- installed_version(name) -> version currently installed on the host
- install(name) -> installed version
- uninstall(name)
- batch_update(names)

Every native command runs through run_command() with the configured timeout.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Sequence

from .common import vlog
from .config import Config
from .errors import BackendError, InstallError, NotFoundError, UninstallError
from .package_list import Source

logger = logging.getLogger(__name__)


# Cache for backend availability checks
_AVAILABILITY_CACHE: dict[str, bool] = {}
_AVAILABILITY_LOCK = threading.Lock()


@dataclass(frozen=True)
class CommandResult:
    """
    Result of running a native backend command.

    Attributes:
        command: Command that was executed (including sudo, if any)
        exit_code: Process exit code
        stdout: Standard output
        stderr: Standard error
        duration_seconds: Time taken
    """
    command: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    duration_seconds: float

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    def error_summary(self, limit: int = 300) -> str:
        """Short description of a failed command for error messages."""
        detail = self.output.strip()
        message = f"'{' '.join(self.command)}' failed with exit code {self.exit_code}"
        if detail:
            message += f": {detail[:limit]}"
        return message


def run_command(
    command: Sequence[str],
    timeout: int | None = None,
    source: str | None = None,
    package: str | None = None,
    cwd: str | None = None,
    verbose: bool = False,
) -> CommandResult:
    """
    Run a backend command and capture its output.

    A non-zero exit code is returned, not raised; callers decide what it means.

    Args:
        command: Command and arguments
        timeout: Timeout in seconds (None waits indefinitely)
        source: Backend the command belongs to (for error reporting)
        package: Package the command concerns (for error reporting)
        cwd: Working directory for the command
        verbose: Enable verbose logging

    Returns:
        CommandResult

    Raises:
        BackendError: If the command is missing or times out
    """
    command = tuple(command)
    vlog(f"Executing: {' '.join(command)}", verbose)
    start_time = time.time()

    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            cwd=cwd,
            check=False,
        )
    except subprocess.TimeoutExpired:
        raise BackendError(
            f"'{' '.join(command)}' timed out after {timeout}s",
            package=package,
            source=source,
            remediation="Raise preferences.timeout_seconds in the allpac config",
        ) from None
    except FileNotFoundError:
        raise BackendError(
            f"Command not found: {command[0]}",
            package=package,
            source=source,
            remediation=f"Install {command[0]} or disable the backend in the allpac config",
        ) from None
    except OSError as e:
        raise BackendError(f"Could not run '{' '.join(command)}': {e}", package=package, source=source) from e

    duration = time.time() - start_time
    logger.debug(f"'{' '.join(command)}' exited with {result.returncode} after {duration:.1f}s")
    return CommandResult(
        command=command,
        exit_code=result.returncode,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
        duration_seconds=duration,
    )


def parse_field(output: str, field_name: str) -> str | None:
    """
    Extract the first value of a 'Field: value' or 'Field    : value' line.

    Args:
        output: Command output
        field_name: Field label (case-sensitive, without colon)

    Returns:
        First whitespace-delimited token of the value, or None
    """
    pattern = re.compile(rf"^\s*{re.escape(field_name)}\s*:\s*(\S+)", re.MULTILINE)
    match = pattern.search(output)
    return match.group(1) if match else None


class BackendAdapter:
    """
    Base class for backend adapters.

    Subclasses declare their commands; the install/uninstall/update flows
    and error translation are shared.
    """

    source: Source
    binary: str = ""

    def __init__(self, timeout: int | None = None, use_sudo: bool = True, verbose: bool = False):
        self.timeout = timeout
        self.use_sudo = use_sudo
        self.verbose = verbose

    def __repr__(self) -> str:
        return f"{type(self).__name__}(timeout={self.timeout}, use_sudo={self.use_sudo})"

    @property
    def display_name(self) -> str:
        return self.source.display_name

    def is_available(self) -> bool:
        """Check whether the backend's native tool is on PATH (cached)."""
        with _AVAILABILITY_LOCK:
            if self.binary in _AVAILABILITY_CACHE:
                return _AVAILABILITY_CACHE[self.binary]
        available = shutil.which(self.binary) is not None
        with _AVAILABILITY_LOCK:
            _AVAILABILITY_CACHE[self.binary] = available
        return available

    def _run(
        self,
        *args: str,
        privileged: bool = False,
        package: str | None = None,
        cwd: str | None = None,
    ) -> CommandResult:
        command = list(args)
        if privileged and self.use_sudo:
            command = ["sudo"] + command
        return run_command(
            command,
            timeout=self.timeout,
            source=self.source.value,
            package=package,
            cwd=cwd,
            verbose=self.verbose,
        )

    # Commands (overridden per backend)

    def _install_command(self, name: str) -> tuple[tuple[str, ...], bool]:
        raise NotImplementedError

    def _uninstall_command(self, name: str) -> tuple[tuple[str, ...], bool]:
        raise NotImplementedError

    def _update_command(self, names: Sequence[str]) -> tuple[tuple[str, ...], bool]:
        raise NotImplementedError

    # Contract

    def search(self, name: str) -> list[str]:
        raise NotImplementedError

    def latest_version(self, name: str) -> str:
        raise NotImplementedError

    def installed_version(self, name: str) -> str:
        raise NotImplementedError

    def install(self, name: str) -> str:
        """
        Install a package and return the version now installed.

        Raises:
            InstallError: If the backend fails to install or report the package
        """
        command, privileged = self._install_command(name)
        logger.info(f"Installing {name} with {self.display_name}")
        try:
            result = self._run(*command, privileged=privileged, package=name)
        except BackendError as e:
            raise InstallError(e.message, package=name, source=self.source.value, remediation=e.remediation) from e
        if not result.success:
            raise InstallError(
                f"Error installing package with {self.display_name}: {result.error_summary()}",
                package=name,
                source=self.source.value,
            )
        try:
            return self.installed_version(name)
        except (BackendError, NotFoundError) as e:
            raise InstallError(
                f"{name} installed with {self.display_name} but its version could not be read: {e.message}",
                package=name,
                source=self.source.value,
            ) from e

    def uninstall(self, name: str) -> None:
        """
        Remove a package.

        Raises:
            UninstallError: If the backend fails to remove the package
        """
        command, privileged = self._uninstall_command(name)
        logger.info(f"Uninstalling {name} with {self.display_name}")
        try:
            result = self._run(*command, privileged=privileged, package=name)
        except BackendError as e:
            raise UninstallError(e.message, package=name, source=self.source.value, remediation=e.remediation) from e
        if not result.success:
            raise UninstallError(
                f"Error uninstalling {self.display_name} package: {result.error_summary()}",
                package=name,
                source=self.source.value,
            )

    def batch_update(self, names: Sequence[str]) -> None:
        """
        Update several packages with one native invocation.

        Raises:
            BackendError: If the update command fails
        """
        if not names:
            return
        command, privileged = self._update_command(names)
        logger.info(f"Updating {self.display_name} packages: {', '.join(names)}")
        result = self._run(*command, privileged=privileged)
        if not result.success:
            raise BackendError(
                f"Error updating {self.display_name} packages: {result.error_summary()}",
                source=self.source.value,
            )


def parse_pacman_search(output: str) -> list[str]:
    """
    Parse 'pacman -Ss' output into '<name> <version> - <description>' lines.

    pacman prints 'repo/name version [groups] [installed]' followed by an
    indented description line.
    """
    results: list[str] = []
    lines = output.splitlines()
    for index, line in enumerate(lines):
        if not line.strip() or line[0].isspace():
            continue
        parts = line.split()
        name = parts[0].split("/", 1)[-1]
        version = parts[1] if len(parts) > 1 else ""
        description = ""
        if index + 1 < len(lines) and lines[index + 1][:1].isspace():
            description = lines[index + 1].strip()
        entry = f"{name} {version} - {description}".rstrip(" -")
        if "[installed" in line:
            entry += " (Installed)"
        results.append(entry)
    return results


class PacmanAdapter(BackendAdapter):
    """Native repository packages via pacman."""

    source = Source.PACMAN
    binary = "pacman"

    def _install_command(self, name):
        return ("pacman", "-S", "--noconfirm", name), True

    def _uninstall_command(self, name):
        return ("pacman", "-Rns", "--noconfirm", name), True

    def _update_command(self, names):
        return ("pacman", "-S", "--noconfirm", *names), True

    def search(self, name: str) -> list[str]:
        result = self._run("pacman", "-Ss", name, package=name)
        if not result.success:
            # pacman exits 1 with no output when nothing matches
            if not result.output.strip():
                return []
            raise BackendError(f"Error searching Pacman: {result.error_summary()}", package=name, source="pacman")
        return parse_pacman_search(result.stdout)

    def latest_version(self, name: str) -> str:
        result = self._run("pacman", "-Si", name, package=name)
        version = parse_field(result.stdout, "Version") if result.success else None
        if version:
            return version
        if not result.success and "was not found" in result.output:
            raise NotFoundError(f"package {name} not found in Pacman", package=name, source="pacman")
        if not result.success:
            raise BackendError(f"Error querying Pacman: {result.error_summary()}", package=name, source="pacman")
        raise NotFoundError(f"version not found for Pacman package: {name}", package=name, source="pacman")

    def installed_version(self, name: str) -> str:
        result = self._run("pacman", "-Q", name, package=name)
        if not result.success:
            raise NotFoundError(f"package {name} is not installed", package=name, source="pacman")
        parts = result.stdout.split()
        if len(parts) < 2:
            raise BackendError(f"Unexpected 'pacman -Q' output: {result.stdout.strip()}", package=name, source="pacman")
        return parts[1]


def parse_snap_channel_version(output: str) -> str | None:
    """
    Find the version published on the channel the snap tracks.

    Falls back to latest/stable when the snap tracks nothing. A '↑' entry
    means the channel carries the same revision as the channel above it.
    """
    tracking = parse_field(output, "tracking") or "latest/stable"
    channels: list[tuple[str, str]] = []
    in_channels = False
    for line in output.splitlines():
        if line.startswith("channels:"):
            in_channels = True
            continue
        if in_channels:
            if not line.startswith(" "):
                break
            match = re.match(r"^\s+([^\s:]+):\s*(\S+)", line)
            if match:
                channels.append((match.group(1), match.group(2)))

    previous = None
    for channel, value in channels:
        if value == "↑":
            value = previous
        if channel == tracking:
            return value if value not in (None, "–", "--") else None
        previous = value
    return None


class SnapAdapter(BackendAdapter):
    """Snap store packages via snap."""

    source = Source.SNAP
    binary = "snap"

    def _install_command(self, name):
        return ("snap", "install", name), True

    def _uninstall_command(self, name):
        return ("snap", "remove", name), True

    def _update_command(self, names):
        return ("snap", "refresh", *names), True

    def search(self, name: str) -> list[str]:
        result = self._run("snap", "find", name, package=name)
        if not result.success:
            if "No matching snaps" in result.output:
                return []
            raise BackendError(f"Error searching Snap: {result.error_summary()}", package=name, source="snap")
        rows = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if rows and rows[0].startswith("Name"):
            rows = rows[1:]
        return rows

    def _info(self, name: str) -> str:
        result = self._run("snap", "info", name, package=name)
        if not result.success:
            if "not found" in result.output:
                raise NotFoundError(f"package {name} not found in Snap", package=name, source="snap")
            raise BackendError(f"Error getting Snap package info: {result.error_summary()}", package=name, source="snap")
        return result.stdout

    def latest_version(self, name: str) -> str:
        version = parse_snap_channel_version(self._info(name))
        if not version:
            raise NotFoundError(f"no published version found for snap package: {name}", package=name, source="snap")
        return version

    def installed_version(self, name: str) -> str:
        version = parse_field(self._info(name), "installed")
        if not version:
            raise NotFoundError(f"version not found for snap package: {name}", package=name, source="snap")
        return version


def parse_flatpak_search(output: str) -> list[str]:
    """
    Parse 'flatpak search --columns=application,version,description' output.

    Columns are tab-separated when stdout is not a terminal; runs of two or
    more spaces are accepted as well.
    """
    results: list[str] = []
    for line in output.splitlines():
        if not line.strip() or line.startswith("No matches"):
            continue
        if "\t" in line:
            parts = [p.strip() for p in line.split("\t")]
        else:
            parts = [p.strip() for p in re.split(r"\s{2,}", line.strip())]
        if parts[0] in ("Application ID", "Application"):
            continue
        app = parts[0]
        version = parts[1] if len(parts) > 1 else ""
        description = parts[2] if len(parts) > 2 else ""
        head = f"{app} {version}".strip()
        results.append(f"{head} - {description}" if description else head)
    return results


def parse_flatpak_info_version(output: str) -> str | None:
    """Version of a flatpak info listing; the commit when the app has no Version."""
    return parse_field(output, "Version") or parse_field(output, "Commit")


class FlatpakAdapter(BackendAdapter):
    """Flatpak applications via flatpak."""

    source = Source.FLATPAK
    binary = "flatpak"

    def _install_command(self, name):
        return ("flatpak", "install", "-y", name), False

    def _uninstall_command(self, name):
        return ("flatpak", "uninstall", "-y", name), False

    def _update_command(self, names):
        return ("flatpak", "update", "-y", *names), False

    def search(self, name: str) -> list[str]:
        result = self._run("flatpak", "search", "--columns=application,version,description", name, package=name)
        if not result.success:
            if "No matches found" in result.output:
                return []
            raise BackendError(f"Error searching Flatpak: {result.error_summary()}", package=name, source="flatpak")
        return parse_flatpak_search(result.stdout)

    def installed_version(self, name: str) -> str:
        result = self._run("flatpak", "info", name, package=name)
        if not result.success:
            raise NotFoundError(f"flatpak {name} is not installed", package=name, source="flatpak")
        version = parse_flatpak_info_version(result.stdout)
        if not version:
            raise NotFoundError(f"version not found for flatpak package: {name}", package=name, source="flatpak")
        return version

    def latest_version(self, name: str) -> str:
        origin = self._run("flatpak", "info", "--show-origin", name, package=name)
        if not origin.success or not origin.stdout.strip():
            raise NotFoundError(f"flatpak {name} is not installed", package=name, source="flatpak")
        remote = origin.stdout.strip().splitlines()[0]
        result = self._run("flatpak", "remote-info", remote, name, package=name)
        if not result.success:
            if "Nothing matches" in result.output or "not found" in result.output:
                raise NotFoundError(f"package {name} not found in remote {remote}", package=name, source="flatpak")
            raise BackendError(f"Error getting Flatpak remote info: {result.error_summary()}", package=name, source="flatpak")
        version = parse_flatpak_info_version(result.stdout)
        if not version:
            raise NotFoundError(f"version not found for flatpak package: {name}", package=name, source="flatpak")
        return version


def build_adapters(config: Config, verbose: bool = False) -> dict[Source, BackendAdapter]:
    """
    Construct one adapter per enabled backend.

    Args:
        config: Configuration (timeouts, sudo, AUR location, enabled backends)
        verbose: Enable verbose logging

    Returns:
        Adapters keyed by source, in Source declaration order
    """
    from .aur import AurAdapter

    prefs = config.preferences
    kwargs = {"timeout": prefs.timeout_seconds, "use_sudo": prefs.use_sudo, "verbose": verbose}
    factories = {
        Source.PACMAN: lambda: PacmanAdapter(**kwargs),
        Source.SNAP: lambda: SnapAdapter(**kwargs),
        Source.FLATPAK: lambda: FlatpakAdapter(**kwargs),
        Source.AUR: lambda: AurAdapter(cache_dir=config.cache_path, base_url=config.aur_url, **kwargs),
    }
    return {
        source: factory()
        for source, factory in factories.items()
        if source.value in config.enabled_backends
    }


def clear_availability_cache() -> None:
    """Clear the backend availability cache."""
    with _AVAILABILITY_LOCK:
        _AVAILABILITY_CACHE.clear()
