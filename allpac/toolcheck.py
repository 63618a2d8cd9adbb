"""
Prerequisite checks for the native tools each backend drives.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from typing import Iterable

from .common import vlog
from .package_list import Source


# Binaries each backend needs on PATH
BACKEND_BINARIES: dict[Source, list[str]] = {
    Source.PACMAN: ["pacman"],
    Source.AUR: ["git", "makepkg"],
    Source.SNAP: ["snap"],
    Source.FLATPAK: ["flatpak"],
}

# How to obtain a missing binary on Arch Linux
REMEDIATIONS: dict[str, str] = {
    "pacman": "allpac only runs on Arch Linux and derivatives",
    "git": "sudo pacman -S git",
    "makepkg": "sudo pacman -S --needed base-devel",
    "snap": "install snapd from the AUR and enable snapd.socket",
    "flatpak": "sudo pacman -S flatpak",
}


@dataclass
class PrerequisiteResult:
    """Result of a prerequisite check."""

    found: dict[str, str]  # binary -> resolved path
    missing: list[str]  # binaries not on PATH
    unavailable_backends: list[Source]  # enabled backends with missing binaries

    @property
    def fatal(self) -> bool:
        """pacman is required by every workflow."""
        return "pacman" in self.missing

    @property
    def ok(self) -> bool:
        return not self.missing


def is_tool_installed(binary: str, verbose: bool = False) -> str | None:
    """
    Locate a binary on PATH.

    Returns:
        Resolved path, or None if the binary is missing
    """
    path = shutil.which(binary)
    if path:
        vlog(f"Found {binary} at: {path}", verbose)
    else:
        vlog(f"{binary} not found in PATH", verbose)
    return path


def check_prerequisites(sources: Iterable[Source], verbose: bool = False) -> PrerequisiteResult:
    """
    Check the binaries needed by the given backends (pacman is always checked).

    Args:
        sources: Enabled backends
        verbose: Enable verbose logging
    """
    sources = list(sources)
    binaries: list[str] = ["pacman"]
    for source in sources:
        for binary in BACKEND_BINARIES[source]:
            if binary not in binaries:
                binaries.append(binary)

    found: dict[str, str] = {}
    missing: list[str] = []
    for binary in binaries:
        path = is_tool_installed(binary, verbose)
        if path:
            found[binary] = path
        else:
            missing.append(binary)

    unavailable = [
        source for source in sources
        if any(binary in missing for binary in BACKEND_BINARIES[source])
    ]
    return PrerequisiteResult(found=found, missing=missing, unavailable_backends=unavailable)


def format_prerequisite_report(result: PrerequisiteResult) -> str:
    """
    Format a human-readable prerequisite report.

    Args:
        result: PrerequisiteResult from check_prerequisites

    Returns:
        Multi-line report
    """
    lines = []
    for binary, path in result.found.items():
        lines.append(f"✅ {binary}: {path}")
    for binary in result.missing:
        lines.append(f"❌ {binary}: not found ({REMEDIATIONS.get(binary, 'install it')})")
    if result.unavailable_backends:
        names = ", ".join(s.display_name for s in result.unavailable_backends)
        lines.append(f"Backends unavailable: {names}")
    if result.fatal:
        lines.append("pacman is required; allpac cannot run on this system")
    return "\n".join(lines)
