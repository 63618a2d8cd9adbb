"""
Common utilities shared across allpac modules.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

# Default state directory (package list, build cache, logs)
DEFAULT_STATE_DIR = "~/.allpac"


def get_state_dir(configured: str | None = None) -> Path:
    """
    Resolve the allpac state directory.

    Precedence: ALLPAC_HOME environment variable, configured path, default.

    Args:
        configured: State directory from configuration (may contain ~)

    Returns:
        Absolute path to the state directory (not created)
    """
    state_dir = os.environ.get("ALLPAC_HOME") or configured or DEFAULT_STATE_DIR
    return Path(os.path.expanduser(state_dir)).absolute()


def split_package_names(raw: str) -> list[str]:
    """
    Split a comma-separated package argument into names.

    Args:
        raw: Comma-separated names (e.g., "vim, git,,htop")

    Returns:
        Non-empty, stripped names in the given order, duplicates removed
    """
    names: list[str] = []
    for part in raw.split(","):
        name = part.strip()
        if name and name not in names:
            names.append(name)
    return names


def vlog(msg: str, verbose: bool = False) -> None:
    """
    Log verbose message using structured logging.

    Args:
        msg: Message to log
        verbose: Whether verbose mode is enabled
    """
    if verbose or os.environ.get("ALLPAC_DEBUG", "0") == "1":
        try:
            from .logging_config import get_logger
            logger = get_logger()
            logger.info(msg)
        except Exception:
            # Fallback to stderr if logging fails
            try:
                print(f"[allpac] {msg}", file=sys.stderr)
            except Exception:
                pass
