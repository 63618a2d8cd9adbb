"""
Configuration file parsing and management.

Supports YAML configuration files (JSON for *.json paths).
Merges configurations from multiple sources (custom -> project -> user -> system -> defaults).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .common import get_state_dir, vlog
from .package_list import PKG_LIST_FILENAME


# Configuration file locations (in priority order)
CONFIG_LOCATIONS = [
    ".allpac.yml",                                  # Project root (highest priority)
    ".allpac.yaml",
    os.path.expanduser("~/.config/allpac/config.yml"),  # User global
    os.path.expanduser("~/.config/allpac/config.yaml"),
    "/etc/allpac/config.yml",                       # System global
    "/etc/allpac/config.yaml",
]

KNOWN_SOURCES = ("pacman", "snap", "flatpak", "aur")
DEFAULT_SOURCE_PRIORITY = ("pacman", "aur", "flatpak", "snap")
DEFAULT_AUR_URL = "https://aur.archlinux.org"


def _validate_sources(kind: str, sources: tuple[str, ...]) -> None:
    unknown = [s for s in sources if s not in KNOWN_SOURCES]
    if unknown:
        raise ValueError(
            f"Invalid {kind}: {', '.join(unknown)}. "
            f"Must be among: {', '.join(KNOWN_SOURCES)}"
        )


@dataclass(frozen=True)
class Preferences:
    """
    User preferences for backend calls and disambiguation.

    Attributes:
        timeout_seconds: Timeout for each backend subprocess or HTTP call
        max_workers: Maximum number of parallel workers
        use_sudo: Prefix privileged backend commands with sudo
        source_priority: Preferred source order for non-interactive disambiguation
        assume_yes: Skip confirmation prompts (AUR builds, source choice)
    """
    timeout_seconds: int = 1800
    max_workers: int = 4
    use_sudo: bool = True
    source_priority: tuple[str, ...] = DEFAULT_SOURCE_PRIORITY
    assume_yes: bool = False

    def __post_init__(self):
        """Validate preferences after initialization."""
        if self.timeout_seconds < 1 or self.timeout_seconds > 86400:
            raise ValueError(
                f"Invalid timeout_seconds: {self.timeout_seconds}. "
                "Must be between 1 and 86400"
            )

        if self.max_workers < 1 or self.max_workers > 32:
            raise ValueError(
                f"Invalid max_workers: {self.max_workers}. "
                "Must be between 1 and 32"
            )

        _validate_sources("source_priority", self.source_priority)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Preferences:
        """Create Preferences from dictionary."""
        return Preferences(
            timeout_seconds=data.get("timeout_seconds", 1800),
            max_workers=data.get("max_workers", 4),
            use_sudo=data.get("use_sudo", True),
            source_priority=tuple(data.get("source_priority", DEFAULT_SOURCE_PRIORITY)),
            assume_yes=data.get("assume_yes", False),
        )


@dataclass(frozen=True)
class Config:
    """
    Complete configuration for allpac.

    Attributes:
        version: Config schema version
        state_dir: Directory holding pkg.list, cache/ and logs/ (None = default)
        preferences: Global preferences
        aur_url: Base URL of the AUR (RPC endpoint and git clone host)
        enabled_backends: Backends allpac is allowed to use
        source: Path to the configuration file that was loaded
    """
    version: int = 1
    state_dir: str | None = None
    preferences: Preferences = field(default_factory=Preferences)
    aur_url: str = DEFAULT_AUR_URL
    enabled_backends: tuple[str, ...] = KNOWN_SOURCES
    source: str = ""

    def __post_init__(self):
        """Validate config after initialization."""
        if self.version != 1:
            raise ValueError(f"Unsupported config version: {self.version}. Expected version 1")

        if not self.aur_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid aur.base_url: {self.aur_url}. Must be an http(s) URL")

        _validate_sources("backends.enabled", self.enabled_backends)

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """Create Config from dictionary."""
        paths = data.get("paths", {}) or {}
        preferences = Preferences.from_dict(data.get("preferences", {}) or {})
        aur = data.get("aur", {}) or {}
        backends = data.get("backends", {}) or {}

        return Config(
            version=data.get("version", 1),
            state_dir=paths.get("state_dir"),
            preferences=preferences,
            aur_url=aur.get("base_url", DEFAULT_AUR_URL).rstrip("/"),
            enabled_backends=tuple(backends.get("enabled", KNOWN_SOURCES)),
            source=source,
        )

    @property
    def state_path(self) -> Path:
        """Resolved state directory."""
        return get_state_dir(self.state_dir)

    @property
    def package_list_path(self) -> Path:
        """Path to the persisted package list."""
        return self.state_path / PKG_LIST_FILENAME

    @property
    def cache_path(self) -> Path:
        """Directory holding AUR clones and builds."""
        return self.state_path / "cache"

    @property
    def log_path(self) -> Path:
        """Default log file."""
        return self.state_path / "logs" / "allpac.log"

    def merge_with(self, other: Config) -> Config:
        """
        Merge this config with another, preferring values from this config.

        Args:
            other: Other config to merge (lower priority)

        Returns:
            New merged Config object
        """
        defaults = Preferences()
        mine = self.preferences
        theirs = other.preferences

        merged_preferences = Preferences(
            timeout_seconds=mine.timeout_seconds if mine.timeout_seconds != defaults.timeout_seconds else theirs.timeout_seconds,
            max_workers=mine.max_workers if mine.max_workers != defaults.max_workers else theirs.max_workers,
            use_sudo=mine.use_sudo and theirs.use_sudo,
            source_priority=mine.source_priority if mine.source_priority != defaults.source_priority else theirs.source_priority,
            assume_yes=mine.assume_yes or theirs.assume_yes,
        )

        return Config(
            version=self.version,
            state_dir=self.state_dir or other.state_dir,
            preferences=merged_preferences,
            aur_url=self.aur_url if self.aur_url != DEFAULT_AUR_URL else other.aur_url,
            enabled_backends=self.enabled_backends if self.enabled_backends != KNOWN_SOURCES else other.enabled_backends,
            source=self.source or other.source,
        )


def _load_yaml(file_path: str) -> dict[str, Any] | None:
    """
    Load YAML configuration file.

    Args:
        file_path: Path to YAML file

    Returns:
        Parsed configuration dictionary, or None if file invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return None


def _load_json(file_path: str) -> dict[str, Any] | None:
    """
    Load JSON configuration file.

    Args:
        file_path: Path to JSON file

    Returns:
        Parsed configuration dictionary, or None if file invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, json.JSONDecodeError):
        return None


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Load configuration from a single file.

    Args:
        file_path: Path to configuration file (.yml, .yaml or .json)
        verbose: Enable verbose logging

    Returns:
        Config object, or None if file cannot be loaded
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Loading config from: {file_path}", verbose)

    if file_path.endswith(".json"):
        data = _load_json(file_path)
    else:
        data = _load_yaml(file_path)

    if data is None:
        vlog(f"Invalid config file: {file_path}", verbose)
        return None

    try:
        config = Config.from_dict(data, source=file_path)
        vlog(f"Loaded config successfully: {file_path}", verbose)
        return config
    except (ValueError, TypeError, AttributeError) as e:
        vlog(f"Config validation failed for {file_path}: {e}", verbose)
        return None


def load_config(
    custom_path: str | None = None,
    verbose: bool = False,
) -> Config:
    """
    Load and merge configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Custom path (if provided)
    2. Project .allpac.yml
    3. User ~/.config/allpac/config.yml
    4. System /etc/allpac/config.yml
    5. Default configuration

    Args:
        custom_path: Optional path to custom configuration file
        verbose: Enable verbose logging

    Returns:
        Merged Config object (never None, returns defaults if no config found)

    Raises:
        ValueError: If custom_path is provided but file cannot be loaded
    """
    configs: list[Config] = []

    if custom_path:
        config = load_config_file(custom_path, verbose)
        if config is None:
            raise ValueError(f"Could not load config from specified path: {custom_path}")
        configs.append(config)
        vlog(f"Using custom config: {custom_path}", verbose)

    for location in CONFIG_LOCATIONS:
        config = load_config_file(location, verbose)
        if config is not None:
            configs.append(config)
            vlog(f"Found config at: {location}", verbose)

    if not configs:
        vlog("No config files found, using defaults", verbose)
        return Config()

    merged = configs[0]
    for config in configs[1:]:
        merged = merged.merge_with(config)

    vlog(f"Merged {len(configs)} config files", verbose)
    return merged


def validate_config(config: Config) -> list[str]:
    """
    Validate configuration and return list of warnings.

    Args:
        config: Config object to validate

    Returns:
        List of validation warning messages (empty if valid)
    """
    warnings = []

    priority = config.preferences.source_priority
    if len(priority) != len(set(priority)):
        warnings.append("Duplicate sources in preferences.source_priority")

    not_enabled = [s for s in priority if s not in config.enabled_backends]
    if not_enabled:
        warnings.append(
            f"source_priority lists disabled backends: {', '.join(not_enabled)}"
        )

    if not config.enabled_backends:
        warnings.append("No backends enabled")

    if "aur" in config.enabled_backends and not config.preferences.use_sudo:
        warnings.append("AUR builds run makepkg -si, which needs sudo to install")

    return warnings
