"""
Package list: the persisted record of packages allpac installed.

The list lives in a single JSON file (default ~/.allpac/pkg.list) mapping
package name to {"source": <backend>, "version": <last installed version>}.
It is the only source of truth for "is this package managed by allpac";
packages installed by other means never appear here.

All mutations go through PackageRecordStore, which serializes the
load-modify-save cycle behind a lock and replaces the file atomically.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from .errors import PersistenceError

logger = logging.getLogger(__name__)

PKG_LIST_FILENAME = "pkg.list"


class Source(str, Enum):
    """Backend that owns a package."""

    PACMAN = "pacman"
    SNAP = "snap"
    FLATPAK = "flatpak"
    AUR = "aur"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @classmethod
    def parse(cls, value: str) -> Source:
        """
        Parse a source id or display name (case-insensitive).

        Raises:
            ValueError: If value names no known backend
        """
        lowered = value.strip().lower()
        for source in cls:
            if lowered in (source.value, source.display_name.lower()):
                return source
        raise ValueError(f"Unknown package source: {value}")

    def __str__(self) -> str:
        return self.value


_DISPLAY_NAMES = {
    Source.PACMAN: "Pacman",
    Source.SNAP: "Snap",
    Source.FLATPAK: "Flatpak",
    Source.AUR: "AUR",
}


@dataclass(frozen=True)
class PackageRecord:
    """
    One tool-managed package.

    Attributes:
        name: Package identifier (map key)
        source: Backend that installed the package
        version: Last version known to be installed (opaque string)
    """
    name: str
    source: Source
    version: str

    def to_dict(self) -> dict[str, str]:
        """Convert to the persisted value object."""
        return {"source": self.source.value, "version": self.version}

    @classmethod
    def from_dict(cls, name: str, data: Any) -> PackageRecord:
        """
        Create from a persisted value object.

        Raises:
            PersistenceError: If the entry is malformed
        """
        if not isinstance(data, dict):
            raise PersistenceError(f"Malformed entry for package {name}: expected object", package=name)
        source = data.get("source")
        version = data.get("version", "")
        if not isinstance(source, str) or not isinstance(version, str):
            raise PersistenceError(
                f"Malformed entry for package {name}: source and version must be strings",
                package=name,
            )
        try:
            parsed = Source(source)
        except ValueError:
            raise PersistenceError(
                f"Unknown source '{source}' recorded for package {name}",
                package=name,
                remediation="Fix the entry by hand or run 'allpac repair' to reinitialize the list",
            ) from None
        return cls(name=name, source=parsed, version=version)


def serialize_records(records: dict[str, PackageRecord]) -> str:
    """Render a mapping in the persisted JSON form."""
    payload = {name: record.to_dict() for name, record in records.items()}
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True) + "\n"


def parse_records(text: str) -> dict[str, PackageRecord]:
    """
    Parse the persisted JSON form.

    Empty text is treated as an empty list.

    Raises:
        PersistenceError: If the text is not a JSON object of valid entries
    """
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PersistenceError(f"Error decoding package list: {e}") from e
    if not isinstance(data, dict):
        raise PersistenceError("Error decoding package list: top level must be a JSON object")
    return {name: PackageRecord.from_dict(name, value) for name, value in data.items()}


class PackageRecordStore:
    """
    Concurrency-safe access to the persisted package list.

    Lifecycle is open -> use -> close; the store is also a context manager.
    Every mutation holds the store lock for its whole load-modify-save cycle,
    so concurrent workers can call upsert/remove directly.
    """

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.RLock()
        self._closed = False

    def __enter__(self) -> PackageRecordStore:
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"PackageRecordStore({str(self.path)!r})"

    def open(self) -> PackageRecordStore:
        """Open the store, creating an empty package list on first use."""
        with self._lock:
            self._closed = False
            self.load()
        return self

    def close(self) -> None:
        """Close the store; every write is already flushed to disk."""
        with self._lock:
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise PersistenceError(f"Package list store is closed: {self.path}")

    def _initialize(self) -> None:
        logger.info(f"Package list does not exist, initializing: {self.path}")
        self._write(serialize_records({}))

    def load(self) -> dict[str, PackageRecord]:
        """
        Load the current mapping.

        A missing file is first-use state: an empty list is written and {} returned.

        Raises:
            PersistenceError: On I/O failure or malformed content
        """
        with self._lock:
            self._check_open()
            try:
                text = self.path.read_text(encoding="utf-8")
            except FileNotFoundError:
                self._initialize()
                return {}
            except OSError as e:
                raise PersistenceError(f"Error reading package list {self.path}: {e}") from e
            return parse_records(text)

    def save(self, records: dict[str, PackageRecord]) -> None:
        """
        Atomically replace the persisted mapping.

        Raises:
            PersistenceError: If the file cannot be written
        """
        with self._lock:
            self._check_open()
            self._write(serialize_records(records))

    def _write(self, text: str) -> None:
        temp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.path)
        except OSError as e:
            try:
                temp_path.unlink()
            except OSError:
                pass
            raise PersistenceError(f"Error writing package list {self.path}: {e}") from e

    def get(self, name: str) -> PackageRecord | None:
        """Return the record for name, or None if allpac does not manage it."""
        return self.load().get(name)

    def upsert(self, name: str, source: Source, version: str) -> PackageRecord:
        """Insert or overwrite the record for name."""
        record = PackageRecord(name=name, source=Source(source), version=version)
        with self._lock:
            records = self.load()
            previous = records.get(name)
            if previous == record:
                return record
            records[name] = record
            self.save(records)
        if previous is None:
            logger.info(f"Package {name} added to the package list ({record.source.value} {version})")
        else:
            logger.info(
                f"Package {name} updated in the package list "
                f"({previous.source.value} {previous.version} -> {record.source.value} {version})"
            )
        return record

    def remove(self, name: str) -> bool:
        """
        Delete the record for name.

        Returns:
            True if a record was removed, False if there was none (no-op)
        """
        with self._lock:
            records = self.load()
            if name not in records:
                logger.debug(f"Package {name} not found in the package list, no action taken")
                return False
            del records[name]
            self.save(records)
        logger.info(f"Package {name} removed from the package list")
        return True

    def records_by_source(self) -> dict[Source, list[str]]:
        """Tracked package names grouped by owning source (names sorted)."""
        grouped: dict[Source, list[str]] = {}
        for name, record in sorted(self.load().items()):
            grouped.setdefault(record.source, []).append(name)
        return grouped

    def reset(self) -> None:
        """Reinitialize the package list to an empty object."""
        with self._lock:
            self._check_open()
            logger.warning(f"Reinitializing package list: {self.path}")
            self._write(serialize_records({}))
