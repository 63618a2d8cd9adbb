"""
Maintenance operations: build cache cleanup and forced AUR rebuilds.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from .aur import AurAdapter
from .errors import NotFoundError, PersistenceError
from .package_list import PackageRecord, PackageRecordStore, Source

logger = logging.getLogger(__name__)


class MaintenanceOps:
    """
    Cache and rebuild operations on allpac-managed AUR packages.

    Args:
        store: Package list store
        aur: AUR adapter (None when the AUR backend is disabled)
        cache_dir: Build cache directory
    """

    def __init__(self, store: PackageRecordStore, aur: AurAdapter | None, cache_dir: Path | str):
        self.store = store
        self.aur = aur
        self.cache_dir = Path(cache_dir)

    def clear_cache(self) -> None:
        """
        Delete every cached AUR clone and build, leaving an empty cache directory.

        Raises:
            PersistenceError: If the directory cannot be removed or recreated
        """
        logger.info(f"Clearing AUR cache: {self.cache_dir}")
        try:
            if self.cache_dir.exists():
                shutil.rmtree(self.cache_dir)
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"error clearing AUR cache {self.cache_dir}: {e}") from e
        logger.info("AUR cache cleared")

    def rebuild(self, name: str) -> PackageRecord:
        """
        Discard the cached builds of an AUR package and build it again.

        Returns:
            The updated package record

        Raises:
            NotFoundError: If the package is not an allpac-managed AUR package
            InstallError: If the rebuild fails
        """
        record = self.store.get(name)
        if record is None:
            raise NotFoundError(f"package {name} not found in package list", package=name)
        if record.source is not Source.AUR:
            raise NotFoundError(
                f"package {name} is not an AUR package (installed from {record.source.display_name})",
                package=name,
                source=record.source.value,
            )
        if self.aur is None:
            raise NotFoundError(
                "the AUR backend is not enabled",
                package=name,
                source="aur",
                remediation="Add 'aur' to backends.enabled in the allpac config",
            )

        try:
            self.aur.discard_cache(name)
        except OSError as e:
            raise PersistenceError(f"error removing cached builds of {name}: {e}", package=name) from e

        logger.info(f"Rebuilding AUR package {name}")
        version = self.aur.install(name)
        return self.store.upsert(name, Source.AUR, version)
