"""
Facade wiring the package list, backend adapters and the workflows.
"""

from __future__ import annotations

import logging
from typing import Mapping, Sequence

from .backends import BackendAdapter, build_adapters
from .config import Config
from .installer import (
    BulkInstallReport,
    BulkUninstallReport,
    Confirm,
    InstallResolver,
    SearchResult,
    Selector,
    priority_selector,
)
from .maintenance import MaintenanceOps
from .package_list import PackageRecord, PackageRecordStore, Source
from .toolcheck import PrerequisiteResult, check_prerequisites
from .updater import ReconcileReport, UpdateReconciler, UpdateTarget

logger = logging.getLogger(__name__)


class PackageManager:
    """
    Entry point for every allpac operation.

    The store is opened on construction and closed by close() or on
    leaving a with-block.

    Args:
        config: Loaded configuration
        adapters: Backend adapters (built from config when None)
        store: Package list store (created at config.package_list_path when None)
        selector: Source selector for ambiguous installs (source priority when None)
        confirm: Confirmation hook for AUR builds (None skips the question)
        verbose: Enable verbose logging
    """

    def __init__(
        self,
        config: Config,
        adapters: Mapping[Source, BackendAdapter] | None = None,
        store: PackageRecordStore | None = None,
        selector: Selector | None = None,
        confirm: Confirm | None = None,
        verbose: bool = False,
    ):
        self.config = config
        self.adapters = dict(adapters) if adapters is not None else build_adapters(config, verbose)
        self.store = (store or PackageRecordStore(config.package_list_path)).open()
        workers = config.preferences.max_workers

        self.reconciler = UpdateReconciler(self.store, self.adapters, max_workers=workers)
        self.resolver = InstallResolver(
            self.store,
            self.adapters,
            selector=selector or priority_selector(config.preferences.source_priority),
            confirm=confirm,
            max_workers=workers,
        )
        self.maintenance = MaintenanceOps(self.store, self.adapters.get(Source.AUR), config.cache_path)

    def __enter__(self) -> PackageManager:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self.store.close()

    # Updates

    def reconcile_all(self) -> ReconcileReport:
        return self.reconciler.reconcile_all()

    def reconcile_source(self, source: Source | str) -> ReconcileReport:
        return self.reconciler.reconcile_source(source)

    def reconcile_package(self, name: str) -> ReconcileReport:
        return self.reconciler.reconcile_package(name)

    def update(self, target: UpdateTarget) -> ReconcileReport:
        return self.reconciler.reconcile(target)

    # Install / uninstall / search

    def resolve_and_install(self, names: Sequence[str]) -> BulkInstallReport:
        return self.resolver.resolve_and_install(names)

    def uninstall(self, names: Sequence[str]) -> BulkUninstallReport:
        return self.resolver.uninstall(names)

    def search_all(self, name: str) -> SearchResult:
        return self.resolver.search(name)

    # Maintenance

    def rebuild(self, name: str) -> PackageRecord:
        return self.maintenance.rebuild(name)

    def clear_cache(self) -> None:
        self.maintenance.clear_cache()

    def list_records(self) -> list[PackageRecord]:
        """Tracked packages sorted by name."""
        return [record for _, record in sorted(self.store.load().items())]

    def repair(self) -> None:
        """Reinitialize the package list to an empty list."""
        self.store.reset()

    def check(self) -> PrerequisiteResult:
        return check_prerequisites(self.adapters)
