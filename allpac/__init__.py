"""
allpac - unified package management for pacman, the AUR, Snap and Flatpak.

Core Modules:
- Package list: persisted record of allpac-managed packages
- Backends: one adapter per native package tool (pacman, snap, flatpak, AUR)
- Updates: stale-package detection and batched / per-package updates
- Installation: parallel search, exact-match filtering, source selection
- Maintenance: AUR build cache cleanup and forced rebuilds
"""

__version__ = "1.0.0"

VERSION = __version__

from .errors import (
    AllPacError,
    AmbiguousSelectionError,
    BackendError,
    InstallError,
    NotFoundError,
    PersistenceError,
    UninstallError,
)
from .package_list import PackageRecord, PackageRecordStore, Source
from .config import Config, Preferences, load_config, load_config_file, validate_config
from .backends import (
    BackendAdapter,
    FlatpakAdapter,
    PacmanAdapter,
    SnapAdapter,
    build_adapters,
)
from .aur import AurAdapter
from .updater import ReconcileReport, UpdateReconciler, UpdateResult, UpdateTarget
from .installer import (
    BulkInstallReport,
    BulkUninstallReport,
    InstallOutcome,
    InstallResolver,
    SearchResult,
    SourceMatches,
    UninstallOutcome,
    filter_exact_matches,
    is_exact_match,
    priority_selector,
    search_all,
)
from .maintenance import MaintenanceOps
from .manager import PackageManager

__all__ = [
    "__version__",
    "VERSION",
    # Errors
    "AllPacError",
    "AmbiguousSelectionError",
    "BackendError",
    "InstallError",
    "NotFoundError",
    "PersistenceError",
    "UninstallError",
    # Package list
    "PackageRecord",
    "PackageRecordStore",
    "Source",
    # Config
    "Config",
    "Preferences",
    "load_config",
    "load_config_file",
    "validate_config",
    # Backends
    "BackendAdapter",
    "PacmanAdapter",
    "SnapAdapter",
    "FlatpakAdapter",
    "AurAdapter",
    "build_adapters",
    # Updates
    "ReconcileReport",
    "UpdateReconciler",
    "UpdateResult",
    "UpdateTarget",
    # Installation
    "BulkInstallReport",
    "BulkUninstallReport",
    "InstallOutcome",
    "InstallResolver",
    "SearchResult",
    "SourceMatches",
    "UninstallOutcome",
    "filter_exact_matches",
    "is_exact_match",
    "priority_selector",
    "search_all",
    # Maintenance
    "MaintenanceOps",
    "PackageManager",
]
