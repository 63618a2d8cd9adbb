"""
Search, disambiguation and installation across every enabled backend.

For each requested name all backends are searched in parallel, the raw
result lines are reduced to exact matches, and the package is installed
from the single matching source, or from the source the injected
selector picks when several backends offer it. Successful installs are
recorded in the package list; everything else becomes a per-package
outcome in the report.
"""

from __future__ import annotations

import logging
import re
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Mapping, Sequence

from .backends import BackendAdapter
from .errors import AllPacError, AmbiguousSelectionError, PersistenceError
from .package_list import PackageRecordStore, Source

logger = logging.getLogger(__name__)


STATUS_INSTALLED = "installed"
STATUS_FAILED = "failed"
STATUS_NO_MATCH = "no-match"
STATUS_SKIPPED = "skipped"

STATUS_REMOVED = "removed"
STATUS_NOT_MANAGED = "not-managed"

# Version suffix glued to a name ("foo-1.2.3", "foo-2:1.0-1") or a "-dev" variant
_EXACT_SUFFIX = r"(?:-\d+(?:[.:+~_-]\d\w*)*|-dev)?"


def is_exact_match(line: str, name: str) -> bool:
    """
    Check whether a raw search line names exactly the requested package.

    The leading token must be the name itself, optionally followed by a
    version suffix or '-dev', and then whitespace or the end of the line.

    Examples:
        >>> is_exact_match("foo 1.0 - A tool", "foo")
        True
        >>> is_exact_match("foo-dev 1.0", "foo")
        True
        >>> is_exact_match("foobar 2.0", "foo")
        False
    """
    pattern = rf"{re.escape(name)}{_EXACT_SUFFIX}(?:\s|$)"
    return re.match(pattern, line.lstrip()) is not None


def filter_exact_matches(lines: Sequence[str], name: str) -> list[str]:
    """Keep only the lines that are exact matches for name, in order."""
    return [line for line in lines if is_exact_match(line, name)]


@dataclass(frozen=True)
class SourceMatches:
    """
    Search results of one backend.

    Attributes:
        source: Backend that produced the lines
        lines: Raw result lines
    """
    source: Source
    lines: tuple[str, ...]

    @property
    def display_name(self) -> str:
        return self.source.display_name

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"source": self.source.value, "lines": list(self.lines)}


@dataclass(frozen=True)
class SearchResult:
    """
    Combined search over every enabled backend.

    Attributes:
        package_name: Name that was searched for
        matches: Per-backend results, in backend declaration order
        errors: Error message per backend whose search failed
    """
    package_name: str
    matches: tuple[SourceMatches, ...]
    errors: Mapping[Source, str] = field(default_factory=dict)

    def exact_matches(self) -> tuple[SourceMatches, ...]:
        """Per-backend exact matches; backends without any are dropped."""
        exact = []
        for entry in self.matches:
            lines = filter_exact_matches(entry.lines, self.package_name)
            if lines:
                exact.append(SourceMatches(entry.source, tuple(lines)))
        return tuple(exact)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "package_name": self.package_name,
            "matches": [m.to_dict() for m in self.matches],
            "errors": {source.value: message for source, message in self.errors.items()},
        }


def search_all(
    name: str,
    adapters: Mapping[Source, BackendAdapter],
    max_workers: int = 4,
) -> SearchResult:
    """
    Search every adapter for name in parallel.

    A failing backend is reported in SearchResult.errors; the others still
    contribute their results.
    """
    lines_by_source: dict[Source, tuple[str, ...]] = {}
    errors: dict[Source, str] = {}

    if adapters:
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(adapters)))) as executor:
            future_to_source = {
                executor.submit(adapter.search, name): source
                for source, adapter in adapters.items()
            }
            for future in as_completed(future_to_source):
                source = future_to_source[future]
                try:
                    lines_by_source[source] = tuple(future.result())
                except AllPacError as e:
                    logger.error(f"Error searching {source.display_name} for {name}: {e.message}")
                    errors[source] = e.message
                except Exception as e:
                    logger.error(f"Unexpected error searching {source.display_name} for {name}: {e}")
                    errors[source] = str(e)

    matches = tuple(
        SourceMatches(source, lines_by_source[source])
        for source in Source
        if source in lines_by_source
    )
    return SearchResult(package_name=name, matches=matches, errors=errors)


Selector = Callable[[str, Sequence[SourceMatches]], "int | None"]
Confirm = Callable[[str, Source], bool]


def priority_selector(priority: Sequence[str]) -> Selector:
    """
    Build a non-interactive selector that follows a source preference order.

    Sources missing from priority are never chosen.
    """
    ranking = [Source.parse(s) for s in priority]

    def select(name: str, candidates: Sequence[SourceMatches]) -> int | None:
        for preferred in ranking:
            for index, candidate in enumerate(candidates):
                if candidate.source is preferred:
                    logger.info(f"Selected {preferred.display_name} for {name} by source priority")
                    return index
        return None

    return select


@dataclass(frozen=True)
class InstallOutcome:
    """
    Install outcome for one requested name.

    Attributes:
        name: Requested package name
        status: "installed", "failed", "no-match" or "skipped"
        source: Backend used (or already owning the package)
        version: Version recorded after a successful install
        error_message: Why the package was not installed
    """
    name: str
    status: str
    source: Source | None = None
    version: str | None = None
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.status != STATUS_FAILED

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "status": self.status,
            "source": self.source.value if self.source else None,
            "version": self.version,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class BulkInstallReport:
    """
    Result of one install request.

    Attributes:
        requested: Names in request order
        outcomes: One outcome per requested name, in request order
        duration_seconds: Total execution time
    """
    requested: tuple[str, ...]
    outcomes: tuple[InstallOutcome, ...]
    duration_seconds: float

    @property
    def installed(self) -> tuple[InstallOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status == STATUS_INSTALLED)

    @property
    def failures(self) -> tuple[InstallOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status == STATUS_FAILED)

    @property
    def skipped(self) -> tuple[InstallOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status in (STATUS_SKIPPED, STATUS_NO_MATCH))

    @property
    def success(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "requested": list(self.requested),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "duration_seconds": self.duration_seconds,
        }


@dataclass(frozen=True)
class UninstallOutcome:
    """
    Uninstall outcome for one requested name.

    Attributes:
        name: Requested package name
        status: "removed", "not-managed" or "failed"
        source: Backend that owned the package
        error_message: Why the package was not removed
    """
    name: str
    status: str
    source: Source | None = None
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.status != STATUS_FAILED

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "status": self.status,
            "source": self.source.value if self.source else None,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class BulkUninstallReport:
    """Result of one uninstall request."""
    requested: tuple[str, ...]
    outcomes: tuple[UninstallOutcome, ...]
    duration_seconds: float

    @property
    def removed(self) -> tuple[UninstallOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status == STATUS_REMOVED)

    @property
    def failures(self) -> tuple[UninstallOutcome, ...]:
        return tuple(o for o in self.outcomes if o.status == STATUS_FAILED)

    @property
    def success(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "requested": list(self.requested),
            "outcomes": [o.to_dict() for o in self.outcomes],
            "duration_seconds": self.duration_seconds,
        }


class InstallResolver:
    """
    Installs packages by name from whichever backend offers them.

    Args:
        store: Package list store (injected, shared with other components)
        adapters: Backend adapters keyed by source
        selector: Picks a source when several backends match; None skips such packages
        confirm: Asked before an AUR build; None builds without asking
        max_workers: Upper bound for parallel backend searches
    """

    def __init__(
        self,
        store: PackageRecordStore,
        adapters: Mapping[Source, BackendAdapter],
        selector: Selector | None = None,
        confirm: Confirm | None = None,
        max_workers: int = 4,
    ):
        self.store = store
        self.adapters = dict(adapters)
        self.selector = selector
        self.confirm = confirm
        self.max_workers = max(1, max_workers)

    def search(self, name: str) -> SearchResult:
        return search_all(name, self.adapters, self.max_workers)

    def choose_source(self, name: str, candidates: Sequence[SourceMatches]) -> SourceMatches:
        """
        Pick the backend to install from.

        Raises:
            AmbiguousSelectionError: If no valid choice was made among several sources
        """
        if len(candidates) == 1:
            return candidates[0]

        sources = ", ".join(c.display_name for c in candidates)
        if self.selector is None:
            raise AmbiguousSelectionError(
                f"{name} is available from several sources ({sources}) and no selector is configured",
                package=name,
            )
        index = self.selector(name, candidates)
        if index is None or not 0 <= index < len(candidates):
            raise AmbiguousSelectionError(
                f"invalid selection for {name} among {sources}, skipping",
                package=name,
                remediation="Rerun the install and pick one of the listed sources",
            )
        return candidates[index]

    def install_one(self, name: str) -> InstallOutcome:
        """
        Resolve and install one package.

        Raises:
            PersistenceError: If the package list cannot be updated
        """
        existing = self.store.get(name)
        if existing is not None:
            logger.info(f"{name} is already managed by allpac ({existing.source.display_name}), skipping")
            return InstallOutcome(
                name=name,
                status=STATUS_SKIPPED,
                source=existing.source,
                version=existing.version,
                error_message=f"already managed ({existing.source.display_name})",
            )

        logger.info(f"Searching for {name} in {', '.join(s.display_name for s in self.adapters)}")
        result = self.search(name)
        candidates = result.exact_matches()

        if not candidates:
            if result.errors and len(result.errors) == len(self.adapters):
                return InstallOutcome(
                    name=name,
                    status=STATUS_FAILED,
                    error_message="search failed on every backend: "
                    + "; ".join(result.errors.values()),
                )
            logger.warning(f"No exact match found for {name}")
            return InstallOutcome(name=name, status=STATUS_NO_MATCH, error_message=f"no exact match found for {name}")

        try:
            chosen = self.choose_source(name, candidates)
        except AmbiguousSelectionError as e:
            logger.warning(e.message)
            return InstallOutcome(name=name, status=STATUS_SKIPPED, error_message=e.message)

        source = chosen.source
        if source is Source.AUR and self.confirm is not None and not self.confirm(name, source):
            logger.info(f"Build of AUR package {name} declined")
            return InstallOutcome(name=name, status=STATUS_SKIPPED, source=source, error_message="AUR build declined")

        try:
            version = self.adapters[source].install(name)
        except PersistenceError:
            raise
        except AllPacError as e:
            logger.error(f"Error installing {name} from {source.display_name}: {e.message}")
            return InstallOutcome(name=name, status=STATUS_FAILED, source=source, error_message=e.message)
        except Exception as e:
            logger.error(f"Unexpected error installing {name} from {source.display_name}: {e}")
            return InstallOutcome(name=name, status=STATUS_FAILED, source=source, error_message=str(e))

        self.store.upsert(name, source, version)
        logger.info(f"Installed {name} {version} from {source.display_name}")
        return InstallOutcome(name=name, status=STATUS_INSTALLED, source=source, version=version)

    def resolve_and_install(self, names: Sequence[str]) -> BulkInstallReport:
        """
        Install every requested name, one at a time.

        Names are handled sequentially so interactive prompts never interleave;
        each name's backend searches still run in parallel.
        """
        start_time = time.time()
        outcomes = [self.install_one(name) for name in names]
        report = BulkInstallReport(
            requested=tuple(names),
            outcomes=tuple(outcomes),
            duration_seconds=time.time() - start_time,
        )
        if report.failures:
            logger.warning(f"Failed to install: {', '.join(o.name for o in report.failures)}")
        return report

    def uninstall_one(self, name: str) -> UninstallOutcome:
        """Remove one allpac-managed package and forget it."""
        record = self.store.get(name)
        if record is None:
            logger.warning(f"{name} is not managed by allpac, skipping")
            return UninstallOutcome(name=name, status=STATUS_NOT_MANAGED)

        adapter = self.adapters.get(record.source)
        if adapter is None:
            return UninstallOutcome(
                name=name,
                status=STATUS_FAILED,
                source=record.source,
                error_message=f"backend {record.source.display_name} is not enabled",
            )

        try:
            adapter.uninstall(name)
        except AllPacError as e:
            logger.error(f"Error uninstalling {name}: {e.message}")
            return UninstallOutcome(name=name, status=STATUS_FAILED, source=record.source, error_message=e.message)

        self.store.remove(name)
        logger.info(f"Uninstalled {name} ({record.source.display_name})")
        return UninstallOutcome(name=name, status=STATUS_REMOVED, source=record.source)

    def uninstall(self, names: Sequence[str]) -> BulkUninstallReport:
        """Uninstall every requested name."""
        start_time = time.time()
        outcomes = [self.uninstall_one(name) for name in names]
        return BulkUninstallReport(
            requested=tuple(names),
            outcomes=tuple(outcomes),
            duration_seconds=time.time() - start_time,
        )
