"""
Update reconciliation for allpac-managed packages.

Decides which tracked packages are stale (recorded version differs from
the backend's latest version, plain string comparison) and drives their
update: one batched native update per backend for pacman, snap and
flatpak, and one isolated clone-and-build task per package for the AUR.
Per-package failures are collected in the report; they never abort the
rest of the run.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Sequence

from .backends import BackendAdapter
from .errors import AllPacError, NotFoundError, PersistenceError
from .package_list import PackageRecord, PackageRecordStore, Source

logger = logging.getLogger(__name__)


STATUS_UP_TO_DATE = "up-to-date"
STATUS_UPDATED = "updated"
STATUS_FAILED = "failed"


class UpdateTarget(str, Enum):
    """Update scope selectable from the command line: one backend or all of them."""

    EVERYTHING = "everything"
    PACMAN = "pacman"
    SNAP = "snap"
    FLATPAK = "flatpak"
    AUR = "aur"

    @property
    def sources(self) -> tuple[Source, ...]:
        if self is UpdateTarget.EVERYTHING:
            return tuple(Source)
        return (Source(self.value),)


@dataclass(frozen=True)
class UpdateCandidate:
    """
    Tracked package whose backend offers a different version.

    Attributes:
        name: Package name
        source: Owning backend
        current_version: Version in the package list
        latest_version: Version the backend reports as latest
    """
    name: str
    source: Source
    current_version: str
    latest_version: str

    def version_jump_description(self) -> str:
        """Human-readable version jump description."""
        return f"{self.current_version} → {self.latest_version}"


@dataclass(frozen=True)
class UpdateResult:
    """
    Outcome for one tracked package.

    Attributes:
        name: Package name
        source: Owning backend
        status: "up-to-date", "updated" or "failed"
        previous_version: Version recorded before the run
        new_version: Version recorded after the run (updated packages)
        error_message: Human-readable error message if failed
    """
    name: str
    source: Source
    status: str
    previous_version: str
    new_version: str | None = None
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.status != STATUS_FAILED

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "source": self.source.value,
            "status": self.status,
            "previous_version": self.previous_version,
            "new_version": self.new_version,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class ReconcileReport:
    """
    Result of one reconciliation run.

    Attributes:
        scope: What was reconciled ("everything", a source id, or a package name)
        results: Per-package outcomes, sorted by package name
        duration_seconds: Total execution time
    """
    scope: str
    results: tuple[UpdateResult, ...]
    duration_seconds: float

    @property
    def updated(self) -> tuple[UpdateResult, ...]:
        return tuple(r for r in self.results if r.status == STATUS_UPDATED)

    @property
    def up_to_date(self) -> tuple[UpdateResult, ...]:
        return tuple(r for r in self.results if r.status == STATUS_UP_TO_DATE)

    @property
    def failures(self) -> tuple[UpdateResult, ...]:
        return tuple(r for r in self.results if r.status == STATUS_FAILED)

    @property
    def success(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "scope": self.scope,
            "results": [r.to_dict() for r in self.results],
            "updated": len(self.updated),
            "up_to_date": len(self.up_to_date),
            "failed": len(self.failures),
            "duration_seconds": self.duration_seconds,
        }

    def summary(self) -> str:
        """Human-readable summary."""
        return f"""
Update Summary ({self.scope}):
  ✅ Updated: {len(self.updated)}
  ➖ Up to date: {len(self.up_to_date)}
  ❌ Failed: {len(self.failures)}
  ⏱️  Duration: {self.duration_seconds:.1f}s
"""


def _failed(candidate: UpdateCandidate, message: str) -> UpdateResult:
    return UpdateResult(
        name=candidate.name,
        source=candidate.source,
        status=STATUS_FAILED,
        previous_version=candidate.current_version,
        error_message=message,
    )


def _check_failed(record: PackageRecord, message: str) -> UpdateResult:
    return UpdateResult(
        name=record.name,
        source=record.source,
        status=STATUS_FAILED,
        previous_version=record.version,
        error_message=message,
    )


class UpdateReconciler:
    """
    Detects stale tracked packages and updates them.

    Args:
        store: Package list store (injected, shared with other components)
        adapters: Backend adapters keyed by source
        max_workers: Upper bound for concurrent version checks and AUR builds
    """

    def __init__(
        self,
        store: PackageRecordStore,
        adapters: Mapping[Source, BackendAdapter],
        max_workers: int = 4,
    ):
        self.store = store
        self.adapters = dict(adapters)
        self.max_workers = max(1, max_workers)

    def reconcile_all(self) -> ReconcileReport:
        """Update every tracked package that is stale."""
        return self.reconcile(UpdateTarget.EVERYTHING)

    def reconcile_source(self, source: Source | str) -> ReconcileReport:
        """Update the stale packages owned by one backend."""
        if not isinstance(source, Source):
            source = Source.parse(source)
        return self.reconcile(UpdateTarget(source.value))

    def reconcile_package(self, name: str) -> ReconcileReport:
        """
        Update one tracked package if it is stale.

        Raises:
            NotFoundError: If allpac does not manage the package
        """
        record = self.store.get(name)
        if record is None:
            raise NotFoundError(f"package {name} not found in package list", package=name)
        return self._run(name, [record])

    def reconcile(self, target: UpdateTarget) -> ReconcileReport:
        """Update the stale packages within an update target."""
        sources = set(target.sources)
        records = [r for r in self.store.load().values() if r.source in sources]
        return self._run(target.value, records)

    def _run(self, scope: str, records: Sequence[PackageRecord]) -> ReconcileReport:
        start_time = time.time()
        logger.info(f"Checking {len(records)} tracked package(s) for updates ({scope})")

        stale, results = self.find_stale(records)

        batch_sources = [s for s in stale if s is not Source.AUR]
        if batch_sources:
            with ThreadPoolExecutor(max_workers=len(batch_sources)) as executor:
                future_to_source = {
                    executor.submit(self._update_batch, source, stale[source]): source
                    for source in batch_sources
                }
                for future in as_completed(future_to_source):
                    source = future_to_source[future]
                    try:
                        results.extend(future.result())
                    except PersistenceError:
                        raise
                    except Exception as e:
                        logger.error(f"Unexpected error updating {source.display_name} packages: {e}")
                        results.extend(_failed(c, str(e)) for c in stale[source])

        if stale.get(Source.AUR):
            results.extend(self._update_aur_concurrently(stale[Source.AUR]))

        report = ReconcileReport(
            scope=scope,
            results=tuple(sorted(results, key=lambda r: r.name)),
            duration_seconds=time.time() - start_time,
        )
        if report.success:
            logger.info(f"Update run ({scope}) finished: {len(report.updated)} updated")
        else:
            logger.warning(
                f"Update run ({scope}) finished with failures: "
                f"{', '.join(r.name for r in report.failures)}"
            )
        return report

    def find_stale(
        self,
        records: Sequence[PackageRecord],
    ) -> tuple[dict[Source, list[UpdateCandidate]], list[UpdateResult]]:
        """
        Query each record's backend for its latest version.

        Args:
            records: Tracked packages to check

        Returns:
            Tuple of (stale candidates per source, results for up-to-date and failed checks)
        """
        stale: dict[Source, list[UpdateCandidate]] = {}
        results: list[UpdateResult] = []
        if not records:
            return stale, results

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_record = {
                executor.submit(self._latest_version, record): record
                for record in records
            }
            for future in as_completed(future_to_record):
                record = future_to_record[future]
                try:
                    latest = future.result()
                except AllPacError as e:
                    logger.error(f"Error checking {record.name} ({record.source.display_name}): {e.message}")
                    results.append(_check_failed(record, e.message))
                    continue
                except Exception as e:
                    logger.error(f"Unexpected error checking {record.name} ({record.source.display_name}): {e}")
                    results.append(_check_failed(record, str(e)))
                    continue

                if latest == record.version:
                    logger.info(f"{record.name} is up to date ({record.version})")
                    results.append(UpdateResult(
                        name=record.name,
                        source=record.source,
                        status=STATUS_UP_TO_DATE,
                        previous_version=record.version,
                        new_version=record.version,
                    ))
                else:
                    candidate = UpdateCandidate(record.name, record.source, record.version, latest)
                    logger.info(f"{record.name} is stale: {candidate.version_jump_description()}")
                    stale.setdefault(record.source, []).append(candidate)

        for candidates in stale.values():
            candidates.sort(key=lambda c: c.name)
        return stale, results

    def _adapter(self, source: Source) -> BackendAdapter:
        adapter = self.adapters.get(source)
        if adapter is None:
            raise NotFoundError(f"backend {source.display_name} is not enabled", source=source.value)
        return adapter

    def _latest_version(self, record: PackageRecord) -> str:
        return self._adapter(record.source).latest_version(record.name)

    def _update_batch(self, source: Source, candidates: Sequence[UpdateCandidate]) -> list[UpdateResult]:
        """Run one native batch update and refresh the records it touched."""
        adapter = self._adapter(source)
        names = [c.name for c in candidates]
        try:
            adapter.batch_update(names)
        except AllPacError as e:
            logger.error(f"Error updating {source.display_name} packages: {e.message}")
            return [_failed(c, e.message) for c in candidates]

        results = []
        for candidate in candidates:
            try:
                version = adapter.installed_version(candidate.name)
            except AllPacError as e:
                logger.error(f"error getting new version for {candidate.name} after update: {e.message}")
                results.append(_failed(candidate, f"updated but version query failed: {e.message}"))
                continue
            self.store.upsert(candidate.name, source, version)
            results.append(UpdateResult(
                name=candidate.name,
                source=source,
                status=STATUS_UPDATED,
                previous_version=candidate.current_version,
                new_version=version,
            ))
        return results

    def _rebuild_one(self, candidate: UpdateCandidate) -> UpdateResult:
        version = self._adapter(Source.AUR).install(candidate.name)
        self.store.upsert(candidate.name, Source.AUR, version)
        return UpdateResult(
            name=candidate.name,
            source=Source.AUR,
            status=STATUS_UPDATED,
            previous_version=candidate.current_version,
            new_version=version,
        )

    def _update_aur_concurrently(self, candidates: Sequence[UpdateCandidate]) -> list[UpdateResult]:
        """Rebuild AUR packages in parallel; every task is joined before returning."""
        results: list[UpdateResult] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_candidate = {
                executor.submit(self._rebuild_one, candidate): candidate
                for candidate in candidates
            }
            for future in as_completed(future_to_candidate):
                candidate = future_to_candidate[future]
                try:
                    results.append(future.result())
                except PersistenceError:
                    raise
                except AllPacError as e:
                    logger.error(f"Error updating AUR package {candidate.name}: {e.message}")
                    results.append(_failed(candidate, e.message))
                except Exception as e:
                    logger.error(f"Unexpected error updating AUR package {candidate.name}: {e}")
                    results.append(_failed(candidate, str(e)))
        return results
