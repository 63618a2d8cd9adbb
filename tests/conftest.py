"""
Shared fixtures: an in-memory backend adapter and a temporary package list.
"""

import threading

import pytest

from allpac.backends import BackendAdapter
from allpac.errors import BackendError, InstallError, NotFoundError, UninstallError
from allpac.package_list import PackageRecordStore


class FakeAdapter(BackendAdapter):
    """
    Backend adapter that never leaves the process.

    Args:
        source: Source the adapter pretends to be
        search_results: Raw lines returned by search()
        latest: Latest version per package
        installed: Installed version per package
        fail_install: Package names whose install raises InstallError
        fail_update: Make batch_update raise BackendError
        search_error: Make search raise BackendError with this message
    """

    def __init__(
        self,
        source,
        search_results=(),
        latest=None,
        installed=None,
        fail_install=(),
        fail_update=False,
        search_error=None,
    ):
        super().__init__(timeout=5, use_sudo=False)
        self.source = source
        self.search_results = list(search_results)
        self.latest = dict(latest or {})
        self.installed = dict(installed or {})
        self.fail_install = set(fail_install)
        self.fail_update = fail_update
        self.search_error = search_error
        self.calls = []
        self.discarded = []
        self._lock = threading.Lock()

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)

    def calls_to(self, method):
        return [call for call in self.calls if call[0] == method]

    def is_available(self):
        return True

    def search(self, name):
        self._record("search", name)
        if self.search_error:
            raise BackendError(self.search_error, source=self.source.value)
        return list(self.search_results)

    def latest_version(self, name):
        self._record("latest_version", name)
        if name not in self.latest:
            raise NotFoundError(f"package {name} not found", package=name, source=self.source.value)
        return self.latest[name]

    def installed_version(self, name):
        self._record("installed_version", name)
        if name not in self.installed:
            raise NotFoundError(f"package {name} is not installed", package=name, source=self.source.value)
        return self.installed[name]

    def install(self, name):
        self._record("install", name)
        if name in self.fail_install:
            raise InstallError(f"build of {name} failed", package=name, source=self.source.value)
        version = self.latest.get(name, "1.0-1")
        with self._lock:
            self.installed[name] = version
        return version

    def uninstall(self, name):
        self._record("uninstall", name)
        if name not in self.installed:
            raise UninstallError(f"{name} is not installed", package=name, source=self.source.value)
        with self._lock:
            del self.installed[name]

    def batch_update(self, names):
        self._record("batch_update", tuple(names))
        if self.fail_update:
            raise BackendError(f"Error updating {self.display_name} packages", source=self.source.value)
        with self._lock:
            for name in names:
                self.installed[name] = self.latest[name]

    def discard_cache(self, name):
        self._record("discard_cache", name)
        self.discarded.append(name)


@pytest.fixture
def fake_adapter():
    """FakeAdapter class, called as fake_adapter(Source.PACMAN, ...)."""
    return FakeAdapter


@pytest.fixture
def store(tmp_path):
    """Open package list store in a temporary state directory."""
    package_store = PackageRecordStore(tmp_path / "pkg.list").open()
    yield package_store
    package_store.close()
