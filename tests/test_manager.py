"""
Tests for the PackageManager facade (allpac/manager.py).
"""

from unittest.mock import patch

import pytest

from allpac.config import Config, Preferences
from allpac.manager import PackageManager
from allpac.package_list import PackageRecordStore, Source
from allpac.updater import UpdateTarget


@pytest.fixture
def config(tmp_path, monkeypatch):
    monkeypatch.setenv("ALLPAC_HOME", str(tmp_path))
    return Config(preferences=Preferences(source_priority=("aur", "pacman")))


@pytest.fixture
def adapters(fake_adapter):
    return {
        Source.PACMAN: fake_adapter(
            Source.PACMAN,
            search_results=["firefox 128.0-1"],
            latest={"firefox": "128.0-1"},
        ),
        Source.AUR: fake_adapter(
            Source.AUR,
            search_results=["firefox 129.0-1"],
            latest={"firefox": "129.0-1"},
        ),
    }


class TestPackageManager:
    """Tests for PackageManager wiring."""

    def test_store_opened_and_closed(self, config, adapters):
        """Test the context manager lifecycle."""
        with PackageManager(config, adapters=adapters) as manager:
            assert not manager.store.closed
            assert manager.store.path == config.package_list_path
        assert manager.store.closed

    def test_default_selector_uses_priority(self, config, adapters):
        """Test that without a selector the configured priority picks the source."""
        with PackageManager(config, adapters=adapters) as manager:
            report = manager.resolve_and_install(["firefox"])
            assert report.installed[0].source == Source.AUR
            assert manager.list_records()[0].version == "129.0-1"

    def test_custom_selector(self, config, adapters):
        """Test that an explicit selector overrides the priority."""
        with PackageManager(config, adapters=adapters, selector=lambda name, candidates: 0) as manager:
            report = manager.resolve_and_install(["firefox"])
        assert report.installed[0].source == Source.PACMAN

    def test_update_and_list(self, config, adapters, tmp_path):
        """Test the update entry point with an existing package list."""
        with PackageRecordStore(config.package_list_path) as store:
            store.upsert("firefox", Source.PACMAN, "127.0-1")
        with PackageManager(config, adapters=adapters) as manager:
            report = manager.update(UpdateTarget.PACMAN)
            assert [r.status for r in report.results] == ["updated"]
            assert [r.version for r in manager.list_records()] == ["128.0-1"]

    def test_repair(self, config, adapters):
        """Test that repair empties the package list."""
        with PackageManager(config, adapters=adapters) as manager:
            manager.resolve_and_install(["firefox"])
            manager.repair()
            assert manager.list_records() == []

    def test_maintenance_uses_aur_adapter(self, config, adapters):
        """Test that rebuild goes through the AUR adapter."""
        with PackageManager(config, adapters=adapters) as manager:
            manager.resolve_and_install(["firefox"])
            record = manager.rebuild("firefox")
        assert record.version == "129.0-1"
        assert adapters[Source.AUR].discarded == ["firefox"]

    def test_check_covers_enabled_backends(self, config, adapters):
        """Test the prerequisite check over configured backends."""
        with patch("allpac.toolcheck.shutil.which", return_value="/usr/bin/x"):
            with PackageManager(config, adapters=adapters) as manager:
                result = manager.check()
        assert result.ok
        assert set(result.found) == {"pacman", "git", "makepkg"}

    def test_adapters_built_from_config(self, config, fake_adapter):
        """Test that adapters come from build_adapters when not given."""
        built = {Source.PACMAN: fake_adapter(Source.PACMAN)}
        with patch("allpac.manager.build_adapters", return_value=built) as mock_build:
            with PackageManager(config, verbose=True) as manager:
                assert manager.adapters == built
        mock_build.assert_called_once_with(config, True)
