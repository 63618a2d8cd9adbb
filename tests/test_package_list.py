"""
Tests for the package list store (allpac/package_list.py).
"""

import json
import os
import threading
from unittest.mock import patch

import pytest

from allpac.errors import PersistenceError
from allpac.package_list import (
    PackageRecord,
    PackageRecordStore,
    Source,
    parse_records,
    serialize_records,
)


class TestSource:
    """Tests for the Source enum."""

    def test_parse_id_and_display_name(self):
        """Test parsing source ids and display names case-insensitively."""
        assert Source.parse("pacman") is Source.PACMAN
        assert Source.parse("Flatpak") is Source.FLATPAK
        assert Source.parse(" AUR ") is Source.AUR
        assert Source.parse("SNAP") is Source.SNAP

    def test_parse_unknown(self):
        """Test that unknown sources raise ValueError."""
        with pytest.raises(ValueError, match="Unknown package source"):
            Source.parse("apt")

    def test_display_names(self):
        """Test display names."""
        assert [s.display_name for s in Source] == ["Pacman", "Snap", "Flatpak", "AUR"]

    def test_str_is_value(self):
        """Test str() gives the persisted id."""
        assert str(Source.AUR) == "aur"


class TestPackageRecord:
    """Tests for PackageRecord serialization."""

    def test_to_dict(self):
        """Test the persisted value object."""
        record = PackageRecord("vim", Source.PACMAN, "9.1.0-1")
        assert record.to_dict() == {"source": "pacman", "version": "9.1.0-1"}

    def test_from_dict(self):
        """Test loading a persisted value object."""
        record = PackageRecord.from_dict("yay", {"source": "aur", "version": "12.3.5-1"})
        assert record == PackageRecord("yay", Source.AUR, "12.3.5-1")

    def test_from_dict_unknown_source(self):
        """Test that an unknown source is a persistence error."""
        with pytest.raises(PersistenceError, match="Unknown source 'apt'"):
            PackageRecord.from_dict("vim", {"source": "apt", "version": "1"})

    def test_from_dict_malformed(self):
        """Test that non-object entries are rejected."""
        with pytest.raises(PersistenceError, match="Malformed entry"):
            PackageRecord.from_dict("vim", "pacman")
        with pytest.raises(PersistenceError, match="Malformed entry"):
            PackageRecord.from_dict("vim", {"source": "pacman", "version": 3})

    def test_immutable(self):
        """Test that records are frozen."""
        record = PackageRecord("vim", Source.PACMAN, "1")
        with pytest.raises(AttributeError):
            record.version = "2"


class TestSerialization:
    """Tests for the JSON document form."""

    def test_empty_round_trip(self):
        """Test that {} survives serialize -> parse."""
        assert serialize_records({}) == "{}\n"
        assert parse_records(serialize_records({})) == {}

    def test_empty_text_is_empty_list(self):
        """Test that an empty file is treated as an empty list."""
        assert parse_records("") == {}
        assert parse_records("  \n") == {}

    def test_document_shape(self):
        """Test the persisted JSON shape."""
        records = {"firefox": PackageRecord("firefox", Source.SNAP, "128.0")}
        assert json.loads(serialize_records(records)) == {
            "firefox": {"source": "snap", "version": "128.0"}
        }

    def test_parse_invalid_json(self):
        """Test that invalid JSON is a persistence error."""
        with pytest.raises(PersistenceError, match="Error decoding package list"):
            parse_records("{not json")

    def test_parse_non_object(self):
        """Test that a JSON array is rejected."""
        with pytest.raises(PersistenceError, match="top level must be a JSON object"):
            parse_records("[]")


class TestPackageRecordStore:
    """Tests for PackageRecordStore."""

    def test_open_initializes_missing_file(self, tmp_path):
        """Test that first use creates an empty package list."""
        path = tmp_path / "state" / "pkg.list"
        with PackageRecordStore(path) as store:
            assert store.load() == {}
        assert path.read_text() == "{}\n"

    def test_upsert_then_get(self, store):
        """Test that an inserted record is returned by get."""
        store.upsert("neovim", Source.PACMAN, "0.10.0-1")
        assert store.get("neovim") == PackageRecord("neovim", Source.PACMAN, "0.10.0-1")

    def test_get_missing(self, store):
        """Test get for a name that is not tracked."""
        assert store.get("emacs") is None

    def test_upsert_overwrites(self, store):
        """Test that upsert replaces the previous record."""
        store.upsert("neovim", Source.PACMAN, "0.9.5-1")
        store.upsert("neovim", Source.PACMAN, "0.10.0-1")
        assert store.get("neovim").version == "0.10.0-1"
        assert len(store.load()) == 1

    def test_upsert_unchanged_does_not_write(self, store):
        """Test that re-recording the same record skips the write."""
        store.upsert("neovim", Source.PACMAN, "0.10.0-1")
        with patch.object(store, "_write") as mock_write:
            store.upsert("neovim", Source.PACMAN, "0.10.0-1")
        mock_write.assert_not_called()

    def test_remove(self, store):
        """Test removing a tracked package."""
        store.upsert("yay", Source.AUR, "12.3.5-1")
        assert store.remove("yay") is True
        assert store.get("yay") is None

    def test_remove_is_idempotent(self, store):
        """Test that removing twice leaves the same state as removing once."""
        store.upsert("yay", Source.AUR, "12.3.5-1")
        store.upsert("vim", Source.PACMAN, "9.1-1")
        store.remove("yay")
        after_first = store.path.read_text()
        assert store.remove("yay") is False
        assert store.path.read_text() == after_first

    def test_save_load_round_trip(self, store):
        """Test that save followed by load returns an equal mapping."""
        records = {
            "vim": PackageRecord("vim", Source.PACMAN, "9.1-1"),
            "spotify": PackageRecord("spotify", Source.SNAP, "1.2.3"),
            "org.gimp.GIMP": PackageRecord("org.gimp.GIMP", Source.FLATPAK, "2.10.38"),
        }
        store.save(records)
        assert store.load() == records

    def test_records_by_source(self, store):
        """Test grouping tracked names by source."""
        store.upsert("zsh", Source.PACMAN, "5.9-5")
        store.upsert("bash", Source.PACMAN, "5.2-1")
        store.upsert("yay", Source.AUR, "12.3.5-1")
        grouped = store.records_by_source()
        assert grouped == {Source.PACMAN: ["bash", "zsh"], Source.AUR: ["yay"]}

    def test_reset(self, store):
        """Test reinitializing the package list."""
        store.upsert("vim", Source.PACMAN, "9.1-1")
        store.reset()
        assert store.load() == {}

    def test_closed_store_rejects_access(self, tmp_path):
        """Test that a closed store raises PersistenceError."""
        store = PackageRecordStore(tmp_path / "pkg.list").open()
        store.close()
        assert store.closed
        with pytest.raises(PersistenceError, match="closed"):
            store.load()

    def test_corrupt_file(self, tmp_path):
        """Test that a corrupt package list surfaces as PersistenceError."""
        path = tmp_path / "pkg.list"
        path.write_text("{broken")
        store = PackageRecordStore(path)
        with pytest.raises(PersistenceError):
            store.open()

    def test_failed_write_keeps_previous_file(self, store):
        """Test that a failed replace leaves the old file and no temp file."""
        store.upsert("vim", Source.PACMAN, "9.1-1")
        before = store.path.read_text()

        with patch("allpac.package_list.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(PersistenceError, match="disk full"):
                store.upsert("emacs", Source.PACMAN, "29.4-1")

        assert store.path.read_text() == before
        assert not os.path.exists(str(store.path) + ".tmp")

    def test_concurrent_upserts(self, store):
        """Test that parallel writers never lose updates."""
        def worker(index):
            store.upsert(f"pkg{index}", Source.AUR, f"{index}.0-1")

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        records = store.load()
        assert len(records) == 20
        assert records["pkg7"].version == "7.0-1"
