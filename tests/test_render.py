"""
Tests for output rendering (allpac/render.py).
"""

import pytest

from allpac import render
from allpac.installer import BulkInstallReport, InstallOutcome, SearchResult, SourceMatches
from allpac.package_list import PackageRecord, Source
from allpac.updater import ReconcileReport, UpdateResult


@pytest.fixture(autouse=True)
def plain_output(monkeypatch):
    """Render without ANSI colors."""
    monkeypatch.setattr(render, "USE_COLOR", False)
    monkeypatch.setattr(render, "USE_EMOJI", True)


class TestDisplayWidth:
    """Tests for display width calculation."""

    def test_ascii(self):
        """Test plain text width."""
        assert render.display_width("pacman") == 6

    def test_ansi_ignored(self):
        """Test that color codes take no columns."""
        assert render.display_width("\033[32mok\033[0m") == 2

    def test_wide_characters(self):
        """Test that emoji and CJK occupy two columns."""
        assert render.display_width("✅") == 2
        assert render.display_width("日本") == 4


class TestFormatTable:
    """Tests for format_table."""

    def test_alignment_by_display_width(self):
        """Test that columns line up even with wide cells."""
        lines = render.format_table([["a", "b"], ["日本", "x"], ["abc", "y"]])
        assert lines[0] == "a     b"
        assert lines[1] == "----  -"
        assert lines[2] == "日本  x"
        assert lines[3] == "abc   y"

    def test_empty(self):
        """Test that no rows produce no lines."""
        assert render.format_table([]) == []


class TestStatusIcon:
    """Tests for status icons."""

    def test_emoji_and_plain(self, monkeypatch):
        """Test both icon sets."""
        assert render.status_icon("failed") == "❌"
        monkeypatch.setattr(render, "USE_EMOJI", False)
        assert render.status_icon("failed") == "x"
        assert render.status_icon("unknown-status") == "?"


class TestRenderers:
    """Tests for report renderers."""

    def test_render_records(self):
        """Test the tracked package listing."""
        output = render.render_records([
            PackageRecord("vim", Source.PACMAN, "9.1-1"),
            PackageRecord("yay", Source.AUR, "12.3.5-1"),
        ])
        assert "vim" in output and "Pacman" in output
        assert "12.3.5-1" in output

    def test_render_records_empty(self):
        """Test the empty listing."""
        assert render.render_records([]) == "No packages are managed by allpac"

    def test_render_search_marks_exact_matches(self):
        """Test grouping by backend with exact-match markers."""
        result = SearchResult(
            package_name="foo",
            matches=(SourceMatches(Source.PACMAN, ("foo 1.0-1", "foobar 2.0-1")),),
            errors={Source.SNAP: "snapd is not running"},
        )
        lines = render.render_search(result).splitlines()
        assert lines[0] == "Pacman (2)"
        assert lines[1] == " * foo 1.0-1"
        assert lines[2] == "   foobar 2.0-1"
        assert "Snap: search failed" in lines[3]

    def test_render_search_empty(self):
        """Test a search without any results."""
        result = SearchResult(package_name="zzz", matches=())
        assert render.render_search(result) == "No results found for zzz"

    def test_render_reconcile(self):
        """Test the update report table and summary."""
        report = ReconcileReport(
            scope="everything",
            results=(UpdateResult("vim", Source.PACMAN, "updated", "9.0-1", "9.1-1"),),
            duration_seconds=0.2,
        )
        output = render.render_reconcile(report)
        assert "9.0-1 → 9.1-1" in output
        assert "Updated: 1" in output

    def test_render_install(self):
        """Test the install report table."""
        report = BulkInstallReport(
            requested=("foo",),
            outcomes=(InstallOutcome("foo", "no-match", error_message="no exact match found for foo"),),
            duration_seconds=0.1,
        )
        output = render.render_install(report)
        assert "no-match" in output
        assert "no exact match found for foo" in output
