"""
Output rendering and formatting.

Tables are aligned by display width (wcwidth) so emoji status icons and
wide package descriptions line up; ANSI colors are ignored when measuring.
"""

from __future__ import annotations

import os
import re
from typing import Sequence

from wcwidth import wcswidth

from .installer import BulkInstallReport, BulkUninstallReport, SearchResult, is_exact_match
from .package_list import PackageRecord
from .updater import ReconcileReport


# Environment options
USE_EMOJI = os.environ.get("ALLPAC_EMOJI", "1") == "1"
USE_COLOR = os.environ.get("ALLPAC_COLOR", "1") == "1"

# ANSI color codes
GREEN = "\033[32m"
YELLOW = "\033[33m"
BLUE = "\033[34m"
RED = "\033[31m"
RESET = "\033[0m"

CSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")

STATUS_COLORS = {
    "installed": GREEN,
    "updated": GREEN,
    "removed": GREEN,
    "up-to-date": BLUE,
    "skipped": YELLOW,
    "no-match": YELLOW,
    "not-managed": YELLOW,
    "failed": RED,
}

_EMOJI_ICONS = {
    "installed": "✅",
    "updated": "⬆",
    "removed": "🗑",
    "up-to-date": "✅",
    "skipped": "⏭",
    "no-match": "❓",
    "not-managed": "❓",
    "failed": "❌",
}

_PLAIN_ICONS = {
    "installed": "+",
    "updated": "↑",
    "removed": "-",
    "up-to-date": "✓",
    "skipped": ">",
    "no-match": "?",
    "not-managed": "?",
    "failed": "x",
}


def status_icon(status: str) -> str:
    """Get status icon for an outcome status."""
    icons = _EMOJI_ICONS if USE_EMOJI else _PLAIN_ICONS
    return icons.get(status, "?")


def colorize(text: str, color: str) -> str:
    """Apply color to text.

    Args:
        text: Text to colorize
        color: ANSI color code

    Returns:
        Colored text or plain text if colors disabled
    """
    if not USE_COLOR or not text:
        return text
    return f"{color}{text}{RESET}"


def display_width(text: str) -> int:
    """Terminal columns needed to show text, ignoring ANSI escapes."""
    visible = CSI_RE.sub("", text)
    width = wcswidth(visible)
    return width if width >= 0 else len(visible)


def format_table(rows: Sequence[Sequence[str]], header: bool = True, pad: int = 2) -> list[str]:
    """
    Align rows into columns by display width.

    Args:
        rows: Table rows (first row is the header when header=True)
        header: Draw a rule under the first row
        pad: Spaces between columns

    Returns:
        Formatted lines (trailing whitespace stripped)
    """
    if not rows:
        return []
    ncol = max(len(r) for r in rows)
    widths = [0] * ncol
    for row in rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], display_width(cell))

    lines = []
    for index, row in enumerate(rows):
        cells = []
        for i in range(ncol):
            cell = row[i] if i < len(row) else ""
            cells.append(cell + " " * (widths[i] - display_width(cell)))
        lines.append((" " * pad).join(cells).rstrip())
        if header and index == 0:
            lines.append((" " * pad).join("-" * w for w in widths))
    return lines


def _status_cell(status: str) -> str:
    return colorize(f"{status_icon(status)} {status}", STATUS_COLORS.get(status, ""))


def render_records(records: Sequence[PackageRecord]) -> str:
    """Render tracked packages as a table."""
    if not records:
        return "No packages are managed by allpac"
    rows = [["package", "source", "version"]]
    rows.extend([r.name, r.source.display_name, r.version] for r in records)
    return "\n".join(format_table(rows))


def render_search(result: SearchResult) -> str:
    """Render search results grouped by backend; exact matches are flagged."""
    lines: list[str] = []
    for entry in result.matches:
        lines.append(colorize(f"{entry.display_name} ({len(entry.lines)})", BLUE))
        for line in entry.lines:
            marker = "*" if is_exact_match(line, result.package_name) else " "
            lines.append(f" {marker} {line}")
    for source, message in result.errors.items():
        lines.append(colorize(f"{source.display_name}: search failed: {message}", RED))
    if not lines:
        lines.append(f"No results found for {result.package_name}")
    return "\n".join(lines)


def render_reconcile(report: ReconcileReport) -> str:
    """Render an update report."""
    rows = [["status", "package", "source", "version", "detail"]]
    for r in report.results:
        if r.status == "updated":
            version = f"{r.previous_version} → {r.new_version}"
        else:
            version = r.previous_version
        rows.append([_status_cell(r.status), r.name, r.source.display_name, version, r.error_message or ""])
    body = "\n".join(format_table(rows)) if report.results else f"Nothing to update ({report.scope})"
    return body + "\n" + report.summary().strip()


def render_install(report: BulkInstallReport) -> str:
    """Render an install report."""
    rows = [["status", "package", "source", "version", "detail"]]
    for o in report.outcomes:
        source = o.source.display_name if o.source else ""
        rows.append([_status_cell(o.status), o.name, source, o.version or "", o.error_message or ""])
    return "\n".join(format_table(rows))


def render_uninstall(report: BulkUninstallReport) -> str:
    """Render an uninstall report."""
    rows = [["status", "package", "source", "detail"]]
    for o in report.outcomes:
        source = o.source.display_name if o.source else ""
        rows.append([_status_cell(o.status), o.name, source, o.error_message or ""])
    return "\n".join(format_table(rows))
