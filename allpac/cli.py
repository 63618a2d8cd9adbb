"""
allpac - one command line for pacman, the AUR, Snap and Flatpak.

Usage:
    allpac update --everything          # Update every allpac-managed package
    allpac update --aur                 # Update one backend's packages
    allpac update --package NAME        # Update one package
    allpac install --packages a,b,c     # Search all backends and install
    allpac uninstall --packages a,b     # Remove allpac-managed packages
    allpac search NAME                  # Show raw results of every backend
    allpac rebuild --package NAME       # Rebuild an AUR package from scratch
    allpac clean-aur                    # Delete the AUR build cache
    allpac repair                       # Reinitialize the package list
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from . import __version__
from .common import split_package_names
from .config import Config, load_config, validate_config
from .errors import AllPacError
from .installer import SourceMatches
from .logging_config import setup_logging
from .manager import PackageManager
from .package_list import Source
from .render import (
    render_install,
    render_records,
    render_reconcile,
    render_search,
    render_uninstall,
)
from .toolcheck import check_prerequisites, format_prerequisite_report
from .updater import UpdateTarget

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def prompt_select_source(name: str, candidates: Sequence[SourceMatches]) -> int | None:
    """
    Ask the user which backend to install a package from.

    Returns:
        Zero-based index of the chosen candidate, or None if cancelled or not a number
    """
    print(f"\nMultiple sources found for {name}:", file=sys.stderr)
    for number, candidate in enumerate(candidates, start=1):
        print(f"  {number}) {candidate.display_name}: {candidate.lines[0]}", file=sys.stderr)

    try:
        response = input(f"Choose a source for {name} [1-{len(candidates)}]: ").strip()
    except (EOFError, KeyboardInterrupt):
        print("\nSelection cancelled.", file=sys.stderr)
        return None
    if not response.isdigit():
        return None
    return int(response) - 1


def prompt_confirm_build(name: str, source: Source) -> bool:
    """Ask before building a package from the AUR."""
    try:
        response = input(f"Build {name} from the {source.display_name}? [Y/n] ").strip().lower()
        return response in ("", "y", "yes")
    except (EOFError, KeyboardInterrupt):
        print("\nBuild cancelled.", file=sys.stderr)
        return False


def _update_target(args: argparse.Namespace) -> UpdateTarget | None:
    if args.everything:
        return UpdateTarget.EVERYTHING
    if args.arch:
        return UpdateTarget.PACMAN
    if args.snap:
        return UpdateTarget.SNAP
    if args.flats:
        return UpdateTarget.FLATPAK
    if args.aur:
        return UpdateTarget.AUR
    return None


def cmd_update(manager: PackageManager, args: argparse.Namespace) -> int:
    """Update stale allpac-managed packages."""
    if args.package:
        report = manager.reconcile_package(args.package)
    else:
        report = manager.update(_update_target(args))
    print(render_reconcile(report))
    return EXIT_OK if report.success else EXIT_FAILURE


def cmd_install(manager: PackageManager, args: argparse.Namespace) -> int:
    """Install packages from whichever backend offers them."""
    names = split_package_names(args.packages)
    if not names:
        print("No package names given", file=sys.stderr)
        return EXIT_USAGE
    report = manager.resolve_and_install(names)
    print(render_install(report))
    return EXIT_OK if report.success else EXIT_FAILURE


def cmd_uninstall(manager: PackageManager, args: argparse.Namespace) -> int:
    """Uninstall allpac-managed packages."""
    names = split_package_names(args.packages)
    if not names:
        print("No package names given", file=sys.stderr)
        return EXIT_USAGE
    report = manager.uninstall(names)
    print(render_uninstall(report))
    return EXIT_OK if report.success else EXIT_FAILURE


def cmd_search(manager: PackageManager, args: argparse.Namespace) -> int:
    """Search every backend."""
    result = manager.search_all(args.name)
    print(render_search(result))
    return EXIT_FAILURE if result.errors and not result.matches else EXIT_OK


def cmd_rebuild(manager: PackageManager, args: argparse.Namespace) -> int:
    """Rebuild one AUR package."""
    record = manager.rebuild(args.package)
    print(f"Rebuilt {record.name} {record.version}")
    return EXIT_OK


def cmd_clean_aur(manager: PackageManager, args: argparse.Namespace) -> int:
    """Delete the AUR build cache."""
    manager.clear_cache()
    print(f"AUR cache cleared: {manager.config.cache_path}")
    return EXIT_OK


def cmd_repair(manager: PackageManager, args: argparse.Namespace) -> int:
    """Reinitialize the package list."""
    manager.repair()
    print(f"Package list reinitialized: {manager.config.package_list_path}")
    return EXIT_OK


def cmd_list(manager: PackageManager, args: argparse.Namespace) -> int:
    """Print tracked packages."""
    print(render_records(manager.list_records()))
    return EXIT_OK


def cmd_check(config: Config) -> int:
    """Report missing native tools."""
    sources = [Source(s) for s in config.enabled_backends]
    result = check_prerequisites(sources)
    print(format_prerequisite_report(result))
    for warning in validate_config(config):
        print(f"⚠️  {warning}")
    return EXIT_FAILURE if result.fatal else EXIT_OK


COMMANDS = {
    "update": cmd_update,
    "install": cmd_install,
    "uninstall": cmd_uninstall,
    "search": cmd_search,
    "rebuild": cmd_rebuild,
    "clean-aur": cmd_clean_aur,
    "repair": cmd_repair,
    "list": cmd_list,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="allpac",
        description="Unified package management for pacman, the AUR, Snap and Flatpak",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", help="Path to a configuration file (YAML or JSON)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only log warnings and errors")
    parser.add_argument("--log-file", help="Log file (default: <state_dir>/logs/allpac.log)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    update = subparsers.add_parser("update", help="Update allpac-managed packages")
    scope = update.add_mutually_exclusive_group(required=True)
    scope.add_argument("--everything", action="store_true", help="Update packages from every backend")
    scope.add_argument("--arch", action="store_true", help="Update pacman packages")
    scope.add_argument("--snap", action="store_true", help="Update Snap packages")
    scope.add_argument("--flats", action="store_true", help="Update Flatpak packages")
    scope.add_argument("--aur", action="store_true", help="Update AUR packages")
    scope.add_argument("--package", metavar="NAME", help="Update a single package")

    install = subparsers.add_parser("install", help="Install packages")
    install.add_argument("--packages", required=True, help="Comma-separated package names")
    install.add_argument("--yes", "-y", action="store_true", help="Pick sources by priority and build without asking")

    uninstall = subparsers.add_parser("uninstall", help="Uninstall allpac-managed packages")
    uninstall.add_argument("--packages", required=True, help="Comma-separated package names")

    search = subparsers.add_parser("search", help="Search every backend")
    search.add_argument("name", help="Package name")

    rebuild = subparsers.add_parser("rebuild", help="Rebuild an AUR package from a fresh clone")
    rebuild.add_argument("--package", required=True, metavar="NAME", help="AUR package name")

    subparsers.add_parser("clean-aur", help="Delete the AUR build cache")
    subparsers.add_parser("repair", help="Reinitialize the package list")
    subparsers.add_parser("check", help="Check for the native tools each backend needs")
    subparsers.add_parser("list", help="List allpac-managed packages")
    subparsers.add_parser("version", help="Show the allpac version")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the allpac command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "version":
        print(f"allpac {__version__}")
        return EXIT_OK

    try:
        config = load_config(custom_path=args.config, verbose=args.verbose)
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        return EXIT_USAGE

    setup_logging(
        verbose=args.verbose,
        quiet=args.quiet,
        log_file=args.log_file or str(config.log_path),
    )

    if args.command == "check":
        return cmd_check(config)

    interactive = not (getattr(args, "yes", False) or config.preferences.assume_yes)
    try:
        with PackageManager(
            config,
            selector=prompt_select_source if interactive else None,
            confirm=prompt_confirm_build if interactive else None,
            verbose=args.verbose,
        ) as manager:
            return COMMANDS[args.command](manager, args)
    except AllPacError as e:
        logger.error(e.message)
        if e.remediation:
            logger.error(f"Remediation: {e.remediation}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
