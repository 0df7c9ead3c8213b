"""Check command implementation for npmkeeper.

Reads the ``dependencies`` and ``devDependencies`` of a ``package.json``,
refreshes registry metadata for each (reusing the on-disk cache while it
is younger than ``cache_minutes``), and reports the best major, minor,
patch and prerelease upgrade per dependency.

Typical usage::

    # Show every dependency and its upgrades
    $ npmkeeper check

    # Only dependencies with something to upgrade, as JSON
    $ npmkeeper check --outdated-only --format json > report.json
"""

from __future__ import annotations

import sys
import click
import asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional

from npmkeeper.config import NpmKeeperConfig
from npmkeeper.constants import UPDATE_TYPES
from npmkeeper.context import pass_context, NpmKeeperContext
from npmkeeper.core.manifest import DeclaredDependency, read_dependencies
from npmkeeper.core.session import UpgradeSession
from npmkeeper.exceptions import NpmKeeperError
from npmkeeper.models.update_info import DependencyUpdateInfo
from npmkeeper.utils.console import (
    colorize_update_type,
    print_error,
    print_json,
    print_success,
    print_table,
    print_warning,
)
from npmkeeper.utils.logger import get_logger

logger = get_logger("commands.check")

#: Status of a dependency whose metadata could not be fetched.
UNAVAILABLE = "unavailable"
#: Status of a dependency whose specifier could not be parsed.
INVALID = "invalid"


@click.command()
@click.argument(
    "file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default="package.json",
)
@click.option(
    "--outdated-only",
    is_flag=True,
    help="Show only dependencies with available upgrades.",
)
@click.option(
    "--format",
    "-f",
    type=click.Choice(["table", "json"], case_sensitive=False),
    default="table",
    help="Output format.",
)
@pass_context
def check(
    ctx: NpmKeeperContext,
    file: Path,
    outdated_only: bool,
    format: str,
) -> None:
    """Check package.json for available upgrades.

    Exits 0 if everything is up to date, 1 if upgrades are available or an
    error occurred.
    """
    try:
        has_updates = asyncio.run(_check_async(ctx.config, file, outdated_only, format))
    except NpmKeeperError as exc:
        print_error(str(exc))
        sys.exit(1)
    except Exception as exc:
        print_error(f"Unexpected error: {exc}")
        logger.exception("Error in check command")
        sys.exit(1)

    sys.exit(1 if has_updates else 0)


async def _check_async(
    config: NpmKeeperConfig,
    file: Path,
    outdated_only: bool,
    format: str,
) -> bool:
    """Run the check; returns whether any dependency can be upgraded."""
    show_progress = format == "table"
    logger.info("Checking %s...", file)

    async with UpgradeSession(config) as session:
        dependencies = [d for d in read_dependencies(file) if not session.is_ignored(d.name)]
        if not dependencies:
            if show_progress:
                print_warning("No dependencies found")
            return False

        logger.info("Found %d dependencies", len(dependencies))
        await session.refresh({d.name for d in dependencies})
        await session.drain()

        reports = [_report(session, dep) for dep in dependencies]

    outdated = [r for r in reports if r["upgrades"]]
    if outdated_only:
        reports = outdated

    if format == "json":
        print_json(reports)
        return bool(outdated)

    if not reports:
        print_success("All dependencies are up to date!")
        return False

    _display_table(reports)
    if outdated:
        print_warning(f"\n{len(outdated)} dependencies have upgrades available")
    else:
        print_success("\nAll dependencies are up to date!")
    return bool(outdated)


def _report(session: UpgradeSession, dependency: DeclaredDependency) -> Dict[str, Any]:
    info: Optional[DependencyUpdateInfo] = session.classify(dependency.name, dependency.specifier)

    if info is None:
        status = UNAVAILABLE
        upgrades: Dict[str, str] = {}
    elif not info.valid_version:
        status = INVALID
        upgrades = {}
    else:
        upgrades = {kind: record.version for kind, record in info.upgrades().items()}
        status = "outdated" if upgrades else "current"

    return {
        "name": dependency.name,
        "section": dependency.section,
        "specifier": dependency.specifier,
        "status": status,
        "existing_version": bool(info and info.existing_version),
        "upgrades": upgrades,
        "changelog": session.changelog_url(dependency.name),
    }


def _display_table(reports: List[Dict[str, Any]]) -> None:
    headers = ["Package", "Current", *(t.capitalize() for t in UPDATE_TYPES), "Changelog"]
    rows = []
    for report in reports:
        row: Dict[str, Any] = {
            "Package": report["name"],
            "Current": report["specifier"],
            "Changelog": report["changelog"] or "",
        }
        if report["status"] in (UNAVAILABLE, INVALID):
            row["Major"] = f"[dim]{report['status']}[/dim]"
        for update_type in UPDATE_TYPES:
            version = report["upgrades"].get(update_type)
            if version is not None:
                row[update_type.capitalize()] = (
                    f"{version} ({colorize_update_type(update_type)})"
                )
        rows.append(row)

    print_table(rows, headers=headers, title="Dependency Upgrades")
