"""Update command implementation for npmkeeper.

Moves every dependency in a ``package.json`` to its best upgrade (the
highest of major, minor, patch, prerelease that is not excluded), keeping
the declared range operator: ``"^1.0.0"`` becomes ``"^2.1.1"``.

Typical usage::

    # Preview changes without applying
    $ npmkeeper update --dry-run

    # Update only specific dependencies
    $ npmkeeper update -p react -p react-dom

    # Create backup and skip confirmation
    $ npmkeeper update --backup -y
"""

from __future__ import annotations

import sys
import shutil
import asyncio
import dataclasses
from pathlib import Path
from typing import Dict, List, Tuple

import click

from npmkeeper.config import NpmKeeperConfig
from npmkeeper.context import pass_context, NpmKeeperContext
from npmkeeper.core.manifest import DeclaredDependency, read_dependencies, rewrite_specifiers
from npmkeeper.core.session import UpgradeSession
from npmkeeper.exceptions import NpmKeeperError
from npmkeeper.utils.console import (
    colorize_update_type,
    confirm,
    print_error,
    print_success,
    print_table,
    print_warning,
)
from npmkeeper.utils.filesystem import (
    create_timestamped_backup,
    safe_read_file,
    safe_write_file,
)
from npmkeeper.utils.logger import get_logger

logger = get_logger("commands.update")

#: (dependency, new version, update type)
PlannedUpdate = Tuple[DeclaredDependency, str, str]


@click.command()
@click.argument(
    "file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default="package.json",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Preview changes without applying them.",
)
@click.option(
    "--yes",
    "-y",
    is_flag=True,
    help="Skip confirmation prompt.",
)
@click.option(
    "--backup",
    is_flag=True,
    help="Create backup file before updating.",
)
@click.option(
    "--packages",
    "-p",
    multiple=True,
    help="Update only specific dependencies (can be repeated).",
)
@pass_context
def update(
    ctx: NpmKeeperContext,
    file: Path,
    dry_run: bool,
    yes: bool,
    backup: bool,
    packages: Tuple[str, ...],
) -> None:
    """Update package.json dependencies to their latest allowed versions."""
    try:
        asyncio.run(_update_async(ctx.config, file, dry_run, yes, backup, list(packages)))
    except NpmKeeperError as exc:
        print_error(str(exc))
        sys.exit(1)
    except Exception as exc:
        print_error(f"Unexpected error: {exc}")
        logger.exception("Error in update command")
        sys.exit(1)

    sys.exit(0)


async def _update_async(
    config: NpmKeeperConfig,
    file: Path,
    dry_run: bool,
    skip_confirm: bool,
    backup: bool,
    package_filter: List[str],
) -> None:
    logger.info("Checking %s for updates...", file)

    async with UpgradeSession(dataclasses.replace(config, fetch_changelogs=False)) as session:
        dependencies = [d for d in read_dependencies(file) if not session.is_ignored(d.name)]
        if package_filter:
            wanted = set(package_filter)
            dependencies = [d for d in dependencies if d.name in wanted]
            if not dependencies:
                print_warning(f"No matching dependencies found: {', '.join(package_filter)}")
                return

        await session.refresh({d.name for d in dependencies})
        updates = _plan_updates(session, dependencies)

    if not updates:
        print_success("All dependencies are up to date!")
        return

    _display_update_plan(updates, dry_run)

    if dry_run:
        print_warning("\nDry run mode - no changes applied")
        return

    if not skip_confirm and not confirm(f"\nUpdate {len(updates)} dependencies?", default=True):
        logger.info("Update cancelled by user")
        return

    backup_path = create_timestamped_backup(file) if backup else None
    if backup_path is not None:
        logger.info("Created backup: %s", backup_path)

    try:
        _apply_updates(file, updates)
    except NpmKeeperError as exc:
        if backup_path is not None and backup_path.exists():
            logger.info("Restoring from backup...")
            shutil.copy2(backup_path, file)
            print_success("Restored original file from backup")
        raise NpmKeeperError(f"Failed to apply updates: {exc}") from exc

    print_success(f"\nSuccessfully updated {len(updates)} dependencies")
    for dependency, version, _ in updates:
        logger.debug("  %s: %s -> %s", dependency.name, dependency.specifier, version)


def _plan_updates(
    session: UpgradeSession, dependencies: List[DeclaredDependency]
) -> List[PlannedUpdate]:
    """Dependencies with an upgrade, paired with its version and severity."""
    updates: List[PlannedUpdate] = []
    for dependency in dependencies:
        info = session.classify(dependency.name, dependency.specifier)
        if info is None:
            logger.debug("No metadata for %s, skipping", dependency.name)
            continue
        best = info.best_upgrade()
        if best is not None:
            update_type, record = best
            updates.append((dependency, record.version, update_type))
    return updates


def _display_update_plan(updates: List[PlannedUpdate], dry_run: bool) -> None:
    rows = [
        {
            "Package": dependency.name,
            "Current": dependency.specifier,
            "New Version": f"[bold green]{version}[/bold green]",
            "Change": colorize_update_type(update_type),
        }
        for dependency, version, update_type in updates
    ]
    print_table(
        rows,
        headers=["Package", "Current", "New Version", "Change"],
        title="Update Plan (Dry Run)" if dry_run else "Update Plan",
    )


def _apply_updates(file: Path, updates: List[PlannedUpdate]) -> None:
    """Rewrite the specifiers in place, leaving the rest of the file untouched."""
    upgrades: Dict[DeclaredDependency, str] = {dep: version for dep, version, _ in updates}
    text = safe_read_file(file)
    safe_write_file(file, rewrite_specifiers(text, upgrades))
