"""
Command-line interface for npmkeeper.

This module provides the main CLI entry point and handles global options,
configuration loading, and command registration.
"""

from __future__ import annotations

import os
import sys
import logging
from pathlib import Path
from typing import Optional

import click

from npmkeeper.config import load_config
from npmkeeper.__version__ import __version__
from npmkeeper.context import NpmKeeperContext
from npmkeeper.exceptions import ConfigError, NpmKeeperError
from npmkeeper.utils.logger import get_logger, setup_logging, verbosity_to_level
from npmkeeper.utils.console import print_error, print_warning, reconfigure_console
from npmkeeper.commands.check import check
from npmkeeper.commands.update import update

logger = get_logger("cli")


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file.",
    envvar="NPMKEEPER_CONFIG",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (can be repeated: -v, -vv).",
)
@click.option(
    "--color/--no-color",
    default=True,
    help="Enable or disable colored output.",
    envvar="NPMKEEPER_COLOR",
)
@click.version_option(
    version=__version__,
    prog_name="npmkeeper",
    message="%(prog)s %(version)s",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[Path],
    verbose: int,
    color: bool,
) -> None:
    """npmkeeper: semver upgrade advisor for package.json files.

    \b
    Available commands:
      npmkeeper check              Check for available upgrades
      npmkeeper update             Rewrite specifiers to the latest upgrades

    \b
    Examples:
      npmkeeper check
      npmkeeper update --dry-run
      npmkeeper -v check

    Use ``npmkeeper COMMAND --help`` for command-specific options.
    """
    if color:
        os.environ.pop("NO_COLOR", None)
    else:
        os.environ["NO_COLOR"] = "1"
    reconfigure_console()

    level = verbosity_to_level(verbose)
    setup_logging(level=level, verbose=verbose >= 2)
    logger.debug("Logging initialized at %s level", logging.getLevelName(level))

    try:
        loaded_config = load_config(config)
    except ConfigError as exc:
        print_error(str(exc))
        raise SystemExit(1) from exc

    npmkeeper_ctx = NpmKeeperContext()
    npmkeeper_ctx.config_path = config or loaded_config.source_path
    npmkeeper_ctx.color = color
    npmkeeper_ctx.verbose = verbose
    npmkeeper_ctx.config = loaded_config
    ctx.obj = npmkeeper_ctx

    logger.debug("npmkeeper v%s", __version__)
    logger.debug("Config path: %s", npmkeeper_ctx.config_path)
    logger.debug("Configuration: %s", loaded_config.to_log_dict())


cli.add_command(check)
cli.add_command(update)


def main() -> int:
    """Main entry point for the npmkeeper CLI.

    Returns:
        Exit code:
            0   Success
            1   Upgrades available, or an error
            2   Usage error (Click)
            130 Interrupted by user (Ctrl+C)
    """
    try:
        cli(standalone_mode=False)
        return 0

    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else 1

    except click.ClickException as exc:
        exc.show()
        return exc.exit_code

    except click.exceptions.Abort:
        print_warning("\nOperation cancelled by user")
        return 130

    except NpmKeeperError as exc:
        print_error(str(exc))
        logger.debug(
            "NpmKeeperError details: %s",
            exc.details or "<none>",
            exc_info=True,
        )
        return 1

    except KeyboardInterrupt:
        print_warning("\nOperation cancelled by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
