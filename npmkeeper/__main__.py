"""
Executable module for npmkeeper.

Running:
    python -m npmkeeper

is equivalent to:
    npmkeeper
"""

from __future__ import annotations

import sys


def _print_startup_error(exc: ImportError) -> None:
    """Explain on stderr why the CLI could not be loaded."""
    sys.stderr.write("npmkeeper failed to start: a required module is missing.\n")
    sys.stderr.write(f"Python version   : {sys.version}\n")
    try:
        from npmkeeper.__version__ import __version__
    except ImportError:
        __version__ = "<unknown>"
    sys.stderr.write(f"npmkeeper version: {__version__}\n")
    sys.stderr.write(f"ImportError: {exc}\n")


def main() -> int:
    """Entry point of ``python -m npmkeeper``; returns the CLI's exit code."""
    try:
        # Import lazily so dependencies are only loaded during CLI use
        from npmkeeper.cli import main as cli_main
    except ImportError as exc:
        _print_startup_error(exc)
        return 1

    return cli_main()


if __name__ == "__main__":
    sys.exit(main())
