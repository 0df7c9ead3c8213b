"""
Console output for npmkeeper commands, rendered with Rich.

User-facing output only. Diagnostics go through :mod:`npmkeeper.utils.logger`.
"""

from __future__ import annotations

import os
import sys
import threading
from typing import Any, Dict, List, Optional, Sequence

from rich.table import Table
from rich.theme import Theme
from rich.console import Console

NPMKEEPER_THEME = Theme(
    {
        "success": "bold green",
        "error": "bold red",
        "warning": "bold yellow",
        "info": "bold cyan",
        "dim": "dim",
    }
)

#: Rich color per upgrade severity.
UPDATE_TYPE_COLORS: Dict[str, str] = {
    "major": "red",
    "minor": "yellow",
    "patch": "green",
    "prerelease": "magenta",
}

_console: Optional[Console] = None
_console_lock = threading.Lock()


def _should_use_color() -> bool:
    if os.environ.get("NO_COLOR") or os.environ.get("CI"):
        return False
    try:
        return sys.stdout.isatty()
    except (AttributeError, OSError):
        return False


def _get_console() -> Console:
    global _console

    if _console is None:
        with _console_lock:
            if _console is None:
                use_color = _should_use_color()
                _console = Console(
                    theme=NPMKEEPER_THEME,
                    no_color=not use_color,
                    highlight=False,
                )
    return _console


def reconfigure_console() -> None:
    """Drop the cached console so the next print re-reads ``NO_COLOR``."""
    global _console
    with _console_lock:
        _console = None


def get_raw_console() -> Console:
    return _get_console()


def print_success(message: str, *, prefix: str = "[OK]") -> None:
    _get_console().print(f"{prefix} {message}", style="success")


def print_error(message: str, *, prefix: str = "[ERROR]") -> None:
    _get_console().print(f"{prefix} {message}", style="error")


def print_warning(message: str, *, prefix: str = "[WARNING]") -> None:
    _get_console().print(f"{prefix} {message}", style="warning")


def print_info(message: str) -> None:
    _get_console().print(message, style="info")


def print_json(data: Any) -> None:
    """Print ``data`` as indented JSON, without markup processing."""
    _get_console().print_json(data=data)


def print_table(
    rows: List[Dict[str, Any]],
    *,
    headers: Sequence[str],
    title: Optional[str] = None,
    caption: Optional[str] = None,
) -> None:
    """Render row dictionaries as a table; cells may contain Rich markup."""
    if not rows:
        return

    table = Table(title=title, caption=caption, show_header=True, header_style="bold")
    for header in headers:
        table.add_column(header, overflow="fold")
    for row in rows:
        table.add_row(*(str(row.get(h, "")) for h in headers))

    _get_console().print(table)


def confirm(message: str, *, default: bool = False) -> bool:
    """Ask a yes/no question.

    Empty or unrecognized input returns ``default``; Ctrl+C and EOF
    return ``False``.
    """
    console = _get_console()
    suffix = " [Y/n]: " if default else " [y/N]: "
    console.print(f"{message}{suffix}", end="", style="info")

    try:
        response = input().strip().lower()
    except (KeyboardInterrupt, EOFError):
        console.print()
        return False

    if response in ("y", "yes"):
        return True
    if response in ("n", "no"):
        return False
    return default


def colorize_update_type(update_type: str) -> str:
    """Wrap an upgrade severity in Rich color markup.

    Example:
        >>> colorize_update_type("major")
        '[red]major[/red]'
    """
    color = UPDATE_TYPE_COLORS.get(update_type.lower())
    return f"[{color}]{update_type}[/{color}]" if color else update_type
