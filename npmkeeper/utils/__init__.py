"""
Utility helpers for npmkeeper.

- Console output helpers (Rich-based)
- Logging configuration and retrieval
- Filesystem safety helpers and the JSON key-value store
- Async HTTP client
- Semver helpers

Only symbols listed in ``__all__`` are considered part of the public API.
"""

from __future__ import annotations

from npmkeeper.utils.filesystem import (
    JsonFileStore,
    KeyValueStore,
    MemoryStore,
    create_timestamped_backup,
    safe_read_file,
    safe_write_file,
)

from npmkeeper.utils.logger import (
    disable_logging,
    get_logger,
    is_logging_configured,
    setup_logging,
    verbosity_to_level,
)

from npmkeeper.utils.console import (
    colorize_update_type,
    confirm,
    get_raw_console,
    print_error,
    print_info,
    print_json,
    print_success,
    print_table,
    print_warning,
    reconfigure_console,
)

from npmkeeper.utils.http import HTTPClient

from npmkeeper.utils.version_utils import (
    coerce,
    diff,
    get_exact_version,
    parse_version,
    replace_last_occurrence,
)

__all__ = [
    # Console
    "confirm",
    "print_error",
    "print_info",
    "print_json",
    "print_table",
    "print_success",
    "print_warning",
    "get_raw_console",
    "reconfigure_console",
    "colorize_update_type",
    # Logging
    "get_logger",
    "setup_logging",
    "disable_logging",
    "is_logging_configured",
    "verbosity_to_level",
    # Filesystem
    "safe_read_file",
    "safe_write_file",
    "create_timestamped_backup",
    "KeyValueStore",
    "JsonFileStore",
    "MemoryStore",
    # HTTP
    "HTTPClient",
    # Versions
    "parse_version",
    "coerce",
    "diff",
    "get_exact_version",
    "replace_last_occurrence",
]
