"""
Centralized constants for npmkeeper.

Registry endpoints, cache policy defaults, rate-limit defaults and logging
formats. All values are read-only.
"""

from typing import Final, Tuple

# ---------------------------------------------------------------------------
# Project metadata
# ---------------------------------------------------------------------------

#: HTTP User-Agent template used for outbound requests.
USER_AGENT_TEMPLATE: Final[str] = (
    "npmkeeper/{version} (https://github.com/npmkeeper/npmkeeper)"
)

#: Name of the top-level logger every module logs under.
ROOT_LOGGER_NAME: Final[str] = "npmkeeper"

# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

#: Public npm registry.
DEFAULT_REGISTRY: Final[str] = "https://registry.npmjs.org"

#: Specifiers that accept any version and therefore have nothing to upgrade.
WILDCARD_SPECIFIERS: Final[Tuple[str, ...]] = ("*", "x")

#: Severity buckets reported for an upgrade, in display order.
UPDATE_TYPES: Final[Tuple[str, ...]] = ("major", "minor", "patch", "prerelease")

# ---------------------------------------------------------------------------
# HTTP configuration
# ---------------------------------------------------------------------------

#: Default network timeout in seconds.
DEFAULT_TIMEOUT: Final[int] = 30

#: Maximum number of retries for failed registry requests.
DEFAULT_MAX_RETRIES: Final[int] = 3

# ---------------------------------------------------------------------------
# Cache policy
# ---------------------------------------------------------------------------

#: Age after which cached registry metadata is re-fetched.
DEFAULT_CACHE_MINUTES: Final[int] = 120

#: Bounds of the randomized lifetime of a changelog/releases probe result.
DEFAULT_LINK_TTL_MIN_DAYS: Final[float] = 20
DEFAULT_LINK_TTL_MAX_DAYS: Final[float] = 40

#: Durable-store keys.
LINK_CACHE_STORE_KEY: Final[str] = "githubCache"
REGISTRY_CACHE_STORE_KEY: Final[str] = "registryCache"

#: Link cache namespaces.
LINK_NAMESPACES: Final[Tuple[str, ...]] = ("releases", "changelog")

#: File inside ``cache_dir`` holding the durable store.
STATE_FILE_NAME: Final[str] = "state.json"

# ---------------------------------------------------------------------------
# GitHub (changelog discovery)
# ---------------------------------------------------------------------------

#: Backoff applied after a rate-limit response without a reset header.
DEFAULT_RATE_LIMIT_BACKOFF_SECONDS: Final[int] = 60

GITHUB_RELEASES_API: Final[str] = (
    "https://api.github.com/repos/{repo_key}/releases?per_page=1"
)

# ---------------------------------------------------------------------------
# Security constraints
# ---------------------------------------------------------------------------

#: Maximum allowed size (in bytes) of a manifest or state file.
MAX_FILE_SIZE: Final[int] = 10 * 1024 * 1024  # 10 MB

# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

#: Timestamp format for verbose logging.
LOG_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"

#: Default log format (non-verbose).
LOG_DEFAULT_FORMAT: Final[str] = "%(levelname)s: %(message)s"

#: Verbose log format including timestamp and logger name.
LOG_VERBOSE_FORMAT: Final[str] = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
