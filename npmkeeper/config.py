"""Configuration file loader for npmkeeper.

Handles discovery, loading, parsing, and validation of configuration files.
Supports two formats:

- ``npmkeeper.toml``: settings under ``[npmkeeper]`` table
- ``pyproject.toml``: settings under ``[tool.npmkeeper]`` table

Discovery order:

1. Explicit path from ``--config`` or ``NPMKEEPER_CONFIG``
2. ``npmkeeper.toml`` in current directory
3. ``pyproject.toml`` with ``[tool.npmkeeper]`` section

Example (``npmkeeper.toml``)::

    [npmkeeper]
    registry = "https://registry.npmjs.org"
    cache_minutes = 120
    ignore_patterns = ["^@internal/"]

    [npmkeeper.ignore_versions]
    typescript = ">=6.0.0"
    react = ["=19.0.0", ">=20"]
"""

from __future__ import annotations

import tomli as tomllib
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from dataclasses import dataclass, field

from npmkeeper.exceptions import ConfigError
from npmkeeper.utils.logger import get_logger
from npmkeeper.constants import (
    DEFAULT_CACHE_MINUTES,
    DEFAULT_LINK_TTL_MAX_DAYS,
    DEFAULT_LINK_TTL_MIN_DAYS,
    DEFAULT_RATE_LIMIT_BACKOFF_SECONDS,
    DEFAULT_REGISTRY,
)

logger = get_logger("config")

#: Default location of the durable cache state.
DEFAULT_CACHE_DIR = "~/.cache/npmkeeper"

ExclusionValue = Union[str, List[str]]


@dataclass
class NpmKeeperConfig:
    """Parsed and validated npmkeeper configuration.

    All fields have defaults, so empty config files are valid.

    Attributes:
        registry: Base URL of the npm registry.
        cache_minutes: Age after which cached registry metadata is re-fetched.
        ignore_patterns: Regular expressions; matching dependency names are
            skipped entirely.
        ignore_versions: Per-dependency npm ranges (one or a list) whose
            versions are never offered as upgrades.
        changelog_ttl_min_days: Shortest lifetime of a changelog probe result.
        changelog_ttl_max_days: Longest lifetime of a changelog probe result.
        rate_limit_backoff_seconds: Backoff after a GitHub rate-limit
            response that carries no reset time.
        cache_dir: Directory holding the durable cache state.
        fetch_changelogs: Discover changelog links on GitHub.
        source_path: Path to loaded config file, or ``None`` if using defaults.
    """

    registry: str = DEFAULT_REGISTRY
    cache_minutes: int = DEFAULT_CACHE_MINUTES
    ignore_patterns: List[str] = field(default_factory=list)
    ignore_versions: Dict[str, ExclusionValue] = field(default_factory=dict)
    changelog_ttl_min_days: float = DEFAULT_LINK_TTL_MIN_DAYS
    changelog_ttl_max_days: float = DEFAULT_LINK_TTL_MAX_DAYS
    rate_limit_backoff_seconds: int = DEFAULT_RATE_LIMIT_BACKOFF_SECONDS
    cache_dir: str = DEFAULT_CACHE_DIR
    fetch_changelogs: bool = True

    # Metadata (not a user-facing option)
    source_path: Optional[Path] = field(default=None, repr=False)

    @property
    def max_age_seconds(self) -> float:
        """Staleness window of registry metadata, in seconds."""
        return self.cache_minutes * 60

    @property
    def cache_path(self) -> Path:
        return Path(self.cache_dir).expanduser()

    def to_log_dict(self) -> Dict[str, Any]:
        """Return configuration as dictionary for debug logging."""
        return {
            "registry": self.registry,
            "cache_minutes": self.cache_minutes,
            "ignore_patterns": list(self.ignore_patterns),
            "ignore_versions": dict(self.ignore_versions),
            "changelog_ttl_min_days": self.changelog_ttl_min_days,
            "changelog_ttl_max_days": self.changelog_ttl_max_days,
            "rate_limit_backoff_seconds": self.rate_limit_backoff_seconds,
            "cache_dir": self.cache_dir,
            "fetch_changelogs": self.fetch_changelogs,
        }


def discover_config_file(explicit_path: Optional[Path] = None) -> Optional[Path]:
    """Find the configuration file to load.

    Args:
        explicit_path: Explicit config path. If provided, must exist.

    Returns:
        Resolved path to config file, or ``None`` if not found.

    Raises:
        ConfigError: Explicit path provided but does not exist.
    """
    if explicit_path is not None:
        resolved = explicit_path.resolve()
        if not resolved.is_file():
            raise ConfigError(
                f"Configuration file not found: {explicit_path}",
                config_path=str(explicit_path),
            )
        logger.debug("Using explicit config: %s", resolved)
        return resolved

    cwd = Path.cwd()

    npmkeeper_toml = cwd / "npmkeeper.toml"
    if npmkeeper_toml.is_file():
        logger.debug("Found npmkeeper.toml: %s", npmkeeper_toml)
        return npmkeeper_toml

    pyproject_toml = cwd / "pyproject.toml"
    if pyproject_toml.is_file() and _pyproject_has_npmkeeper_section(pyproject_toml):
        logger.debug("Found [tool.npmkeeper] in pyproject.toml: %s", pyproject_toml)
        return pyproject_toml

    logger.debug("No configuration file found")
    return None


def _pyproject_has_npmkeeper_section(path: Path) -> bool:
    """Check if pyproject.toml contains a ``[tool.npmkeeper]`` section.

    An unreadable pyproject.toml is not ours to report; it simply does not
    count as a config file.
    """
    try:
        raw = _read_toml(path)
    except ConfigError as exc:
        logger.debug("Skipping %s: %s", path, exc)
        return False
    tool = raw.get("tool", {})
    return isinstance(tool, dict) and "npmkeeper" in tool


def load_config(config_path: Optional[Path] = None) -> NpmKeeperConfig:
    """Load and validate npmkeeper configuration.

    Args:
        config_path: Explicit path to config file. If ``None``, uses
            auto-discovery (see :func:`discover_config_file`).

    Returns:
        Validated :class:`NpmKeeperConfig` with values from file or defaults.

    Raises:
        ConfigError: File cannot be parsed, has unknown keys, or invalid values.
    """
    resolved = discover_config_file(config_path)

    if resolved is None:
        logger.debug("No config file found, using defaults")
        return NpmKeeperConfig()

    logger.info("Loading configuration from %s", resolved)
    raw = _read_toml(resolved)

    if resolved.name == "pyproject.toml":
        section = raw.get("tool", {}).get("npmkeeper", {})
    else:
        section = raw.get("npmkeeper", {})

    if not section:
        logger.debug("Config file found but no npmkeeper section, using defaults")
        return NpmKeeperConfig(source_path=resolved)

    config = _parse_section(section, config_path=str(resolved))
    config.source_path = resolved

    logger.debug("Loaded configuration: %s", config.to_log_dict())
    return config


def _read_toml(path: Path) -> Dict[str, Any]:
    """Read and parse a TOML file.

    Raises:
        ConfigError: File cannot be read or is not valid TOML.
    """
    try:
        with open(path, "rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(
            f"Invalid TOML in {path.name}: {exc}",
            config_path=str(path),
        ) from exc
    except OSError as exc:
        raise ConfigError(
            f"Cannot read configuration file {path}: {exc}",
            config_path=str(path),
        ) from exc


_KNOWN_KEYS = frozenset(NpmKeeperConfig().to_log_dict())


def _parse_section(
    section: Dict[str, Any],
    *,
    config_path: str,
) -> NpmKeeperConfig:
    """Parse and validate the ``[npmkeeper]`` / ``[tool.npmkeeper]`` table.

    Raises:
        ConfigError: Unknown keys or values of the wrong type or range.
    """
    unknown = set(section) - _KNOWN_KEYS
    if unknown:
        raise ConfigError(
            f"Unknown configuration keys: {', '.join(sorted(unknown))}",
            config_path=config_path,
        )

    def fail(option: str, expected: str, value: Any) -> ConfigError:
        return ConfigError(
            f"{option} must be {expected}, got {type(value).__name__} {value!r}",
            config_path=config_path,
            option=option,
        )

    config = NpmKeeperConfig()

    if "registry" in section:
        val = section["registry"]
        if not isinstance(val, str) or not val.startswith(("http://", "https://")):
            raise fail("registry", "an http(s) URL", val)
        config.registry = val.rstrip("/")

    for option in ("cache_minutes", "rate_limit_backoff_seconds"):
        if option in section:
            val = section[option]
            if isinstance(val, bool) or not isinstance(val, int) or val <= 0:
                raise fail(option, "a positive integer", val)
            setattr(config, option, val)

    for option in ("changelog_ttl_min_days", "changelog_ttl_max_days"):
        if option in section:
            val = section[option]
            if isinstance(val, bool) or not isinstance(val, (int, float)) or val <= 0:
                raise fail(option, "a positive number", val)
            setattr(config, option, float(val))

    if config.changelog_ttl_max_days < config.changelog_ttl_min_days:
        raise ConfigError(
            "changelog_ttl_max_days must not be smaller than changelog_ttl_min_days",
            config_path=config_path,
            option="changelog_ttl_max_days",
        )

    if "ignore_patterns" in section:
        val = section["ignore_patterns"]
        if not isinstance(val, list) or not all(isinstance(p, str) for p in val):
            raise fail("ignore_patterns", "a list of strings", val)
        config.ignore_patterns = list(val)

    if "ignore_versions" in section:
        val = section["ignore_versions"]
        if not isinstance(val, dict):
            raise fail("ignore_versions", "a table", val)
        for name, rule in val.items():
            if isinstance(rule, str):
                continue
            if isinstance(rule, list) and all(isinstance(r, str) for r in rule):
                continue
            raise fail(f"ignore_versions.{name}", "a string or list of strings", rule)
        config.ignore_versions = {
            name: list(rule) if isinstance(rule, list) else rule
            for name, rule in val.items()
        }

    if "cache_dir" in section:
        val = section["cache_dir"]
        if not isinstance(val, str) or not val:
            raise fail("cache_dir", "a non-empty path", val)
        config.cache_dir = val

    if "fetch_changelogs" in section:
        val = section["fetch_changelogs"]
        if not isinstance(val, bool):
            raise fail("fetch_changelogs", "a boolean", val)
        config.fetch_changelogs = val

    return config
