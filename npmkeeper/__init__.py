"""
npmkeeper: upgrade advisor for npm dependencies.

npmkeeper reads the versions an npm registry publishes for a dependency
and tells you which of them are valid upgrades for the range you pinned,
bucketed by severity (major / minor / patch / prerelease). It respects the
registry's ``latest`` dist-tag, user-configured version exclusions, and
discovers changelog links on GitHub without hammering its rate limits.

Features include:
    • Semver-aware upgrade classification with prerelease handling
    • Per-dependency ignore rules (npm range syntax)
    • Deduplicated, TTL-cached registry fetches
    • Rate-limit aware changelog/release discovery with a durable cache
"""

from __future__ import annotations

from npmkeeper.__version__ import __version__
from npmkeeper.core.classifier import classify, classify_versions, latest_upgrade
from npmkeeper.core.session import UpgradeSession
from npmkeeper.models import DependencyUpdateInfo, RegistryMetadata, VersionRecord

__author__ = "npmkeeper Contributors"
__license__ = "Apache-2.0"
__description__ = "Semver upgrade advisor for npm dependencies."

__all__ = [
    "__version__",
    "classify",
    "classify_versions",
    "latest_upgrade",
    "UpgradeSession",
    "DependencyUpdateInfo",
    "RegistryMetadata",
    "VersionRecord",
]
