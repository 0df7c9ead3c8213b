"""
Core functionality exports for npmkeeper.

    from npmkeeper.core import UpgradeSession, classify
"""

from __future__ import annotations

from npmkeeper.core.classifier import classify, classify_versions, latest_upgrade
from npmkeeper.core.exclusion import compile_ignore_patterns, is_dependency_ignored, is_excluded
from npmkeeper.core.registry_cache import RegistryCache, trim
from npmkeeper.core.registry_client import RegistryClient
from npmkeeper.core.fetcher import RegistryFetchCoordinator
from npmkeeper.core.gateway import (
    GatewayNetworkError,
    GatewayRateLimited,
    GatewaySuccess,
    UpstreamGateway,
)
from npmkeeper.core.link_cache import PersistentLinkCache
from npmkeeper.core.changelog import ChangelogResolver, get_github_url
from npmkeeper.core.session import UpgradeSession

__all__ = [
    "classify",
    "classify_versions",
    "latest_upgrade",
    "is_excluded",
    "compile_ignore_patterns",
    "is_dependency_ignored",
    "RegistryCache",
    "trim",
    "RegistryClient",
    "RegistryFetchCoordinator",
    "UpstreamGateway",
    "GatewaySuccess",
    "GatewayRateLimited",
    "GatewayNetworkError",
    "PersistentLinkCache",
    "ChangelogResolver",
    "get_github_url",
    "UpgradeSession",
]
