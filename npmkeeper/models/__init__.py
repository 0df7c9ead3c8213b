"""
Unified data model exports for npmkeeper.

Example:
    >>> from npmkeeper.models import RegistryMetadata, DependencyUpdateInfo
"""

from __future__ import annotations

from npmkeeper.models.registry import RegistryMetadata, VersionRecord
from npmkeeper.models.loader import CacheItem, LoaderEntry, LoaderState
from npmkeeper.models.update_info import DependencyUpdateInfo

__all__ = [
    "RegistryMetadata",
    "VersionRecord",
    "CacheItem",
    "LoaderEntry",
    "LoaderState",
    "DependencyUpdateInfo",
]
