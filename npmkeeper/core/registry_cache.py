"""In-process cache of registry documents, one loader entry per dependency.

The cache never performs I/O itself; :class:`~npmkeeper.core.fetcher.RegistryFetchCoordinator`
fills it. Entries are replaced whole on every transition.

For cross-session reuse, :meth:`RegistryCache.dump` writes only fulfilled
entries, each passed through :func:`trim`, and :meth:`RegistryCache.restore`
reads them back.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from npmkeeper.exceptions import RegistryError
from npmkeeper.models.loader import CacheItem, LoaderEntry, LoaderState
from npmkeeper.models.registry import RegistryMetadata, VersionRecord
from npmkeeper.utils.logger import get_logger

logger = get_logger("registry_cache")

__all__ = ["RegistryCache", "RegistryEntry", "trim", "trim_metadata"]

RegistryEntry = LoaderEntry[CacheItem]


class RegistryCache:
    """Dependency name → :class:`LoaderEntry` of :class:`CacheItem`.

    Example::

        cache = RegistryCache()
        cache.put("left-pad", LoaderEntry.fulfilled(now, CacheItem(now, metadata)))
        entry = cache.get("left-pad")
    """

    def __init__(self) -> None:
        self._entries: Dict[str, RegistryEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def get(self, name: str) -> Optional[RegistryEntry]:
        """Return the entry for ``name`` without triggering a fetch."""
        return self._entries.get(name)

    def put(self, name: str, entry: RegistryEntry) -> None:
        """Replace the entry for ``name``."""
        self._entries[name] = entry

    def clear(self) -> None:
        """Drop every entry (e.g. after the registry URL changed)."""
        logger.debug("Clearing %d registry cache entries", len(self._entries))
        self._entries = {}

    def snapshot_all(self) -> Dict[str, RegistryEntry]:
        """Return a shallow copy of all entries for bulk consumers."""
        return dict(self._entries)

    def metadata(self, name: str) -> Optional[RegistryMetadata]:
        """Shortcut: the cached document if the entry is fulfilled."""
        entry = self._entries.get(name)
        if entry is None or entry.value is None:
            return None
        return entry.value.metadata

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def dump(self) -> Dict[str, Any]:
        """Serialize fulfilled entries, trimmed, to a JSON-ready mapping."""
        data: Dict[str, Any] = {}
        for name, entry in self._entries.items():
            if entry.state is not LoaderState.FULFILLED or entry.value is None:
                continue
            item = trim(entry).value
            assert item is not None
            data[name] = {
                "startTime": entry.start_time,
                "fetchedAt": item.fetched_at,
                "metadata": item.metadata.to_json(),
            }
        return data

    def restore(self, data: Mapping[str, Any]) -> int:
        """Load entries written by :meth:`dump`; returns how many were loaded.

        Malformed records are skipped with a debug log. Existing entries for
        the same names are replaced.
        """
        restored = 0
        for name, record in data.items():
            try:
                metadata = RegistryMetadata.from_json(
                    record["metadata"], package_name=name
                )
                fetched_at = float(record["fetchedAt"])
                start_time = float(record.get("startTime", fetched_at))
            except (KeyError, TypeError, ValueError, RegistryError) as exc:
                logger.debug("Skipping unreadable cache record for %s: %s", name, exc)
                continue
            self._entries[name] = LoaderEntry.fulfilled(
                start_time, CacheItem(fetched_at=fetched_at, metadata=metadata)
            )
            restored += 1
        return restored


def trim(entry: RegistryEntry) -> RegistryEntry:
    """Project an entry onto the fields worth persisting.

    Keeps state, start time and, when fulfilled, the fetch time plus the
    trimmed document; drops the in-flight handle. Idempotent.
    """
    if entry.value is None:
        return entry.without_handle()
    item = CacheItem(
        fetched_at=entry.value.fetched_at,
        metadata=trim_metadata(entry.value.metadata),
    )
    return LoaderEntry(entry.state, entry.start_time, value=item)


def trim_metadata(metadata: RegistryMetadata) -> RegistryMetadata:
    """Keep dist-tags, ``{name, version}`` per version, homepage and repository."""
    return RegistryMetadata(
        dist_tags=dict(metadata.dist_tags),
        versions={
            key: VersionRecord(name=record.name, version=record.version)
            for key, record in metadata.versions.items()
        },
        homepage=metadata.homepage,
        repository=metadata.repository,
    )
