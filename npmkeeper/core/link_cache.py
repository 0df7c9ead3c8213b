"""Durable, expiring cache of "does this repo have X" probe results.

Two namespaces, ``changelog`` and ``releases``, map an ``owner/repo`` key to
``{"value": bool, "expiresAt": epoch_seconds}``. Each write gets a random
lifetime between ``ttl_min_days`` and ``ttl_max_days`` so entries written
together do not all expire together.

The whole cache is one value in a :class:`~npmkeeper.utils.filesystem.KeyValueStore`.
Until :meth:`PersistentLinkCache.init` provides a store, reads return
``None`` and writes are dropped, which makes every lookup a fresh probe.
"""

from __future__ import annotations

import time
import random
from typing import Any, Callable, Dict, Mapping, Optional

from npmkeeper.constants import (
    DEFAULT_LINK_TTL_MAX_DAYS,
    DEFAULT_LINK_TTL_MIN_DAYS,
    LINK_CACHE_STORE_KEY,
    LINK_NAMESPACES,
)
from npmkeeper.utils.filesystem import KeyValueStore
from npmkeeper.utils.logger import get_logger

logger = get_logger("link_cache")

__all__ = ["PersistentLinkCache"]

_SECONDS_PER_DAY = 24 * 60 * 60

LinkCacheData = Dict[str, Dict[str, Dict[str, Any]]]


def _empty() -> LinkCacheData:
    return {namespace: {} for namespace in LINK_NAMESPACES}


class PersistentLinkCache:
    """TTL cache of boolean probe results, persisted through a store.

    Args:
        ttl_min_days: Shortest lifetime of an entry.
        ttl_max_days: Longest lifetime of an entry.
        clock: Returns the current epoch time in seconds.
        rng: Source of randomness for lifetimes.
    """

    def __init__(
        self,
        *,
        ttl_min_days: float = DEFAULT_LINK_TTL_MIN_DAYS,
        ttl_max_days: float = DEFAULT_LINK_TTL_MAX_DAYS,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ) -> None:
        if ttl_min_days <= 0 or ttl_max_days < ttl_min_days:
            raise ValueError(
                f"Invalid TTL bounds: min={ttl_min_days} max={ttl_max_days}"
            )
        self.ttl_min_days = ttl_min_days
        self.ttl_max_days = ttl_max_days
        self._clock = clock
        self._rng = rng or random.Random()
        self._store: Optional[KeyValueStore] = None

    async def init(self, store: KeyValueStore) -> None:
        """Attach the durable store and drop entries that already expired.

        The cleaned cache is written back once, and only if something was
        removed.
        """
        self._store = store
        cache = self._load()
        now = self._clock()

        cleaned = _empty()
        removed = 0
        for namespace in LINK_NAMESPACES:
            for key, entry in cache[namespace].items():
                if _expires_at(entry) >= now:
                    cleaned[namespace][key] = entry
                else:
                    removed += 1

        if removed:
            logger.debug("Dropped %d expired link cache entries", removed)
            await store.update(LINK_CACHE_STORE_KEY, cleaned)

    def get(self, namespace: str, key: str) -> Optional[bool]:
        """Return the cached probe result, or ``None`` if unknown or expired."""
        _check_namespace(namespace)
        if self._store is None:
            return None

        entry = self._load()[namespace].get(key)
        if entry is None or _expires_at(entry) < self._clock():
            return None
        return bool(entry.get("value"))

    async def set(self, namespace: str, key: str, value: bool) -> None:
        """Record a probe result with a randomized expiry."""
        _check_namespace(namespace)
        if self._store is None:
            return

        cache = self._load()
        updated = dict(cache[namespace])
        updated[key] = {"value": value, "expiresAt": self._clock() + self.random_ttl()}
        cache[namespace] = updated
        await self._store.update(LINK_CACHE_STORE_KEY, cache)

    def random_ttl(self) -> float:
        """A lifetime in seconds, uniform between the configured bounds."""
        days = self._rng.uniform(self.ttl_min_days, self.ttl_max_days)
        return days * _SECONDS_PER_DAY

    def snapshot(self) -> LinkCacheData:
        """Copy of the raw stored data, both namespaces always present."""
        return self._load()

    def _load(self) -> LinkCacheData:
        cache = _empty()
        if self._store is None:
            return cache
        raw = self._store.get(LINK_CACHE_STORE_KEY)
        if not isinstance(raw, Mapping):
            return cache
        for namespace in LINK_NAMESPACES:
            entries = raw.get(namespace)
            if isinstance(entries, Mapping):
                cache[namespace] = {
                    k: dict(v) for k, v in entries.items() if isinstance(v, Mapping)
                }
        return cache


def _expires_at(entry: Mapping[str, Any]) -> float:
    value = entry.get("expiresAt")
    return float(value) if isinstance(value, (int, float)) else float("-inf")


def _check_namespace(namespace: str) -> None:
    if namespace not in LINK_NAMESPACES:
        raise ValueError(f"Unknown link cache namespace: {namespace!r}")
