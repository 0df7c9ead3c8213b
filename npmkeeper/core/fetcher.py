"""
Registry fetch coordination.

:class:`RegistryFetchCoordinator` is the only writer of the
:class:`~npmkeeper.core.registry_cache.RegistryCache`. It guarantees at
most one in-flight fetch per dependency name: the IN_PROGRESS entry is
installed synchronously, before the first ``await``, so a second caller in
the same tick finds it and joins the existing fetch.

Fetch failures never escape: they are logged and recorded as a REJECTED
entry, which the next :meth:`~RegistryFetchCoordinator.ensure_fresh` call
retries immediately. A FULFILLED entry is reused until it is older than
the caller's ``max_age``.
"""

from __future__ import annotations

import time
import asyncio
from typing import Awaitable, Callable, Iterable, Optional

from npmkeeper.core.changelog import ChangelogResolver
from npmkeeper.core.registry_cache import RegistryCache, RegistryEntry
from npmkeeper.core.registry_client import RegistryClient, package_url
from npmkeeper.exceptions import NetworkError
from npmkeeper.models.loader import CacheItem, LoaderEntry
from npmkeeper.utils.logger import get_logger

logger = get_logger("fetcher")

__all__ = ["RegistryFetchCoordinator"]


class RegistryFetchCoordinator:
    """Keeps registry metadata fresh, deduplicating concurrent fetches.

    Args:
        client: Fetches and parses registry documents.
        cache: Shared registry cache this coordinator fills.
        changelog: When given, a changelog lookup is started in the
            background after the first successful fetch of each name.
        clock: Returns the current epoch time in seconds.

    Example:
        >>> coordinator = RegistryFetchCoordinator(client, RegistryCache())
        >>> await coordinator.ensure_fresh("left-pad", max_age=7200)
        >>> coordinator.get_cached("left-pad").state
        <LoaderState.FULFILLED: 'fulfilled'>
    """

    def __init__(
        self,
        client: RegistryClient,
        cache: RegistryCache,
        *,
        changelog: Optional[ChangelogResolver] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.cache = cache
        self.changelog = changelog
        self._clock = clock

    def get_cached(self, name: str) -> Optional[RegistryEntry]:
        """Current entry for ``name``; never starts a fetch."""
        return self.cache.get(name)

    def ensure_fresh(self, name: str, max_age: float) -> Awaitable[None]:
        """Make sure ``name`` has metadata no older than ``max_age`` seconds.

        Returns an awaitable that completes when the entry is settled. Two
        calls while a fetch is in flight share that one fetch. Abandoning
        the awaitable does not cancel the fetch.

        Must be called from a running event loop.
        """
        loop = asyncio.get_running_loop()
        entry = self.cache.get(name)

        if entry is not None:
            if entry.is_in_progress and entry.in_flight is not None:
                logger.debug("Joining in-flight fetch for %s", name)
                return asyncio.shield(entry.in_flight)
            if entry.value is not None and entry.value.fetched_at >= self._clock() - max_age:
                logger.debug("Registry cache hit for %s", name)
                done = loop.create_future()
                done.set_result(None)
                return done

        start_time = self._clock()
        task = loop.create_task(self._fetch(name, start_time))
        self.cache.put(name, LoaderEntry.in_progress(start_time, task))
        return asyncio.shield(task)

    async def refresh(self, names: Iterable[str], max_age: float) -> None:
        """:meth:`ensure_fresh` every name concurrently and wait for all."""
        await asyncio.gather(*(self.ensure_fresh(name, max_age) for name in names))

    async def drain(self) -> None:
        """Wait for background changelog lookups started by fetches."""
        if self.changelog is not None:
            await self.changelog.drain()

    async def _fetch(self, name: str, start_time: float) -> None:
        try:
            metadata = await self.client.fetch_metadata(name)
        except asyncio.CancelledError:
            self.cache.put(name, LoaderEntry.rejected(start_time))
            raise
        except Exception as exc:
            self._log_failure(name, exc)
            self.cache.put(name, LoaderEntry.rejected(start_time))
            return

        item = CacheItem(fetched_at=self._clock(), metadata=metadata)
        self.cache.put(name, LoaderEntry.fulfilled(start_time, item))

        if self.changelog is not None and self.changelog.get_cached(name) is None:
            self.changelog.start(name, metadata)

    def _log_failure(self, name: str, exc: Exception) -> None:
        if isinstance(exc, NetworkError):
            logger.warning(
                "Failed to fetch %s from %s (status %s): %s",
                name,
                exc.url or package_url(self.client.registry, name),
                exc.status_code if exc.status_code is not None else "n/a",
                exc.message,
            )
        else:
            logger.warning(
                "Failed to fetch %s from %s: %s",
                name,
                package_url(self.client.registry, name),
                exc,
            )
