"""
Application context wiring the npmkeeper core together.

An :class:`UpgradeSession` owns one of everything: the HTTP transport, the
registry cache and its fetch coordinator, and (when changelog discovery
is enabled) the GitHub gateway, link cache and changelog resolver. Caches
are plain objects owned by the session rather than module globals, so two
sessions never share state.

On open, the registry cache and link cache are restored from the durable
store in ``cache_dir``. Restored registry entries are discarded when they
were fetched from a different registry. On close, background changelog
lookups are awaited and the registry cache is persisted.

Typical usage::

    async with UpgradeSession(config) as session:
        await session.refresh(["react", "left-pad"])
        info = session.classify("react", "^17.0.2")
"""

from __future__ import annotations

import time
from typing import Any, Callable, Iterable, Mapping, Optional

from npmkeeper.config import NpmKeeperConfig
from npmkeeper.constants import REGISTRY_CACHE_STORE_KEY, STATE_FILE_NAME
from npmkeeper.core.changelog import ChangelogResolver
from npmkeeper.core.classifier import classify
from npmkeeper.core.exclusion import compile_ignore_patterns, is_dependency_ignored
from npmkeeper.core.fetcher import RegistryFetchCoordinator
from npmkeeper.core.gateway import UpstreamGateway
from npmkeeper.core.link_cache import PersistentLinkCache
from npmkeeper.core.registry_cache import RegistryCache, RegistryEntry
from npmkeeper.core.registry_client import RegistryClient
from npmkeeper.exceptions import FileOperationError
from npmkeeper.models.update_info import DependencyUpdateInfo
from npmkeeper.utils.filesystem import JsonFileStore, KeyValueStore
from npmkeeper.utils.http import HTTPClient
from npmkeeper.utils.logger import get_logger

logger = get_logger("session")

__all__ = ["UpgradeSession"]


class UpgradeSession:
    """Caches, fetchers and classifier bound to one configuration.

    Args:
        config: Loaded configuration.
        store: Durable store; defaults to ``state.json`` in ``cache_dir``.
        http_client: Transport; a fresh :class:`HTTPClient` by default. A
            client passed in is not closed by the session.
        clock: Returns the current epoch time in seconds.
    """

    def __init__(
        self,
        config: NpmKeeperConfig,
        *,
        store: Optional[KeyValueStore] = None,
        http_client: Optional[HTTPClient] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.store: KeyValueStore = (
            store if store is not None else JsonFileStore(config.cache_path / STATE_FILE_NAME)
        )
        self._owns_http = http_client is None
        self.http_client = http_client if http_client is not None else HTTPClient()
        self._clock = clock
        self._ignore_patterns = compile_ignore_patterns(config.ignore_patterns)

        self.registry_cache = RegistryCache()
        self.link_cache: Optional[PersistentLinkCache] = None
        self.changelog: Optional[ChangelogResolver] = None

        if config.fetch_changelogs:
            self.link_cache = PersistentLinkCache(
                ttl_min_days=config.changelog_ttl_min_days,
                ttl_max_days=config.changelog_ttl_max_days,
                clock=clock,
            )
            gateway = UpstreamGateway(
                self.http_client,
                default_backoff=config.rate_limit_backoff_seconds,
                clock=clock,
            )
            self.changelog = ChangelogResolver(gateway, self.link_cache, clock=clock)

        self.coordinator = RegistryFetchCoordinator(
            RegistryClient(self.http_client, config.registry),
            self.registry_cache,
            changelog=self.changelog,
            clock=clock,
        )

    async def __aenter__(self) -> "UpgradeSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def open(self) -> None:
        """Restore caches from the durable store."""
        self._restore_registry_cache()

        if self.link_cache is not None:
            try:
                await self.link_cache.init(self.store)
            except FileOperationError as exc:
                logger.warning("Could not persist cleaned link cache: %s", exc)

    async def close(self) -> None:
        """Finish background work, persist the registry cache, release the transport."""
        try:
            await self.drain()
            await self._persist_registry_cache()
        finally:
            if self._owns_http:
                await self.http_client.close()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_ignored(self, name: str) -> bool:
        """Whether ``name`` matches one of the configured ignore patterns."""
        return is_dependency_ignored(name, self._ignore_patterns)

    async def refresh(self, names: Iterable[str]) -> None:
        """Fetch metadata for every name older than the configured window."""
        await self.coordinator.refresh(names, self.config.max_age_seconds)

    async def drain(self) -> None:
        """Wait for the changelog lookups started by earlier fetches."""
        await self.coordinator.drain()

    def get_cached(self, name: str) -> Optional[RegistryEntry]:
        return self.coordinator.get_cached(name)

    def classify(self, name: str, specifier: str) -> Optional[DependencyUpdateInfo]:
        """Classify upgrades of ``name`` from cached metadata.

        Returns ``None`` when no metadata is cached (never fetched, or the
        last fetch was rejected).
        """
        metadata = self.registry_cache.metadata(name)
        if metadata is None:
            return None
        return classify(
            metadata,
            specifier,
            dependency_name=name,
            exclusion_rule=self.config.ignore_versions.get(name),
        )

    def changelog_url(self, name: str) -> Optional[str]:
        """Known changelog link of ``name``, from caches only."""
        metadata = self.registry_cache.metadata(name)
        if metadata is None or self.changelog is None:
            return None
        return self.changelog.get_changelog_url(metadata)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _restore_registry_cache(self) -> None:
        stored = self.store.get(REGISTRY_CACHE_STORE_KEY)
        if not isinstance(stored, Mapping):
            return

        if stored.get("registry") != self.config.registry:
            logger.info(
                "Registry changed from %s to %s, discarding cached metadata",
                stored.get("registry"),
                self.config.registry,
            )
            self.registry_cache.clear()
            return

        entries = stored.get("entries")
        if isinstance(entries, Mapping):
            count = self.registry_cache.restore(entries)
            logger.debug("Restored %d registry cache entries", count)

    async def _persist_registry_cache(self) -> None:
        payload = {"registry": self.config.registry, "entries": self.registry_cache.dump()}
        try:
            await self.store.update(REGISTRY_CACHE_STORE_KEY, payload)
        except FileOperationError as exc:
            logger.warning("Could not persist registry cache: %s", exc)
