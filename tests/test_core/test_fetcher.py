from __future__ import annotations

import asyncio
from typing import List
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from npmkeeper.core.fetcher import RegistryFetchCoordinator
from npmkeeper.core.registry_cache import RegistryCache
from npmkeeper.core.registry_client import RegistryClient
from npmkeeper.exceptions import RegistryError
from npmkeeper.models.loader import CacheItem, LoaderEntry, LoaderState
from npmkeeper.models.registry import RegistryMetadata, VersionRecord


class FakeClock:
    """Settable epoch clock."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _metadata(latest: str = "1.0.0") -> RegistryMetadata:
    return RegistryMetadata(
        dist_tags={"latest": latest},
        versions={latest: VersionRecord("left-pad", latest)},
        homepage="https://github.com/left-pad/left-pad",
    )


def _client(side_effect: object = None) -> MagicMock:
    client = MagicMock(spec=RegistryClient)
    client.registry = "https://registry.npmjs.org"
    client.fetch_metadata = AsyncMock(return_value=_metadata(), side_effect=side_effect)
    return client


@pytest.mark.unit
class TestEnsureFresh:
    """Cache hits, misses and staleness."""

    @pytest.mark.asyncio
    async def test_fetches_and_fulfills(self) -> None:
        clock = FakeClock()
        client = _client()
        cache = RegistryCache()
        coordinator = RegistryFetchCoordinator(client, cache, clock=clock)

        await coordinator.ensure_fresh("left-pad", max_age=60)

        entry = coordinator.get_cached("left-pad")
        assert entry is not None
        assert entry.state is LoaderState.FULFILLED
        assert entry.start_time == 1_000.0
        assert entry.value is not None
        assert entry.value.fetched_at == 1_000.0
        assert entry.value.metadata == _metadata()
        client.fetch_metadata.assert_awaited_once_with("left-pad")

    @pytest.mark.asyncio
    async def test_fresh_entry_is_a_cache_hit(self) -> None:
        clock = FakeClock()
        client = _client()
        cache = RegistryCache()
        cache.put("left-pad", LoaderEntry.fulfilled(990.0, CacheItem(990.0, _metadata())))
        coordinator = RegistryFetchCoordinator(client, cache, clock=clock)

        await coordinator.ensure_fresh("left-pad", max_age=60)

        client.fetch_metadata.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_entry_is_refetched(self) -> None:
        clock = FakeClock()
        client = _client()
        cache = RegistryCache()
        cache.put("left-pad", LoaderEntry.fulfilled(900.0, CacheItem(900.0, _metadata("0.9.0"))))
        coordinator = RegistryFetchCoordinator(client, cache, clock=clock)

        await coordinator.ensure_fresh("left-pad", max_age=60)

        client.fetch_metadata.assert_awaited_once()
        assert cache.metadata("left-pad") == _metadata()

    @pytest.mark.asyncio
    async def test_entry_at_exact_cutoff_is_fresh(self) -> None:
        clock = FakeClock()
        client = _client()
        cache = RegistryCache()
        cache.put("left-pad", LoaderEntry.fulfilled(940.0, CacheItem(940.0, _metadata())))
        coordinator = RegistryFetchCoordinator(client, cache, clock=clock)

        await coordinator.ensure_fresh("left-pad", max_age=60)

        client.fetch_metadata.assert_not_awaited()


@pytest.mark.unit
class TestDeduplication:
    """At most one in-flight fetch per dependency name."""

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_fetch(self) -> None:
        release = asyncio.Event()

        async def slow_fetch(name: str) -> RegistryMetadata:
            await release.wait()
            return _metadata()

        client = _client(side_effect=slow_fetch)
        coordinator = RegistryFetchCoordinator(client, RegistryCache())

        first = coordinator.ensure_fresh("left-pad", max_age=60)
        second = coordinator.ensure_fresh("left-pad", max_age=60)

        entry = coordinator.get_cached("left-pad")
        assert entry is not None and entry.is_in_progress

        release.set()
        await asyncio.gather(first, second)

        assert client.fetch_metadata.await_count == 1

    @pytest.mark.asyncio
    async def test_different_names_fetch_in_parallel(self) -> None:
        started: List[str] = []
        release = asyncio.Event()

        async def slow_fetch(name: str) -> RegistryMetadata:
            started.append(name)
            await release.wait()
            return _metadata()

        coordinator = RegistryFetchCoordinator(_client(side_effect=slow_fetch), RegistryCache())

        pending = [coordinator.ensure_fresh(n, 60) for n in ("a", "b")]
        await asyncio.sleep(0)
        assert sorted(started) == ["a", "b"]

        release.set()
        await asyncio.gather(*pending)

    @pytest.mark.asyncio
    async def test_abandoning_the_awaitable_keeps_the_fetch(self) -> None:
        release = asyncio.Event()

        async def slow_fetch(name: str) -> RegistryMetadata:
            await release.wait()
            return _metadata()

        coordinator = RegistryFetchCoordinator(_client(side_effect=slow_fetch), RegistryCache())

        waiter = asyncio.ensure_future(coordinator.ensure_fresh("left-pad", 60))
        await asyncio.sleep(0)
        waiter.cancel()

        release.set()
        await coordinator.ensure_fresh("left-pad", 60)

        entry = coordinator.get_cached("left-pad")
        assert entry is not None and entry.is_fulfilled


@pytest.mark.unit
class TestFailures:
    """Failures become REJECTED entries and are retried."""

    @pytest.mark.asyncio
    async def test_failure_is_rejected_and_logged(self) -> None:
        error = RegistryError(
            "Package 'nope' not found in registry",
            package_name="nope",
            url="https://registry.npmjs.org/nope",
            status_code=404,
        )
        coordinator = RegistryFetchCoordinator(_client(side_effect=error), RegistryCache())

        with patch("npmkeeper.core.fetcher.logger") as mock_logger:
            await coordinator.ensure_fresh("nope", 60)

        entry = coordinator.get_cached("nope")
        assert entry is not None
        assert entry.state is LoaderState.REJECTED
        assert entry.value is None
        args = mock_logger.warning.call_args[0]
        assert "nope" in args
        assert "https://registry.npmjs.org/nope" in args
        assert 404 in args

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_contained(self) -> None:
        coordinator = RegistryFetchCoordinator(
            _client(side_effect=RuntimeError("boom")), RegistryCache()
        )

        await coordinator.ensure_fresh("left-pad", 60)

        entry = coordinator.get_cached("left-pad")
        assert entry is not None and entry.state is LoaderState.REJECTED

    @pytest.mark.asyncio
    async def test_rejected_entry_is_retried_immediately(self) -> None:
        client = _client()
        client.fetch_metadata.side_effect = [RuntimeError("flaky"), _metadata()]
        coordinator = RegistryFetchCoordinator(client, RegistryCache())

        await coordinator.ensure_fresh("left-pad", 3_600)
        await coordinator.ensure_fresh("left-pad", 3_600)

        assert client.fetch_metadata.await_count == 2
        entry = coordinator.get_cached("left-pad")
        assert entry is not None and entry.is_fulfilled


@pytest.mark.unit
class TestRefreshAndChangelog:
    """Bulk refresh and the changelog side effect."""

    @pytest.mark.asyncio
    async def test_refresh_many(self) -> None:
        client = _client()
        coordinator = RegistryFetchCoordinator(client, RegistryCache())

        await coordinator.refresh(["a", "b", "c"], max_age=60)

        assert client.fetch_metadata.await_count == 3

    @pytest.mark.asyncio
    async def test_first_success_starts_changelog_lookup(self) -> None:
        changelog = MagicMock()
        changelog.get_cached.return_value = None
        coordinator = RegistryFetchCoordinator(_client(), RegistryCache(), changelog=changelog)

        await coordinator.ensure_fresh("left-pad", 60)

        changelog.start.assert_called_once_with("left-pad", _metadata())

    @pytest.mark.asyncio
    async def test_changelog_lookup_not_restarted(self) -> None:
        changelog = MagicMock()
        changelog.get_cached.return_value = LoaderEntry.rejected(1.0)
        coordinator = RegistryFetchCoordinator(_client(), RegistryCache(), changelog=changelog)

        await coordinator.ensure_fresh("left-pad", 60)

        changelog.start.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_fetch_does_not_start_changelog(self) -> None:
        changelog = MagicMock()
        changelog.get_cached.return_value = None
        coordinator = RegistryFetchCoordinator(
            _client(side_effect=RuntimeError("boom")), RegistryCache(), changelog=changelog
        )

        await coordinator.ensure_fresh("left-pad", 60)

        changelog.start.assert_not_called()

    @pytest.mark.asyncio
    async def test_drain_delegates_to_changelog(self) -> None:
        changelog = MagicMock()
        changelog.drain = AsyncMock()
        coordinator = RegistryFetchCoordinator(_client(), RegistryCache(), changelog=changelog)

        await coordinator.drain()

        changelog.drain.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_drain_without_changelog(self) -> None:
        await RegistryFetchCoordinator(_client(), RegistryCache()).drain()
