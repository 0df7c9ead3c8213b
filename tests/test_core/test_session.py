from __future__ import annotations

from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from npmkeeper.config import NpmKeeperConfig
from npmkeeper.constants import LINK_CACHE_STORE_KEY, REGISTRY_CACHE_STORE_KEY
from npmkeeper.core.session import UpgradeSession
from npmkeeper.exceptions import FileOperationError, RegistryError
from npmkeeper.models.loader import LoaderState
from npmkeeper.utils.filesystem import MemoryStore
from npmkeeper.utils.http import HTTPClient

REGISTRY = "https://registry.npmjs.org"


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _document(latest: str, *versions: str) -> Dict[str, Any]:
    return {
        "dist-tags": {"latest": latest},
        "versions": {v: {"name": "pkg", "version": v} for v in versions or (latest,)},
        "repository": {"url": "git+https://github.com/owner/pkg.git"},
    }


def _http(documents: Dict[str, Dict[str, Any]]) -> MagicMock:
    async def get_json(url: str) -> Dict[str, Any]:
        name = url.rsplit("/", 1)[-1]
        if name not in documents:
            raise RegistryError("Resource not found", url=url, status_code=404)
        return documents[name]

    head = MagicMock(spec=httpx.Response)
    head.status_code = 200
    head.headers = httpx.Headers({})

    http = MagicMock(spec=HTTPClient)
    http.get_json = AsyncMock(side_effect=get_json)
    http.send = AsyncMock(return_value=head)
    http.close = AsyncMock()
    return http


def _config(**overrides: Any) -> NpmKeeperConfig:
    return NpmKeeperConfig(**overrides)


@pytest.mark.unit
class TestSessionQueries:
    """Refreshing and classifying through one session."""

    @pytest.mark.asyncio
    async def test_refresh_then_classify(self) -> None:
        http = _http({"react": _document("18.2.0", "17.0.2", "18.0.0", "18.2.0")})

        async with UpgradeSession(
            _config(fetch_changelogs=False), store=MemoryStore(), http_client=http
        ) as session:
            await session.refresh(["react"])
            info = session.classify("react", "^17.0.2")

        assert info is not None
        assert info.major is not None and info.major.version == "18.2.0"
        assert info.existing_version is True

    @pytest.mark.asyncio
    async def test_classify_without_metadata(self) -> None:
        async with UpgradeSession(
            _config(fetch_changelogs=False), store=MemoryStore(), http_client=_http({})
        ) as session:
            with patch("npmkeeper.core.fetcher.logger"):
                await session.refresh(["missing"])

            assert session.classify("missing", "^1.0.0") is None
            entry = session.get_cached("missing")
            assert entry is not None and entry.state is LoaderState.REJECTED

    @pytest.mark.asyncio
    async def test_ignore_versions_applies(self) -> None:
        http = _http({"typescript": _document("5.0.4", "4.9.5", "5.0.4")})
        config = _config(fetch_changelogs=False, ignore_versions={"typescript": ">=5"})

        async with UpgradeSession(config, store=MemoryStore(), http_client=http) as session:
            await session.refresh(["typescript"])
            info = session.classify("typescript", "^4.9.5")

        assert info is not None and not info.has_update()
        assert info.best_upgrade() is None

    @pytest.mark.asyncio
    async def test_is_ignored(self) -> None:
        config = _config(fetch_changelogs=False, ignore_patterns=["^@internal/"])

        session = UpgradeSession(config, store=MemoryStore(), http_client=_http({}))

        assert session.is_ignored("@internal/tools") is True
        assert session.is_ignored("react") is False

    @pytest.mark.asyncio
    async def test_changelog_discovered_during_refresh(self) -> None:
        http = _http({"pkg": _document("1.0.0")})

        async with UpgradeSession(_config(), store=MemoryStore(), http_client=http) as session:
            await session.refresh(["pkg"])
            await session.drain()

            assert session.changelog_url("pkg") == (
                "https://github.com/owner/pkg/blob/master/CHANGELOG.md"
            )

        http.send.assert_awaited_once_with(
            "HEAD", "https://github.com/owner/pkg/blob/master/CHANGELOG.md"
        )

    @pytest.mark.asyncio
    async def test_changelogs_disabled(self) -> None:
        http = _http({"pkg": _document("1.0.0")})

        async with UpgradeSession(
            _config(fetch_changelogs=False), store=MemoryStore(), http_client=http
        ) as session:
            await session.refresh(["pkg"])

            assert session.changelog is None
            assert session.changelog_url("pkg") is None

        http.send.assert_not_awaited()


@pytest.mark.unit
class TestSessionPersistence:
    """Registry cache restore on open and persist on close."""

    @pytest.mark.asyncio
    async def test_close_persists_registry_cache(self) -> None:
        store = MemoryStore()
        http = _http({"pkg": _document("1.0.0")})
        clock = FakeClock()

        async with UpgradeSession(
            _config(fetch_changelogs=False), store=store, http_client=http, clock=clock
        ) as session:
            await session.refresh(["pkg"])

        stored = store.get(REGISTRY_CACHE_STORE_KEY)
        assert stored["registry"] == REGISTRY
        assert stored["entries"]["pkg"]["fetchedAt"] == clock.now
        assert stored["entries"]["pkg"]["metadata"]["dist-tags"] == {"latest": "1.0.0"}

    @pytest.mark.asyncio
    async def test_restored_entries_are_fresh_cache_hits(self) -> None:
        store = MemoryStore()
        clock = FakeClock()
        first = _http({"pkg": _document("1.0.0")})

        async with UpgradeSession(
            _config(fetch_changelogs=False), store=store, http_client=first, clock=clock
        ) as session:
            await session.refresh(["pkg"])

        clock.now += 60
        second = _http({"pkg": _document("2.0.0")})
        async with UpgradeSession(
            _config(fetch_changelogs=False), store=store, http_client=second, clock=clock
        ) as session:
            await session.refresh(["pkg"])
            metadata = session.registry_cache.metadata("pkg")

        second.get_json.assert_not_awaited()
        assert metadata is not None and metadata.latest == "1.0.0"

    @pytest.mark.asyncio
    async def test_stale_restored_entries_are_refetched(self) -> None:
        store = MemoryStore()
        clock = FakeClock()

        async with UpgradeSession(
            _config(fetch_changelogs=False),
            store=store,
            http_client=_http({"pkg": _document("1.0.0")}),
            clock=clock,
        ) as session:
            await session.refresh(["pkg"])

        clock.now += 121 * 60
        second = _http({"pkg": _document("2.0.0")})
        async with UpgradeSession(
            _config(fetch_changelogs=False), store=store, http_client=second, clock=clock
        ) as session:
            await session.refresh(["pkg"])

        second.get_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_registry_change_discards_cache(self) -> None:
        store = MemoryStore(
            {
                REGISTRY_CACHE_STORE_KEY: {
                    "registry": "https://npm.example.com",
                    "entries": {
                        "pkg": {"fetchedAt": 1.0, "metadata": _document("1.0.0")},
                    },
                }
            }
        )

        session = UpgradeSession(
            _config(fetch_changelogs=False), store=store, http_client=_http({})
        )
        await session.open()

        assert session.get_cached("pkg") is None

    @pytest.mark.asyncio
    async def test_open_sweeps_link_cache(self) -> None:
        clock = FakeClock()
        store = MemoryStore(
            {
                LINK_CACHE_STORE_KEY: {
                    "changelog": {"o/r": {"value": True, "expiresAt": clock.now - 1}},
                    "releases": {},
                }
            }
        )

        session = UpgradeSession(_config(), store=store, http_client=_http({}), clock=clock)
        await session.open()

        assert store.get(LINK_CACHE_STORE_KEY)["changelog"] == {}

    @pytest.mark.asyncio
    async def test_persist_failure_is_logged(self) -> None:
        store = MagicMock()
        store.get.return_value = None
        store.update = AsyncMock(side_effect=FileOperationError("disk full"))

        session = UpgradeSession(
            _config(fetch_changelogs=False), store=store, http_client=_http({})
        )
        with patch("npmkeeper.core.session.logger") as mock_logger:
            await session.open()
            await session.close()

        mock_logger.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_borrowed_http_client_is_not_closed(self) -> None:
        http = _http({})

        async with UpgradeSession(_config(fetch_changelogs=False), store=MemoryStore(), http_client=http):
            pass

        http.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_default_store_lives_in_cache_dir(self, tmp_path: Any) -> None:
        session = UpgradeSession(_config(cache_dir=str(tmp_path)), http_client=_http({}))

        assert session.store.path == tmp_path / "state.json"
