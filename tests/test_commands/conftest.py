from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest

from npmkeeper.config import NpmKeeperConfig
from npmkeeper.core.session import UpgradeSession
from npmkeeper.exceptions import RegistryError
from npmkeeper.utils.filesystem import MemoryStore
from npmkeeper.utils.http import HTTPClient
from npmkeeper.utils.logger import disable_logging

DOCUMENTS: Dict[str, Dict[str, Any]] = {
    "react": {
        "dist-tags": {"latest": "18.2.0"},
        "versions": {v: {"name": "react", "version": v} for v in ("17.0.2", "17.0.3", "18.2.0")},
    },
    "left-pad": {
        "dist-tags": {"latest": "1.3.0"},
        "versions": {"1.3.0": {"name": "left-pad", "version": "1.3.0"}},
    },
}

MANIFEST = {
    "name": "demo",
    "dependencies": {"react": "^17.0.2"},
    "devDependencies": {"left-pad": "^1.3.0"},
}


@pytest.fixture
def registry_http() -> MagicMock:
    async def get_json(url: str) -> Dict[str, Any]:
        name = url.rsplit("/", 1)[-1]
        if name not in DOCUMENTS:
            raise RegistryError("Resource not found", url=url, status_code=404)
        return DOCUMENTS[name]

    http = MagicMock(spec=HTTPClient)
    http.get_json = AsyncMock(side_effect=get_json)
    http.close = AsyncMock()
    return http


@pytest.fixture
def project(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, registry_http: MagicMock
) -> Generator[Path, None, None]:
    """A project directory with package.json, wired to the mocked registry."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NO_COLOR", "1")
    (tmp_path / "npmkeeper.toml").write_text(
        "[npmkeeper]\nfetch_changelogs = false\n", encoding="utf-8"
    )
    manifest = tmp_path / "package.json"
    manifest.write_text(json.dumps(MANIFEST, indent=2) + "\n", encoding="utf-8")

    def session_factory(config: NpmKeeperConfig) -> UpgradeSession:
        return UpgradeSession(config, store=MemoryStore(), http_client=registry_http)

    monkeypatch.setattr("npmkeeper.commands.check.UpgradeSession", session_factory)
    monkeypatch.setattr("npmkeeper.commands.update.UpgradeSession", session_factory)

    yield manifest

    disable_logging()
