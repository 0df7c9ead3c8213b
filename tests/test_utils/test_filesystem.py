from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import patch

import pytest

from npmkeeper.exceptions import FileOperationError
from npmkeeper.utils.filesystem import (
    JsonFileStore,
    MemoryStore,
    create_timestamped_backup,
    safe_read_file,
    safe_write_file,
)


@pytest.fixture
def manifest(tmp_path: Path) -> Path:
    path = tmp_path / "package.json"
    path.write_text('{"dependencies": {"react": "^17.0.2"}}\n', encoding="utf-8")
    return path


@pytest.mark.unit
class TestSafeReadFile:
    """Tests for size-limited reads."""

    def test_reads_text(self, manifest: Path) -> None:
        assert '"react"' in safe_read_file(manifest)

    def test_accepts_str_path(self, manifest: Path) -> None:
        assert safe_read_file(str(manifest)) == manifest.read_text(encoding="utf-8")

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileOperationError) as exc_info:
            safe_read_file(tmp_path / "nope.json")

        assert exc_info.value.operation == "read"
        assert "not found" in str(exc_info.value)

    def test_directory_is_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(FileOperationError, match="Not a file"):
            safe_read_file(tmp_path)

    def test_too_large(self, manifest: Path) -> None:
        with pytest.raises(FileOperationError, match="too large"):
            safe_read_file(manifest, max_size=5)

    def test_no_size_limit(self, manifest: Path) -> None:
        assert safe_read_file(manifest, max_size=None)

    def test_bad_encoding(self, tmp_path: Path) -> None:
        path = tmp_path / "package.json"
        path.write_bytes(b"\xff\xfe\x00bad")

        with pytest.raises(FileOperationError, match="Failed to read"):
            safe_read_file(path)


@pytest.mark.unit
class TestSafeWriteFile:
    """Tests for atomic writes."""

    def test_replaces_content(self, manifest: Path) -> None:
        safe_write_file(manifest, '{"dependencies": {"react": "^18.2.0"}}\n')

        assert "^18.2.0" in manifest.read_text(encoding="utf-8")

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "state.json"

        safe_write_file(target, "{}")

        assert target.read_text(encoding="utf-8") == "{}"

    def test_leaves_no_temp_files(self, manifest: Path) -> None:
        safe_write_file(manifest, "{}")

        assert [p.name for p in manifest.parent.iterdir()] == ["package.json"]

    def test_failure_keeps_original_and_cleans_up(self, manifest: Path) -> None:
        original = manifest.read_text(encoding="utf-8")

        with patch.object(Path, "replace", side_effect=OSError("read-only")):
            with pytest.raises(FileOperationError) as exc_info:
                safe_write_file(manifest, "{}")

        assert exc_info.value.operation == "write"
        assert manifest.read_text(encoding="utf-8") == original
        assert [p.name for p in manifest.parent.iterdir()] == ["package.json"]


@pytest.mark.unit
class TestCreateTimestampedBackup:
    def test_backup_name_and_content(self, manifest: Path) -> None:
        backup = create_timestamped_backup(manifest)

        assert backup.parent == manifest.parent
        assert backup.name.startswith("package.")
        assert backup.name.endswith(".backup.json")
        assert backup.read_text(encoding="utf-8") == manifest.read_text(encoding="utf-8")

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileOperationError) as exc_info:
            create_timestamped_backup(tmp_path / "package.json")

        assert exc_info.value.operation == "backup"

    def test_copy_failure(self, manifest: Path) -> None:
        with patch("shutil.copy2", side_effect=OSError("disk full")):
            with pytest.raises(FileOperationError, match="Failed to create backup"):
                create_timestamped_backup(manifest)


@pytest.mark.unit
class TestJsonFileStore:
    """Tests for the durable key-value store."""

    @pytest.mark.asyncio
    async def test_update_persists(self, tmp_path: Path) -> None:
        path = tmp_path / "cache" / "state.json"
        store = JsonFileStore(path)

        await store.update("githubCache", {"changelog": {}, "releases": {}})

        assert store.get("githubCache") == {"changelog": {}, "releases": {}}
        assert json.loads(path.read_text(encoding="utf-8")) == {
            "githubCache": {"changelog": {}, "releases": {}}
        }

    @pytest.mark.asyncio
    async def test_reopen_reads_previous_values(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        await JsonFileStore(path).update("registryCache", {"registry": "r"})

        assert JsonFileStore(path).get("registryCache") == {"registry": "r"}

    @pytest.mark.asyncio
    async def test_keys_are_independent(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "state.json")

        await store.update("a", 1)
        await store.update("b", 2)

        assert JsonFileStore(tmp_path / "state.json").get("a") == 1

    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        assert JsonFileStore(tmp_path / "state.json").get("anything") is None

    @pytest.mark.parametrize("content", ["{corrupt", "[1, 2]"])
    def test_corrupt_file_is_empty(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "state.json"
        path.write_text(content, encoding="utf-8")

        with patch("npmkeeper.utils.filesystem.logger") as mock_logger:
            assert JsonFileStore(path).get("githubCache") is None

        mock_logger.warning.assert_called_once()

    @pytest.mark.asyncio
    async def test_write_failure_raises_but_keeps_value(self, tmp_path: Path) -> None:
        store = JsonFileStore(tmp_path / "state.json")

        with patch.object(Path, "replace", side_effect=OSError("read-only")):
            with pytest.raises(FileOperationError):
                await store.update("a", 1)

        assert store.get("a") == 1


@pytest.mark.unit
class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_get_and_update(self) -> None:
        store = MemoryStore({"a": 1})

        await store.update("b", 2)

        assert store.get("a") == 1
        assert store.get("b") == 2
        assert store.get("c") is None

    def test_initial_mapping_is_copied(self) -> None:
        initial = {"a": 1}
        store = MemoryStore(initial)
        initial["a"] = 2

        assert store.get("a") == 1
