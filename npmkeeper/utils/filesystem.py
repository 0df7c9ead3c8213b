"""
Filesystem utilities for npmkeeper.

Safe helpers for reading and atomically rewriting manifests, making
backups, and a small JSON-file key-value store that gives the caches
durable storage across runs. Filesystem errors are normalized to
``FileOperationError``.
"""

from __future__ import annotations

import os
import json
import shutil
import tempfile
from pathlib import Path
from datetime import datetime
from typing import Any, Dict, Optional, Protocol, Union

from npmkeeper.utils.logger import get_logger
from npmkeeper.exceptions import FileOperationError
from npmkeeper.constants import MAX_FILE_SIZE


logger = get_logger("filesystem")

PathLike = Union[str, Path]


class KeyValueStore(Protocol):
    """Durable storage used by the caches.

    ``get`` is a synchronous read of the last written value; ``update``
    replaces a key's value and persists it.
    """

    def get(self, key: str) -> Any: ...

    async def update(self, key: str, value: Any) -> None: ...


def _validated_file(path: Path, *, must_exist: bool = True) -> Path:
    """Validate and resolve a file path."""
    if must_exist:
        if not path.exists():
            raise FileOperationError(
                f"File not found: {path}",
                file_path=str(path),
                operation="read",
            )
        if not path.is_file():
            raise FileOperationError(
                f"Not a file: {path}",
                file_path=str(path),
                operation="read",
            )
    return path.resolve()


def _atomic_write(target: Path, content: str) -> None:
    """Atomically write text to a file using a temporary file + replace."""
    target.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Optional[Path] = None

    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=str(target.parent),
            delete=False,
            prefix=f".{target.name}.",
            suffix=".tmp",
        ) as tmp:
            tmp.write(content)
            tmp.flush()
            os.fsync(tmp.fileno())
            temp_path = Path(tmp.name)

        temp_path.replace(target)

    except Exception as exc:
        if temp_path and temp_path.exists():
            try:
                temp_path.unlink()
            except OSError as cleanup_exc:
                logger.warning(
                    "Failed to clean up temporary file %s: %s",
                    temp_path,
                    cleanup_exc,
                )

        raise FileOperationError(
            f"Atomic write failed: {exc}",
            file_path=str(target),
            operation="write",
            original_error=exc,
        ) from exc


def safe_read_file(
    file_path: PathLike,
    *,
    max_size: Optional[int] = MAX_FILE_SIZE,
    encoding: str = "utf-8",
) -> str:
    """Read a text file, refusing anything larger than ``max_size`` bytes."""
    path = _validated_file(Path(file_path))
    size = path.stat().st_size

    if max_size is not None and size > max_size:
        raise FileOperationError(
            f"File too large: {size} bytes (max {max_size})",
            file_path=str(path),
            operation="read",
        )

    try:
        return path.read_text(encoding=encoding)
    except Exception as exc:
        raise FileOperationError(
            f"Failed to read file: {exc}",
            file_path=str(path),
            operation="read",
            original_error=exc,
        ) from exc


def safe_write_file(file_path: PathLike, content: str) -> None:
    """Atomically replace a file's contents."""
    _atomic_write(Path(file_path), content)


def create_timestamped_backup(file_path: PathLike) -> Path:
    """Copy a file to ``{stem}.{timestamp}.backup{suffix}`` beside it."""
    path = Path(file_path)

    if not path.exists() or not path.is_file():
        raise FileOperationError(
            f"Cannot backup invalid file: {path}",
            file_path=str(path),
            operation="backup",
        )

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_path = path.parent / f"{path.stem}.{timestamp}.backup{path.suffix}"

    try:
        shutil.copy2(path, backup_path)
        logger.debug("Created timestamped backup: %s", backup_path)
        return backup_path
    except Exception as exc:
        raise FileOperationError(
            f"Failed to create backup: {exc}",
            file_path=str(path),
            operation="backup",
            original_error=exc,
        ) from exc


class JsonFileStore:
    """:class:`KeyValueStore` backed by one JSON object on disk.

    The file is read once, lazily. An unreadable or corrupt file is logged
    and treated as empty; it is overwritten on the next :meth:`update`.

    Args:
        path: Location of the JSON file; parent directories are created.
    """

    def __init__(self, path: PathLike) -> None:
        self.path = Path(path)
        self._data: Optional[Dict[str, Any]] = None

    def _loaded(self) -> Dict[str, Any]:
        if self._data is None:
            self._data = self._read()
        return self._data

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(safe_read_file(self.path))
        except (FileOperationError, ValueError) as exc:
            logger.warning("Ignoring unreadable state file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring state file %s: not a JSON object", self.path)
            return {}
        return data

    def get(self, key: str) -> Any:
        return self._loaded().get(key)

    async def update(self, key: str, value: Any) -> None:
        """Set ``key`` and rewrite the file.

        Raises:
            FileOperationError: The file could not be written. The new value
                is still visible through :meth:`get`.
        """
        data = dict(self._loaded())
        data[key] = value
        self._data = data
        _atomic_write(self.path, json.dumps(data, indent=2, sort_keys=True))


class MemoryStore:
    """Non-durable :class:`KeyValueStore`."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any:
        return self._data.get(key)

    async def update(self, key: str, value: Any) -> None:
        self._data[key] = value
