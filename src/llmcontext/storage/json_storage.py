# src/llmcontext/storage/json_storage.py
"""
JSON file-based storage for layered indexes and offloaded tool results.

Layout under the storage root::

    <root>/
        <quoted session key>/
            index.json
            offload/
                <quoted original id>.txt
                <quoted original id>.png

Session keys such as ``telegram:42`` are percent-encoded into directory
names so they can be recovered by :meth:`JsonFileStorage.list_sessions`.
All file operations are asynchronous via aiofiles.
"""

import logging
import os
import pathlib
import uuid
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import quote, unquote

import aiofiles
import aiofiles.os as aios
from pydantic import ValidationError

from ..exceptions import ConfigError, IndexStorageError, OffloadError
from ..models import LayeredIndex
from .base import LayeredContextStorage, OffloadFile

logger = logging.getLogger(__name__)

INDEX_FILE_NAME = "index.json"
OFFLOAD_DIR_NAME = "offload"


def safe_name(key: str) -> str:
    """
    Reversible, path-safe encoding of a session key or offload id.

    Examples:
        >>> safe_name("telegram:42")
        'telegram%3A42'
        >>> safe_name("..")
        '%2E.'
    """
    if not key:
        raise ValueError("Storage keys must not be empty")
    encoded = quote(key, safe="")
    if encoded.startswith("."):
        encoded = "%2E" + encoded[1:]
    return encoded


class JsonFileStorage(LayeredContextStorage):
    """
    Stores each session's index as a JSON file and offloads as raw files.

    Args:
        path: Storage root; ``~`` is expanded.
    """

    def __init__(self, path: str) -> None:
        if not path:
            raise ConfigError("JSON layered context storage 'path' not specified in configuration.")
        self._root = pathlib.Path(os.path.expanduser(path))

    @property
    def root(self) -> pathlib.Path:
        return self._root

    async def initialize(self) -> None:
        try:
            await aios.makedirs(self._root, exist_ok=True)
            logger.info(f"JSON layered context storage initialized at: {self._root.resolve()}")
        except OSError as e:
            raise IndexStorageError(f"Could not create storage directory {self._root}: {e}")

    def _session_dir(self, session_key: str) -> pathlib.Path:
        return self._root / safe_name(session_key)

    def _index_path(self, session_key: str) -> pathlib.Path:
        return self._session_dir(session_key) / INDEX_FILE_NAME

    def _offload_dir(self, session_key: str) -> pathlib.Path:
        return self._session_dir(session_key) / OFFLOAD_DIR_NAME

    def _checked_offload_path(self, path: str) -> pathlib.Path:
        # Paths can come back from a model's file-read tool call; stay inside the root.
        resolved = pathlib.Path(path).expanduser().resolve()
        root = self._root.resolve()
        if root not in resolved.parents or resolved.parent.name != OFFLOAD_DIR_NAME:
            raise OffloadError(path, "Path is not an offload file of this storage.")
        return resolved

    # =========================================================================
    # Index
    # =========================================================================

    async def load_index(self, session_key: str) -> Optional[LayeredIndex]:
        index_path = self._index_path(session_key)
        if not await aios.path.exists(index_path):
            return None
        try:
            async with aiofiles.open(index_path, mode="r", encoding="utf-8") as f:
                raw = await f.read()
            return LayeredIndex.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"Ignoring corrupt index for session '{session_key}' at {index_path}: {e}")
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read index for session '{session_key}' at {index_path}: {e}")
            return None

    async def save_index(self, index: LayeredIndex) -> None:
        index_path = self._index_path(index.session_key)
        tmp_path = index_path.with_name(f"{INDEX_FILE_NAME}.{uuid.uuid4().hex}.tmp")
        try:
            await aios.makedirs(index_path.parent, exist_ok=True)
            async with aiofiles.open(tmp_path, mode="w", encoding="utf-8") as f:
                await f.write(index.model_dump_json(indent=2))
            await aios.replace(tmp_path, index_path)
            logger.debug(f"Index for session '{index.session_key}' with {len(index.nodes)} nodes saved to {index_path}")
        except OSError as e:
            if await aios.path.exists(tmp_path):
                await aios.remove(tmp_path)
            raise IndexStorageError(f"Failed to write index for session '{index.session_key}': {e}")

    async def delete_index(self, session_key: str) -> bool:
        index_path = self._index_path(session_key)
        if not await aios.path.exists(index_path):
            return False
        try:
            await aios.remove(index_path)
        except OSError as e:
            raise IndexStorageError(f"Failed to delete index for session '{session_key}': {e}")
        await self._remove_if_empty(self._offload_dir(session_key))
        await self._remove_if_empty(self._session_dir(session_key))
        return True

    async def list_sessions(self) -> List[str]:
        if not await aios.path.isdir(self._root):
            return []
        try:
            names = await aios.listdir(self._root)
        except OSError as e:
            raise IndexStorageError(f"Failed to list sessions in {self._root}: {e}")
        sessions = []
        for name in sorted(names):
            if await aios.path.isdir(self._root / name):
                sessions.append(unquote(name))
        return sessions

    # =========================================================================
    # Offload files
    # =========================================================================

    async def write_offload(self, session_key: str, original_id: str, data: bytes, extension: str = "txt") -> str:
        offload_dir = self._offload_dir(session_key)
        file_path = offload_dir / f"{safe_name(original_id)}.{extension.lstrip('.')}"
        try:
            await aios.makedirs(offload_dir, exist_ok=True)
            async with aiofiles.open(file_path, mode="wb") as f:
                await f.write(data)
        except OSError as e:
            raise OffloadError(str(file_path), f"Failed to write offload file: {e}")
        return str(file_path)

    async def read_offload(self, path: str) -> bytes:
        file_path = self._checked_offload_path(path)
        try:
            async with aiofiles.open(file_path, mode="rb") as f:
                return await f.read()
        except OSError as e:
            raise OffloadError(path, f"Failed to read offload file: {e}")

    async def delete_offload(self, path: str) -> bool:
        file_path = self._checked_offload_path(path)
        if not await aios.path.exists(file_path):
            return False
        try:
            await aios.remove(file_path)
        except OSError as e:
            raise OffloadError(path, f"Failed to delete offload file: {e}")
        return True

    async def list_offloads(self, session_key: str) -> List[OffloadFile]:
        offload_dir = self._offload_dir(session_key)
        if not await aios.path.isdir(offload_dir):
            return []
        files = []
        for name in sorted(await aios.listdir(offload_dir)):
            file_path = offload_dir / name
            try:
                stat = await aios.stat(file_path)
            except FileNotFoundError:
                continue
            files.append(OffloadFile(
                path=str(file_path),
                session_key=session_key,
                size_bytes=stat.st_size,
                modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            ))
        return files

    async def _remove_if_empty(self, directory: pathlib.Path) -> None:
        try:
            if await aios.path.isdir(directory) and not await aios.listdir(directory):
                await aios.rmdir(directory)
        except OSError as e:
            logger.debug(f"Could not remove directory {directory}: {e}")
