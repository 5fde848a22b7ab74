# src/llmcontext/storage/base.py
"""
Abstract Base Class for layered context storage backends.

A backend persists one :class:`~llmcontext.models.LayeredIndex` per session
key and the offload files written by the compactor.  The index schema is
owned by the models; backends only move bytes.
"""

import abc
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from ..models import LayeredIndex


@dataclass(frozen=True)
class OffloadFile:
    """An offload file found on storage, referenced or not."""
    path: str
    session_key: str
    size_bytes: int
    modified_at: datetime


class LayeredContextStorage(abc.ABC):
    """
    Interface for index and offload file persistence.

    Errors are reported with :class:`~llmcontext.exceptions.IndexStorageError`
    and :class:`~llmcontext.exceptions.OffloadError`; callers in the engine
    decide whether a failure is fatal.
    """

    @abc.abstractmethod
    async def initialize(self) -> None:
        """Create directories or connections."""
        pass

    @abc.abstractmethod
    async def load_index(self, session_key: str) -> Optional[LayeredIndex]:
        """
        Returns:
            The stored index, or ``None`` if absent or unreadable.
        """
        pass

    @abc.abstractmethod
    async def save_index(self, index: LayeredIndex) -> None:
        """Persist ``index``, replacing any previous version atomically."""
        pass

    @abc.abstractmethod
    async def delete_index(self, session_key: str) -> bool:
        """
        Returns:
            True if an index existed and was removed.
        """
        pass

    @abc.abstractmethod
    async def list_sessions(self) -> List[str]:
        """Session keys that have an index or offload files."""
        pass

    @abc.abstractmethod
    async def write_offload(self, session_key: str, original_id: str, data: bytes, extension: str = "txt") -> str:
        """
        Store an offloaded payload under a name derived from ``original_id``.

        Returns:
            The path (or locator) readable with :meth:`read_offload`.
        """
        pass

    @abc.abstractmethod
    async def read_offload(self, path: str) -> bytes:
        """Read back the exact bytes written by :meth:`write_offload`."""
        pass

    @abc.abstractmethod
    async def delete_offload(self, path: str) -> bool:
        pass

    @abc.abstractmethod
    async def list_offloads(self, session_key: str) -> List[OffloadFile]:
        pass

    async def close(self) -> None:
        return None
