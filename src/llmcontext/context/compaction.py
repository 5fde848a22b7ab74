# src/llmcontext/context/compaction.py
"""
Tool result compaction: oversized payloads move to offload files.

Older tool results bloat every later prompt.  The compactor walks the
history from newest to oldest, leaves the ``keep_recent_tool_pairs`` most
recent tool-result messages untouched, and in older ones:

- text longer than ``tool_result_file_threshold`` characters is written to
  an offload file and replaced by a reference the model can follow with a
  file-read tool;
- inline base64 images are written to image files and replaced the same way;
- URL images are replaced by a one-line reference to the URL.

Writes are fail-open: if storage refuses a payload it stays inline.

Example::

    compactor = Compactor(storage, config.compaction)
    result = await compactor.compact("telegram:42", messages)
    result.messages      # new list; the input is not mutated
    result.offloaded     # OffloadRecord per written file
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Sequence

from ..config.models import CompactionSettings
from ..exceptions import StorageError
from ..models import (
    CompactionResult,
    ImageBlock,
    Message,
    OffloadRecord,
    Role,
    TextBlock,
    ToolResultBlock,
)
from ..storage.base import LayeredContextStorage
from .tokens import stringify_payload

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/gif": "gif",
    "image/webp": "webp",
}


def text_reference(path: str, original_chars: int) -> str:
    return (
        f"[Content offloaded to file ({original_chars} chars): {path}]\n"
        "[Use the file_read tool to access the full content if needed]"
    )


def image_reference(path: str) -> str:
    return f"[Image offloaded to file: {path}]\n[Use the file_read tool to view this image if needed]"


def url_image_reference(url: str) -> str:
    return f"[Image reference: {url}]"


def _is_tool_result_message(message: Message) -> bool:
    return message.role == Role.USER and bool(message.tool_result_blocks())


@dataclass
class _BlockOutcome:
    records: List[OffloadRecord] = field(default_factory=list)
    images: int = 0
    failures: int = 0


class Compactor:
    """
    Offloads large tool result payloads outside the recent window.

    Args:
        storage: Where offload files are written.
        settings: Size threshold, protected window and file age limit.
    """

    def __init__(self, storage: LayeredContextStorage, settings: CompactionSettings) -> None:
        self.storage = storage
        self.settings = settings

    def compactable_indices(self, messages: Sequence[Message]) -> List[int]:
        """Indices of tool-result messages outside the protected recent window, newest first."""
        newest_first = [i for i in range(len(messages) - 1, -1, -1) if _is_tool_result_message(messages[i])]
        return newest_first[self.settings.keep_recent_tool_pairs:]

    async def compact(self, session_key: str, messages: Sequence[Message]) -> CompactionResult:
        compacted = list(messages)
        result = CompactionResult(messages=compacted)

        for msg_index in self.compactable_indices(messages):
            message = messages[msg_index]
            new_blocks: List[Any] = []
            modified = False
            for block in message.blocks():
                if not isinstance(block, ToolResultBlock):
                    new_blocks.append(block)
                    continue
                new_block, outcome = await self._compact_block(session_key, block)
                result.offloaded.extend(outcome.records)
                result.images_compacted += outcome.images
                result.failures += outcome.failures
                if new_block is not block:
                    modified = True
                new_blocks.append(new_block)
            if modified:
                compacted[msg_index] = message.model_copy(update={"content": new_blocks})

        if result.offloaded or result.images_compacted:
            logger.info(
                "Compacted session '%s': %d payload(s) offloaded, %d image(s) replaced, %d failure(s)",
                session_key, len(result.offloaded), result.images_compacted, result.failures,
            )
        return result

    async def _compact_block(self, session_key: str, block: ToolResultBlock) -> tuple[ToolResultBlock, _BlockOutcome]:
        outcome = _BlockOutcome()
        content = block.content
        threshold = self.settings.tool_result_file_threshold

        if isinstance(content, str) or not isinstance(content, list):
            text = content if isinstance(content, str) else stringify_payload(content)
            if len(text) <= threshold:
                return block, outcome
            reference = await self._offload_text(session_key, block.tool_use_id, text, outcome)
            if reference is None:
                return block, outcome
            return block.model_copy(update={"content": reference}), outcome

        multi = len(content) > 1
        new_items: List[Any] = []
        changed = False
        for idx, item in enumerate(content):
            original_id = f"{block.tool_use_id}_{idx}" if multi else block.tool_use_id
            replacement: Optional[str] = None
            if isinstance(item, TextBlock) and len(item.text) > threshold:
                replacement = await self._offload_text(session_key, original_id, item.text, outcome)
            elif isinstance(item, ImageBlock):
                replacement = await self._offload_image(session_key, original_id, item, outcome)
            if replacement is None:
                new_items.append(item)
            else:
                new_items.append(TextBlock(text=replacement))
                changed = True

        if not changed:
            return block, outcome
        return block.model_copy(update={"content": new_items}), outcome

    async def _offload_text(self, session_key: str, original_id: str, text: str, outcome: _BlockOutcome) -> Optional[str]:
        data = text.encode("utf-8")
        path = await self._write(session_key, original_id, data, "txt", outcome)
        if path is None:
            return None
        return text_reference(path, len(text))

    async def _offload_image(self, session_key: str, original_id: str, image: ImageBlock, outcome: _BlockOutcome) -> Optional[str]:
        source = image.source
        if source.type == "url" and source.url:
            outcome.images += 1
            return url_image_reference(source.url)
        if source.type != "base64" or not source.data:
            return None
        try:
            data = base64.b64decode(source.data, validate=True)
        except (binascii.Error, ValueError) as e:
            logger.warning("Keeping undecodable inline image '%s' in session '%s': %s", original_id, session_key, e)
            return None
        extension = IMAGE_EXTENSIONS.get(source.media_type or "", "png")
        path = await self._write(session_key, original_id, data, extension, outcome)
        if path is None:
            return None
        outcome.images += 1
        return image_reference(path)

    async def _write(self, session_key: str, original_id: str, data: bytes, extension: str, outcome: _BlockOutcome) -> Optional[str]:
        try:
            path = await self.storage.write_offload(session_key, original_id, data, extension)
        except StorageError as e:
            outcome.failures += 1
            logger.warning("Offload of '%s' failed for session '%s', keeping it inline: %s", original_id, session_key, e)
            return None
        outcome.records.append(OffloadRecord(original_id=original_id, file_path=path, size_bytes=len(data)))
        logger.debug("Offloaded '%s' (%d bytes) to %s", original_id, len(data), path)
        return path


def is_expired(modified_at: datetime, max_age: timedelta, now: Optional[datetime] = None) -> bool:
    return (now or datetime.now(timezone.utc)) - modified_at > max_age
