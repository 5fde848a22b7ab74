# src/llmcontext/context/tokens.py
"""
Language-aware token estimation.

The estimate is deliberately conservative: CJK code points cost 1.3 tokens
each, everything else one token per 2.5 characters, plus a fixed per-text
overhead.  Over-estimating keeps prompts below provider limits without
needing a real tokenizer.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any, Iterable

from pydantic import BaseModel

from ..models import ImageBlock, Message, TextBlock, ToolResultBlock, ToolUseBlock

logger = logging.getLogger(__name__)

CJK_PATTERN = re.compile(
    r"[\u3000-\u303F\u3040-\u309F\u30A0-\u30FF\u3400-\u4DBF"
    r"\u4E00-\u9FFF\uAC00-\uD7AF\uF900-\uFAFF\uFF00-\uFFEF]"
)

CJK_TOKENS_PER_CHAR = 1.3
NON_CJK_CHARS_PER_TOKEN = 2.5
TEXT_OVERHEAD_TOKENS = 4
IMAGE_TOKEN_COST = 1600


def estimate_text_tokens(text: str) -> int:
    """
    Estimate the token cost of a text string.

    Empty text costs nothing; any other text pays the fixed overhead.

    Examples:
        >>> estimate_text_tokens("")
        0
        >>> estimate_text_tokens("hello")
        6
        >>> estimate_text_tokens("你好")
        7
    """
    if not text:
        return 0
    cjk = len(CJK_PATTERN.findall(text))
    non_cjk = len(text) - cjk
    return math.ceil(cjk * CJK_TOKENS_PER_CHAR) + math.ceil(non_cjk / NON_CJK_CHARS_PER_TOKEN) + TEXT_OVERHEAD_TOKENS


def stringify_payload(payload: Any) -> str:
    """Render a non-text payload as JSON (falling back to ``str`` for exotic values)."""
    if isinstance(payload, str):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(mode="json")
    try:
        return json.dumps(payload, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(payload)


def estimate_block_tokens(block: Any) -> int:
    """
    Estimate the cost of one content block.

    Never raises: unknown block shapes are stringified and sized as text.
    """
    if isinstance(block, str):
        return estimate_text_tokens(block)
    if isinstance(block, TextBlock):
        return estimate_text_tokens(block.text)
    if isinstance(block, ImageBlock):
        return IMAGE_TOKEN_COST
    if isinstance(block, ToolUseBlock):
        return estimate_text_tokens(stringify_payload({"name": block.name, "input": block.input}))
    if isinstance(block, ToolResultBlock):
        content = block.content
        if isinstance(content, str):
            return estimate_text_tokens(content)
        if isinstance(content, list):
            return sum(estimate_block_tokens(item) for item in content)
        return estimate_text_tokens(stringify_payload(content))
    if isinstance(block, dict):
        block_type = block.get("type")
        if block_type == "text":
            return estimate_text_tokens(str(block.get("text", "")))
        if block_type == "image":
            return IMAGE_TOKEN_COST
    return estimate_text_tokens(stringify_payload(block))


def estimate_message_tokens(message: Message) -> int:
    if isinstance(message.content, str):
        return estimate_text_tokens(message.content)
    return sum(estimate_block_tokens(block) for block in message.content)


def estimate_messages_tokens(messages: Iterable[Message]) -> int:
    return sum(estimate_message_tokens(m) for m in messages)
