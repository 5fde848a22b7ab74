# src/llmcontext/context/messages.py
"""
Helpers that turn the message stream into plain text.

Two renderings exist on purpose:

- :func:`flatten_message` / :func:`to_transcript` keep everything,
  including tool calls and results; they feed the L2 transcript.
- :func:`message_text` / :func:`build_topic_reference` keep only text
  blocks, so tool parameters and payloads never leak into topic scoring.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from ..models import ImageBlock, Message, Role, TextBlock, ToolResultBlock, ToolUseBlock
from .text import clip, normalize_whitespace
from .tokens import stringify_payload

logger = logging.getLogger(__name__)

IMAGE_PLACEHOLDER = "[Image content]"

TOPIC_REFERENCE_MESSAGES = 8
TOPIC_REFERENCE_ITEM_CHARS = 120
TOPIC_REFERENCE_MAX_CHARS = 600


def _flatten_block(block) -> str:
    if isinstance(block, TextBlock):
        return block.text
    if isinstance(block, ImageBlock):
        return IMAGE_PLACEHOLDER
    if isinstance(block, ToolUseBlock):
        return f"[Tool use] {block.name}: {stringify_payload(block.input)}"
    if isinstance(block, ToolResultBlock):
        content = block.content
        if isinstance(content, str):
            return f"[Tool result] {content}"
        if isinstance(content, list):
            parts = []
            for item in content:
                if isinstance(item, TextBlock):
                    parts.append(item.text)
                elif isinstance(item, ImageBlock):
                    parts.append(IMAGE_PLACEHOLDER)
                else:
                    parts.append(stringify_payload(item))
            return "[Tool result]\n" + "\n".join(parts)
        return f"[Tool result] {stringify_payload(content)}"
    return stringify_payload(block)


def flatten_message(message: Message) -> str:
    """Render every block of a message as text, whitespace-normalized."""
    if isinstance(message.content, str):
        return normalize_whitespace(message.content)
    return normalize_whitespace("\n".join(_flatten_block(b) for b in message.content))


def message_text(message: Message) -> str:
    """Only the text blocks of a message."""
    if isinstance(message.content, str):
        return normalize_whitespace(message.content)
    return normalize_whitespace("\n".join(b.text for b in message.content if isinstance(b, TextBlock)))


def to_transcript(messages: Sequence[Message]) -> str:
    """
    ``USER: ...`` / ``ASSISTANT: ...`` paragraphs; empty messages are skipped.

    System messages are labelled USER, matching how providers fold them into
    the prompt.
    """
    lines = []
    for message in messages:
        text = flatten_message(message)
        if not text:
            continue
        label = "ASSISTANT" if message.role == Role.ASSISTANT else "USER"
        lines.append(f"{label}: {text}")
    return normalize_whitespace("\n\n".join(lines))


def _has_block(message: Message, block_type: type) -> bool:
    return not isinstance(message.content, str) and any(isinstance(b, block_type) for b in message.content)


def split_segments(messages: Sequence[Message], segment_size: int) -> List[List[Message]]:
    """
    Chunk messages into segments of about ``segment_size`` messages.

    A segment never ends on a tool call, nor right before the tool result
    that answers it, so a segment may run past ``segment_size``.
    """
    if segment_size < 1:
        raise ValueError("segment_size must be at least 1")
    segments: List[List[Message]] = []
    current: List[Message] = []
    for i, message in enumerate(messages):
        current.append(message)
        if len(current) < segment_size:
            continue
        if _has_block(message, ToolUseBlock):
            continue
        if i + 1 < len(messages) and _has_block(messages[i + 1], ToolResultBlock):
            continue
        segments.append(current)
        current = []
    if current:
        segments.append(current)
    return segments


def latest_user_query(messages: Sequence[Message]) -> str:
    """Text of the most recent user message that has any; tool-result-only turns are skipped."""
    for message in reversed(messages):
        if message.role != Role.USER:
            continue
        text = message_text(message)
        if text:
            return text
    return ""


def build_topic_reference(messages: Sequence[Message], max_messages: int = TOPIC_REFERENCE_MESSAGES) -> str:
    """
    Compact text-only description of what recent messages talk about.

    Takes the last ``max_messages`` user/assistant messages in order, clips
    each to 120 characters and the joined result to 600.
    """
    if max_messages <= 0:
        return ""
    parts = []
    for message in list(messages)[-max_messages:]:
        if message.role not in (Role.USER, Role.ASSISTANT):
            continue
        text = " ".join(message_text(message).split())
        if text:
            parts.append(clip(text, TOPIC_REFERENCE_ITEM_CHARS))
    return clip("; ".join(parts), TOPIC_REFERENCE_MAX_CHARS)
