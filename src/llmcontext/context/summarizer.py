# src/llmcontext/context/summarizer.py
"""
Summary generation for context nodes, LLM first with a deterministic fallback.

Every node carries two generated texts:

1. **Overview** (L1): summarizes the full segment transcript.
2. **Abstract** (L0): compresses the overview to one or two sentences.

When a :class:`LlmSummaryProvider` is configured it is asked first.  A
provider that raises, times out or returns only whitespace triggers the
extractive fallback and a tagged reason:

- ``overview_llm_failed:<message>`` / ``overview_llm_empty``
- ``abstract_llm_failed:<message>`` / ``abstract_llm_empty``

Without a provider the extractive text is the primary result and no
fallback is reported.

Example::

    generator = SummaryGenerator(provider=my_llm, timeout_seconds=20)
    overview = await generator.generate_overview(transcript, target_tokens=1200)
    abstract = await generator.generate_abstract(overview.text, target_tokens=120)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Literal, Optional, Protocol, runtime_checkable

from ..models import SummaryResult
from .text import normalize_whitespace, split_sentences, trim_to_token_target

logger = logging.getLogger(__name__)

SummaryLevel = Literal["overview", "abstract"]

FALLBACK_HEADER = "Archive summary:"
FALLBACK_MAX_LINES = 18
FALLBACK_ABSTRACT_SENTENCES = 2
EMPTY_INPUT_SUMMARY = "No historical content was available."


@runtime_checkable
class LlmSummaryProvider(Protocol):
    """Produces a summary of ``text`` at the requested level, about ``target_tokens`` long."""

    async def summarize(self, text: str, target_tokens: int, level: SummaryLevel) -> str: ...


# =============================================================================
# Extractive fallbacks
# =============================================================================


def extractive_overview(text: str, target_tokens: int) -> str:
    """
    Bulleted list of the first non-empty lines under a fixed header.

    Examples:
        >>> extractive_overview("first\\n\\nsecond", 100)
        'Archive summary:\\n- first\\n- second'
    """
    normalized = normalize_whitespace(text)
    if not normalized:
        return EMPTY_INPUT_SUMMARY
    lines = [line.strip() for line in normalized.split("\n") if line.strip()]
    bullets = [FALLBACK_HEADER, *(f"- {line}" for line in lines[:FALLBACK_MAX_LINES])]
    return trim_to_token_target("\n".join(bullets), target_tokens)


def extractive_abstract(overview: str, target_tokens: int) -> str:
    """First one or two sentences of the overview."""
    normalized = normalize_whitespace(overview)
    if not normalized:
        return EMPTY_INPUT_SUMMARY
    first = " ".join(split_sentences(normalized)[:FALLBACK_ABSTRACT_SENTENCES])
    return trim_to_token_target(first or normalized, target_tokens)


# =============================================================================
# Generator
# =============================================================================


class SummaryGenerator:
    """
    Generates node overviews and abstracts.

    Args:
        provider: Optional LLM summary provider.
        timeout_seconds: Upper bound on one provider call.
    """

    def __init__(self, provider: Optional[LlmSummaryProvider] = None, timeout_seconds: float = 20.0) -> None:
        self.provider = provider
        self.timeout_seconds = timeout_seconds

    async def generate_overview(self, text: str, target_tokens: int) -> SummaryResult:
        return await self._generate(text, target_tokens, "overview", extractive_overview)

    async def generate_abstract(self, overview: str, target_tokens: int) -> SummaryResult:
        return await self._generate(overview, target_tokens, "abstract", extractive_abstract)

    async def _generate(self, text, target_tokens, level: SummaryLevel, fallback) -> SummaryResult:
        if self.provider is None:
            return SummaryResult(text=fallback(text, target_tokens))

        try:
            generated = await asyncio.wait_for(
                self.provider.summarize(text, target_tokens, level),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            reason = f"{level}_llm_failed:timed out after {self.timeout_seconds}s"
            logger.warning("LLM %s summary timed out after %ss, using extractive", level, self.timeout_seconds)
            return SummaryResult(fallback(text, target_tokens), True, reason)
        except Exception as exc:
            logger.warning("LLM %s summary failed: %s, using extractive", level, exc)
            return SummaryResult(fallback(text, target_tokens), True, f"{level}_llm_failed:{exc}")

        trimmed = trim_to_token_target(generated or "", target_tokens)
        if not trimmed:
            logger.warning("LLM %s summary was empty, using extractive", level)
            return SummaryResult(fallback(text, target_tokens), True, f"{level}_llm_empty")
        return SummaryResult(text=trimmed)
