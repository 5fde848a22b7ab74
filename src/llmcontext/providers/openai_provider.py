# src/llmcontext/providers/openai_provider.py
"""
OpenAI-backed summary provider and topic scorer.

Both adapters use the chat completions API through ``AsyncOpenAI`` and
raise :class:`~llmcontext.exceptions.ProviderError` on failure; the
summary generator and topic tracker turn those errors into their
deterministic fallbacks.

Requires ``pip install llmcontext[openai]``.
"""

import asyncio
import json
import logging
import math
import os
import re
from typing import Any, Dict, Optional

try:
    from openai import AsyncOpenAI, OpenAIError
    openai_available = True
except ImportError:
    openai_available = False
    AsyncOpenAI = None  # type: ignore [assignment]
    OpenAIError = Exception  # type: ignore [assignment]

from ..exceptions import ConfigError, ProviderError, SummaryProviderError
from ..models import TopicRelevanceScores

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"

SUMMARY_SYSTEM_PROMPTS = {
    "overview": (
        "You compress archived chat history for later retrieval. Write a factual overview of the "
        "conversation: decisions, open tasks, names, file paths, numbers and errors. "
        "Use short bullet points. Stay under {target_tokens} tokens."
    ),
    "abstract": (
        "Write one or two sentences stating what this conversation segment is about, so a search "
        "system can tell whether it is relevant. Stay under {target_tokens} tokens."
    ),
}

SCORER_SYSTEM_PROMPT = (
    "Rate query relevance to each topic (0.0=unrelated, 1.0=same topic). "
    'If a topic is absent, its score is 0. Reply with ONLY: {"relMain":<n>,"relTemp":<n>}'
)

_JSON_OBJECT = re.compile(r"\{[^}]*\}")


class _OpenAIChatAdapter:
    """Shared client setup and a single-turn completion call."""

    provider_name = "openai"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if not openai_available:
            raise ImportError("OpenAI library is not installed. Please install `openai` or `llmcontext[openai]`.")
        config = config or {}
        self.api_key = config.get("api_key") or os.environ.get("OPENAI_API_KEY")
        self.base_url = config.get("base_url")
        self.model = config.get("model", DEFAULT_MODEL)
        self.timeout = float(config.get("timeout", 30.0))
        if not self.api_key:
            logger.warning("OpenAI API key not found in config or environment variable OPENAI_API_KEY.")
        try:
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)
        except OpenAIError as e:
            raise ConfigError(f"OpenAI client initialization failed: {e}")

    async def _complete(self, system: str, user: str, max_tokens: int) -> str:
        logger.debug(f"Sending request to OpenAI API: model='{self.model}', max_tokens={max_tokens}")
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                max_tokens=max_tokens,
                temperature=0,
            )
        except OpenAIError as e:
            raise ProviderError(self.provider_name, f"OpenAI API Error: {e}")
        except asyncio.TimeoutError:
            raise ProviderError(self.provider_name, f"Request timed out after {self.timeout}s.")
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def close(self) -> None:
        await self._client.close()


class OpenAISummaryProvider(_OpenAIChatAdapter):
    """
    ``LlmSummaryProvider`` using an OpenAI chat model.

    Config keys: ``api_key``, ``base_url``, ``model``, ``timeout``.
    """

    async def summarize(self, text: str, target_tokens: int, level: str) -> str:
        system_prompt = SUMMARY_SYSTEM_PROMPTS.get(level)
        if system_prompt is None:
            raise SummaryProviderError(self.provider_name, f"Unknown summary level '{level}'")
        try:
            return await self._complete(
                system_prompt.format(target_tokens=target_tokens),
                text,
                # Headroom; the generator trims to target anyway.
                max_tokens=max(32, int(target_tokens * 1.5)),
            )
        except ProviderError as e:
            raise SummaryProviderError(self.provider_name, str(e)) from e


def parse_relevance_scores(text: str) -> TopicRelevanceScores:
    """
    Extract ``{"relMain": x, "relTemp": y}`` from a model reply.

    Anything unparsable yields zeros; values are clamped to [0, 1].

    Examples:
        >>> parse_relevance_scores('Sure: {"relMain": 0.9, "relTemp": 1.4}')
        TopicRelevanceScores(rel_main=0.9, rel_temp=1.0)
    """
    match = _JSON_OBJECT.search(text or "")
    if not match:
        return TopicRelevanceScores(0.0, 0.0)
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError:
        return TopicRelevanceScores(0.0, 0.0)
    if not isinstance(parsed, dict):
        return TopicRelevanceScores(0.0, 0.0)

    def _value(key: str) -> float:
        value = parsed.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            return 0.0
        return min(1.0, max(0.0, float(value)))

    return TopicRelevanceScores(_value("relMain"), _value("relTemp"))


def build_scoring_prompt(query: str, main_reference: str, temp_reference: str) -> str:
    prompt = f"Main topic: {main_reference or '(none)'}"
    if temp_reference:
        prompt += f"\nTemp topic: {temp_reference}"
    return prompt + f"\nQuery: {query}"


class OpenAITopicScorer(_OpenAIChatAdapter):
    """``TopicScorer`` asking an OpenAI chat model for both relevance scores."""

    async def score(self, query: str, main_reference: str, temp_reference: str) -> TopicRelevanceScores:
        if not query or not (main_reference or temp_reference):
            return TopicRelevanceScores(0.0, 0.0)
        reply = await self._complete(
            SCORER_SYSTEM_PROMPT,
            build_scoring_prompt(query, main_reference, temp_reference),
            max_tokens=64,
        )
        return parse_relevance_scores(reply)
