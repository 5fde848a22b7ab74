# tests/providers/test_openai_adapters.py
"""
Tests for the OpenAI summary provider and topic scorer.

Reply parsing and prompt building run without the SDK; the adapter tests
need ``openai`` installed and replace the client with a mock.
"""

import sys
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from llmcontext.context.summarizer import SummaryGenerator
from llmcontext.context.topic import TopicTracker
from llmcontext.config import TopicThresholds
from llmcontext.exceptions import SummaryProviderError
from llmcontext.models import TopicMode, TopicRelevanceScores, TopicState, TopicTransition
from llmcontext.providers.openai_provider import build_scoring_prompt, parse_relevance_scores


def _reply(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _with_mock_client(adapter, create):
    adapter._client = MagicMock()
    adapter._client.chat.completions.create = create
    return adapter


class TestParseRelevanceScores:
    def test_plain_json(self):
        assert parse_relevance_scores('{"relMain": 0.2, "relTemp": 0.7}') == TopicRelevanceScores(0.2, 0.7)

    def test_json_inside_prose(self):
        reply = 'Here you go: {"relMain": 0.9, "relTemp": 0} hope it helps'
        assert parse_relevance_scores(reply) == TopicRelevanceScores(0.9, 0.0)

    def test_values_are_clamped(self):
        assert parse_relevance_scores('{"relMain": -1, "relTemp": 3}') == TopicRelevanceScores(0.0, 1.0)

    @pytest.mark.parametrize(
        "reply",
        ["", "no json here", "{not json}", '{"relMain": "high"}', '{"relMain": true, "relTemp": null}'],
    )
    def test_unparsable_yields_zeros(self, reply):
        assert parse_relevance_scores(reply) == TopicRelevanceScores(0.0, 0.0)


class TestBuildScoringPrompt:
    def test_with_temp_topic(self):
        prompt = build_scoring_prompt("lunch?", "deploy pipeline", "weekend trip")
        assert prompt == "Main topic: deploy pipeline\nTemp topic: weekend trip\nQuery: lunch?"

    def test_without_temp_topic(self):
        assert build_scoring_prompt("lunch?", "", "") == "Main topic: (none)\nQuery: lunch?"


@pytest.fixture
def openai_module():
    return pytest.importorskip("openai")


class TestOpenAISummaryProvider:
    @pytest.mark.asyncio
    async def test_summarize(self, openai_module):
        from llmcontext.providers.openai_provider import OpenAISummaryProvider

        create = AsyncMock(return_value=_reply("- deploy fixed"))
        provider = _with_mock_client(OpenAISummaryProvider({"api_key": "test-key"}), create)

        assert await provider.summarize("USER: deploy broke", 100, "overview") == "- deploy fixed"
        kwargs = create.await_args.kwargs
        assert kwargs["max_tokens"] == 150
        assert kwargs["messages"][1] == {"role": "user", "content": "USER: deploy broke"}
        assert "100 tokens" in kwargs["messages"][0]["content"]

    @pytest.mark.asyncio
    async def test_api_error_becomes_summary_provider_error(self, openai_module):
        from llmcontext.providers.openai_provider import OpenAISummaryProvider

        create = AsyncMock(side_effect=openai_module.OpenAIError("quota exceeded"))
        provider = _with_mock_client(OpenAISummaryProvider({"api_key": "test-key"}), create)

        with pytest.raises(SummaryProviderError, match="quota exceeded"):
            await provider.summarize("text", 100, "abstract")

    @pytest.mark.asyncio
    async def test_unknown_level(self, openai_module):
        from llmcontext.providers.openai_provider import OpenAISummaryProvider

        provider = _with_mock_client(OpenAISummaryProvider({"api_key": "test-key"}), AsyncMock())
        with pytest.raises(SummaryProviderError):
            await provider.summarize("text", 100, "headline")

    @pytest.mark.asyncio
    async def test_failure_falls_back_in_generator(self, openai_module):
        from llmcontext.providers.openai_provider import OpenAISummaryProvider

        create = AsyncMock(side_effect=openai_module.OpenAIError("down"))
        provider = _with_mock_client(OpenAISummaryProvider({"api_key": "test-key"}), create)

        result = await SummaryGenerator(provider).generate_overview("first line", 100)

        assert result.fallback_used is True
        assert result.fallback_reason.startswith("overview_llm_failed:")
        assert result.text == "Archive summary:\n- first line"


class TestOpenAITopicScorer:
    @pytest.mark.asyncio
    async def test_score(self, openai_module):
        from llmcontext.providers.openai_provider import SCORER_SYSTEM_PROMPT, OpenAITopicScorer

        create = AsyncMock(return_value=_reply('{"relMain": 0.1, "relTemp": 0.95}'))
        scorer = _with_mock_client(OpenAITopicScorer({"api_key": "test-key"}), create)

        scores = await scorer.score("more about the trip", "deploy pipeline", "weekend trip")

        assert scores == TopicRelevanceScores(0.1, 0.95)
        assert create.await_args.kwargs["messages"][0]["content"] == SCORER_SYSTEM_PROMPT

    @pytest.mark.asyncio
    async def test_no_references_skips_call(self, openai_module):
        from llmcontext.providers.openai_provider import OpenAITopicScorer

        create = AsyncMock()
        scorer = _with_mock_client(OpenAITopicScorer({"api_key": "test-key"}), create)
        assert await scorer.score("query", "", "") == TopicRelevanceScores(0.0, 0.0)
        create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_tracker_uses_scorer(self, openai_module):
        from llmcontext.providers.openai_provider import OpenAITopicScorer

        create = AsyncMock(return_value=_reply('{"relMain": 0.1, "relTemp": 0.95}'))
        scorer = _with_mock_client(OpenAITopicScorer({"api_key": "test-key"}), create)
        state = TopicState(mode=TopicMode.TEMP, main_topic_reference="deploy", temp_topic_reference="trip")

        decision = await TopicTracker(TopicThresholds(), scorer).decide("more about the trip", state)

        assert decision.transition == TopicTransition.STAY_TEMP
        assert decision.scorer_fallback is False
