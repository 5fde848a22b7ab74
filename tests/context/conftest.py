# tests/context/conftest.py
"""
Shared fixtures for layered context tests.

Provides deterministic stub providers (summary, dense, topic), message
builders, a two-node index used by the escalation tests and an engine
backed by JSON storage in ``tmp_path``.
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional, Sequence

import pytest
import pytest_asyncio

# Ensure source is importable
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from llmcontext.config import LayeredContextConfig
from llmcontext.context.dense import DenseMetric, DenseScore
from llmcontext.context.engine import LayeredContextEngine
from llmcontext.models import (
    ContextNode,
    LayeredIndex,
    Message,
    Role,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    TopicRelevanceScores,
)
from llmcontext.storage import JsonFileStorage


# =============================================================================
# Stub Providers
# =============================================================================


class StubSummaryProvider:
    """
    Returns canned summaries and records every call.

    Attributes:
        overview: Text returned for the overview level.
        abstract: Text returned for the abstract level.
        calls: ``(level, text, target_tokens)`` per call.
    """

    def __init__(self, overview: str = "Overview of the segment.", abstract: str = "Short abstract."):
        self.overview = overview
        self.abstract = abstract
        self.calls: List[tuple] = []

    async def summarize(self, text: str, target_tokens: int, level: str) -> str:
        self.calls.append((level, text, target_tokens))
        return self.overview if level == "overview" else self.abstract


class FailingSummaryProvider:
    """Raises on every call."""

    def __init__(self, message: str = "service unavailable"):
        self.message = message
        self.calls = 0

    async def summarize(self, text: str, target_tokens: int, level: str) -> str:
        self.calls += 1
        raise RuntimeError(self.message)


class EmptySummaryProvider:
    async def summarize(self, text: str, target_tokens: int, level: str) -> str:
        return "   \n  "


class SlowSummaryProvider:
    """Sleeps longer than any test timeout."""

    async def summarize(self, text: str, target_tokens: int, level: str) -> str:
        await asyncio.sleep(10)
        return "too late"


class FixedDenseProvider:
    """Returns the same raw cosine for every document."""

    def __init__(self, raw: float = 0.0, metric: DenseMetric = DenseMetric.COSINE):
        self.raw = raw
        self.metric = metric
        self.calls = 0

    async def score(self, query: str, documents: Sequence[str]) -> List[DenseScore]:
        self.calls += 1
        return [DenseScore(self.raw, self.metric) for _ in documents]


class FailingDenseProvider:
    async def score(self, query: str, documents: Sequence[str]) -> List[DenseScore]:
        raise ConnectionError("similarity service down")


class StubTopicScorer:
    """Returns fixed scores and counts calls."""

    def __init__(self, rel_main: float = 0.0, rel_temp: float = 0.0):
        self.scores = TopicRelevanceScores(rel_main, rel_temp)
        self.calls = 0

    async def score(self, query: str, main_reference: str, temp_reference: str) -> TopicRelevanceScores:
        self.calls += 1
        return self.scores


@pytest.fixture
def stub_summary_provider():
    return StubSummaryProvider()


# =============================================================================
# Message Builders
# =============================================================================


def user(text: str, msg_id: Optional[str] = None) -> Message:
    kwargs = {"id": msg_id} if msg_id else {}
    return Message(role=Role.USER, content=text, **kwargs)


def assistant(text: str, msg_id: Optional[str] = None) -> Message:
    kwargs = {"id": msg_id} if msg_id else {}
    return Message(role=Role.ASSISTANT, content=text, **kwargs)


def tool_call(tool_use_id: str, name: str = "read_file", **tool_input) -> Message:
    return Message(
        role=Role.ASSISTANT,
        content=[TextBlock(text="Let me check."), ToolUseBlock(id=tool_use_id, name=name, input=tool_input)],
    )


def tool_result(tool_use_id: str, content) -> Message:
    return Message(role=Role.USER, content=[ToolResultBlock(tool_use_id=tool_use_id, content=content)])


def tool_exchange(tool_use_id: str, content) -> List[Message]:
    return [tool_call(tool_use_id, path=f"/tmp/{tool_use_id}.log"), tool_result(tool_use_id, content)]


def conversation(turns: int, prefix: str = "turn") -> List[Message]:
    """Alternating user/assistant messages with stable ids."""
    messages = []
    for i in range(turns):
        messages.append(user(f"Question {i} about the {prefix} plan.", msg_id=f"{prefix}-u{i}"))
        messages.append(assistant(f"Answer {i} on the {prefix} plan.", msg_id=f"{prefix}-a{i}"))
    return messages


# =============================================================================
# Index Fixtures
# =============================================================================


def make_node(
    rank: int,
    abstract: str,
    overview: str,
    transcript: str,
    session_key: str = "test:1",
    node_id: Optional[str] = None,
) -> ContextNode:
    return ContextNode(
        id=node_id or f"node_{rank}",
        session_key=session_key,
        abstract=abstract,
        overview=overview,
        transcript=transcript,
        recency_rank=rank,
    )


@pytest.fixture
def two_node_index() -> LayeredIndex:
    """Node A is about a deployment incident, node B about billing."""
    node_a = make_node(
        0,
        abstract="Deployment checklist and release readiness summary.",
        overview="Contains deployment incident diagnosis and patch details.",
        transcript="Exact error line 42 in deploy.ts caused outage during canary.",
        node_id="node_a",
    )
    node_b = make_node(
        1,
        abstract="Billing migration details for invoice processor.",
        overview="Covers billing migration plan and ledger cutover.",
        transcript="Invoice processor moved to the new ledger service.",
        node_id="node_b",
    )
    return LayeredIndex(session_key="test:1", nodes=[node_a, node_b], next_rank=2)


@pytest.fixture
def config(tmp_path) -> LayeredContextConfig:
    return LayeredContextConfig(
        storage={"path": str(tmp_path / "store")},
        indexing={"segment_size": 4, "max_context_messages": 4},
        compaction={"tool_result_file_threshold": 2000, "keep_recent_tool_pairs": 3},
    )


@pytest.fixture
def storage(config) -> JsonFileStorage:
    return JsonFileStorage(config.storage.path)


@pytest_asyncio.fixture
async def engine(config, storage):
    eng = LayeredContextEngine(config, storage, summary_provider=StubSummaryProvider())
    await eng.initialize()
    yield eng
    await eng.close()
