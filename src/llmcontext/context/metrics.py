# src/llmcontext/context/metrics.py
"""
In-process counters for layered context runs.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict

from ..models import RetrievalResult


@dataclass
class MetricsSnapshot:
    total_runs: int
    total_savings_tokens: int
    avg_savings_tokens: float
    avg_savings_ratio: float
    fallback_events: int
    dense_fallbacks: int
    topic_scorer_fallbacks: int
    offloaded_payloads: int
    offload_failures: int
    nodes_indexed: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class LayeredContextMetrics:
    """Accumulates retrieval savings and fallback counts for one engine."""

    def __init__(self) -> None:
        self.total_runs = 0
        self.total_savings_tokens = 0
        self.total_savings_ratio = 0.0
        self.fallback_events = 0
        self.dense_fallbacks = 0
        self.topic_scorer_fallbacks = 0
        self.offloaded_payloads = 0
        self.offload_failures = 0
        self.nodes_indexed = 0

    def record_retrieval(self, result: RetrievalResult) -> None:
        self.total_runs += 1
        self.total_savings_tokens += result.token_usage.savings
        self.total_savings_ratio += result.token_usage.savings_ratio
        if result.dense_fallback:
            self.dense_fallbacks += 1

    def record_fallback(self, count: int = 1) -> None:
        self.fallback_events += count

    def record_topic_fallback(self) -> None:
        self.topic_scorer_fallbacks += 1

    def record_offloads(self, written: int, failed: int) -> None:
        self.offloaded_payloads += written
        self.offload_failures += failed

    def record_node(self) -> None:
        self.nodes_indexed += 1

    def snapshot(self) -> MetricsSnapshot:
        runs = self.total_runs
        return MetricsSnapshot(
            total_runs=runs,
            total_savings_tokens=self.total_savings_tokens,
            avg_savings_tokens=self.total_savings_tokens / runs if runs else 0.0,
            avg_savings_ratio=self.total_savings_ratio / runs if runs else 0.0,
            fallback_events=self.fallback_events,
            dense_fallbacks=self.dense_fallbacks,
            topic_scorer_fallbacks=self.topic_scorer_fallbacks,
            offloaded_payloads=self.offloaded_payloads,
            offload_failures=self.offload_failures,
            nodes_indexed=self.nodes_indexed,
        )
