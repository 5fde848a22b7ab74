# src/llmcontext/context/dense.py
"""
Dense (semantic) similarity signals and the score blender.

A dense provider returns raw numbers tagged with the metric that produced
them; :func:`normalize_dense_score` maps every metric into [0, 1] so that
it can be blended with the BM25 score.

Providers:

- :class:`TermVectorDenseScoreProvider`: in-process approximation over
  term-count vectors.  Always available, used as the fallback.
- :class:`EmbeddingDenseScoreProvider`: cosine similarity between
  embeddings from any :class:`~llmcontext.embedding.base.BaseEmbeddingModel`.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import List, Protocol, Sequence, runtime_checkable

from ..embedding.base import BaseEmbeddingModel
from .text import tokenize

logger = logging.getLogger(__name__)


class DenseMetric(str, Enum):
    IP = "ip"
    COSINE = "cosine"
    L2 = "l2"


def clamp01(value: float) -> float:
    """Clamp to [0, 1]; NaN and infinities become 0."""
    if not math.isfinite(value):
        return 0.0
    return min(1.0, max(0.0, value))


def normalize_dense_score(raw: float, metric: DenseMetric) -> float:
    """
    Map a raw similarity or distance into [0, 1].

    Examples:
        >>> normalize_dense_score(0.25, DenseMetric.L2)
        0.75
        >>> normalize_dense_score(-1.0, DenseMetric.COSINE)
        0.0
        >>> normalize_dense_score(float("nan"), DenseMetric.IP)
        0.0
    """
    if raw is None or not math.isfinite(raw):
        return 0.0
    metric = DenseMetric(metric)
    if metric == DenseMetric.L2:
        return clamp01(1 - raw)
    if metric == DenseMetric.IP:
        bounded = raw / (abs(raw) + 1)
        return clamp01((bounded + 1) / 2)
    if 0.0 <= raw <= 1.0:
        return raw
    return clamp01((raw + 1) / 2)


def blend_scores(dense: float, sparse: float, alpha: float) -> float:
    """``alpha`` weights the sparse score, ``1 - alpha`` the dense one."""
    return clamp01((1 - alpha) * clamp01(dense) + alpha * clamp01(sparse))


@dataclass(frozen=True)
class DenseScore:
    raw: float
    metric: DenseMetric

    @property
    def normalized(self) -> float:
        return normalize_dense_score(self.raw, self.metric)


@runtime_checkable
class DenseScoreProvider(Protocol):
    """Scores one query against a list of documents, one result per document."""

    async def score(self, query: str, documents: Sequence[str]) -> List[DenseScore]: ...


# =============================================================================
# Providers
# =============================================================================


class TermVectorDenseScoreProvider:
    """
    Approximates dense similarity with raw term-count vectors.

    ``ip`` is the dot product, ``cosine`` the cosine similarity and ``l2``
    the squared Euclidean distance between the query and document vectors.
    """

    name = "term_vector"

    def __init__(self, metric: DenseMetric = DenseMetric.COSINE) -> None:
        self.metric = DenseMetric(metric)

    def score_sync(self, query: str, documents: Sequence[str]) -> List[DenseScore]:
        query_vector = Counter(tokenize(query))
        return [DenseScore(self._raw(query_vector, Counter(tokenize(doc))), self.metric) for doc in documents]

    async def score(self, query: str, documents: Sequence[str]) -> List[DenseScore]:
        return self.score_sync(query, documents)

    def _raw(self, q: Counter, d: Counter) -> float:
        if self.metric == DenseMetric.L2:
            terms = set(q) | set(d)
            return float(sum((q.get(t, 0) - d.get(t, 0)) ** 2 for t in terms))
        dot = float(sum(count * d.get(term, 0) for term, count in q.items()))
        if self.metric == DenseMetric.IP:
            return dot
        q_norm = math.sqrt(sum(c * c for c in q.values()))
        d_norm = math.sqrt(sum(c * c for c in d.values()))
        if q_norm == 0 or d_norm == 0:
            return 0.0
        return dot / (q_norm * d_norm)


class EmbeddingDenseScoreProvider:
    """
    Cosine similarity between embeddings produced by an embedding model.

    The query and all documents are embedded in one batch.  Errors propagate
    to the caller, which owns the timeout and fallback policy.
    """

    def __init__(self, model: BaseEmbeddingModel) -> None:
        self.model = model
        self.name = f"embedding:{getattr(model, 'model_name', type(model).__name__)}"

    async def score(self, query: str, documents: Sequence[str]) -> List[DenseScore]:
        if not documents:
            return []
        vectors = await self.model.generate_embeddings([query, *documents])
        query_vector, doc_vectors = vectors[0], vectors[1:]
        return [DenseScore(_cosine(query_vector, v), DenseMetric.COSINE) for v in doc_vectors]


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    if na == 0 or nb == 0:
        return 0.0
    return dot / (na * nb)
