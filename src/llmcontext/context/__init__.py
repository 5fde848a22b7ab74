# src/llmcontext/context/__init__.py
"""
Layered context management: estimation, scoring, indexing, retrieval,
topic tracking and compaction.
"""

from .compaction import Compactor
from .dense import (
    DenseMetric,
    DenseScore,
    DenseScoreProvider,
    EmbeddingDenseScoreProvider,
    TermVectorDenseScoreProvider,
    blend_scores,
    clamp01,
    normalize_dense_score,
)
from .engine import LayeredContextEngine
from .indexer import ContextIndexer, NodeDraft
from .lexical import BM25Model, bm25_scores
from .messages import build_topic_reference, flatten_message, latest_user_query, split_segments, to_transcript
from .metrics import LayeredContextMetrics, MetricsSnapshot
from .retriever import ContextRetriever, render_prompt_block
from .summarizer import LlmSummaryProvider, SummaryGenerator
from .text import normalize_whitespace, tokenize, trim_to_token_target
from .tokens import estimate_block_tokens, estimate_message_tokens, estimate_text_tokens
from .topic import LexicalTopicScorer, TopicScorer, TopicTracker, decide_transition

__all__ = [
    "BM25Model",
    "Compactor",
    "ContextIndexer",
    "ContextRetriever",
    "DenseMetric",
    "DenseScore",
    "DenseScoreProvider",
    "EmbeddingDenseScoreProvider",
    "LayeredContextEngine",
    "LayeredContextMetrics",
    "LexicalTopicScorer",
    "LlmSummaryProvider",
    "MetricsSnapshot",
    "NodeDraft",
    "SummaryGenerator",
    "TermVectorDenseScoreProvider",
    "TopicScorer",
    "TopicTracker",
    "blend_scores",
    "bm25_scores",
    "build_topic_reference",
    "clamp01",
    "decide_transition",
    "estimate_block_tokens",
    "estimate_message_tokens",
    "estimate_text_tokens",
    "flatten_message",
    "latest_user_query",
    "normalize_dense_score",
    "normalize_whitespace",
    "render_prompt_block",
    "split_segments",
    "to_transcript",
    "tokenize",
    "trim_to_token_target",
]
