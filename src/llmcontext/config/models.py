# src/llmcontext/config/models.py
"""
Pydantic configuration models for layered context management.

The configuration hierarchy:
    LayeredContextConfig (root)
    ├── RetrievalSettings        - Budget, layer thresholds, BM25 and blend parameters
    │   └── LayerThresholds      - Per-layer confidence thresholds (L0, L1)
    ├── TopicThresholds          - Main/temporary topic transition thresholds
    ├── SummarySettings          - L0/L1 summary sizes and provider timeout
    ├── IndexingSettings         - Segment size, keywords, history limits
    ├── CompactionSettings       - Tool result offload thresholds
    ├── StorageSettings          - On-disk location of indexes and offload files
    └── LoggingSettings          - Passed through to ``configure_logging``

Every bound is enforced by pydantic so that a bad value halts startup
instead of degrading retrieval silently.

Usage:
    >>> from llmcontext.config import LayeredContextConfig
    >>> config = LayeredContextConfig()
    >>> config.retrieval.bm25_k1
    1.2
    >>> config.compaction.keep_recent_tool_pairs
    3
"""

from __future__ import annotations

import os
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

# =============================================================================
# RETRIEVAL
# =============================================================================


class LayerThresholds(BaseModel):
    """
    Confidence thresholds that stop layer escalation.

    The retriever stays at a layer when the best blended score at that layer
    reaches the layer's threshold. L2 has no threshold: it is terminal.
    """

    l0: float = Field(default=0.6, ge=0.0, le=1.0, description="Minimum top score to stop at L0 (abstracts)")
    l1: float = Field(default=0.5, ge=0.0, le=1.0, description="Minimum top score to stop at L1 (overviews)")


class RetrievalSettings(BaseModel):
    """
    Configuration for the layered retriever.

    Examples:
        >>> RetrievalSettings().max_prompt_tokens
        32000
        >>> RetrievalSettings(blend_alpha=1.0).blend_alpha
        1.0
    """

    max_prompt_tokens: int = Field(
        default=32_000,
        ge=0,
        description="Hard token budget for text returned by one retrieval",
    )
    layer_thresholds: LayerThresholds = Field(default_factory=LayerThresholds)
    selection_threshold: float = Field(
        default=0.25,
        ge=0.0,
        le=1.0,
        description="Minimum blended score for a node to be selected at a non-terminal layer",
    )
    blend_alpha: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Weight of the lexical (BM25) score; 1 - alpha weights the dense score",
    )
    bm25_k1: float = Field(default=1.2, ge=0.0, description="BM25 term frequency saturation")
    bm25_b: float = Field(default=0.75, ge=0.0, le=1.0, description="BM25 length normalization")
    candidate_limit: Optional[int] = Field(
        default=None,
        ge=1,
        description="If set, L1/L2 only score the top N candidates of the previous layer",
    )
    dense_timeout_seconds: float = Field(
        default=1.2,
        gt=0.0,
        description="Upper bound on one dense scoring call before the in-process fallback is used",
    )

    @model_validator(mode="after")
    def check_selection_threshold(self) -> "RetrievalSettings":
        # A confident stop at L0 or L1 must be able to select its top node.
        lowest = min(self.layer_thresholds.l0, self.layer_thresholds.l1)
        if self.selection_threshold > lowest:
            raise ValueError(
                f"selection_threshold ({self.selection_threshold}) must not exceed "
                f"the lowest layer threshold ({lowest})"
            )
        return self


# =============================================================================
# TOPIC TRACKING
# =============================================================================


class TopicThresholds(BaseModel):
    """
    Thresholds for the main/temporary topic state machine.

    ``enter_threshold <= exit_threshold <= temp_stay_threshold``: a query in
    the middle zone keeps the current temporary topic, and only a strong
    match on the temporary topic outranks a return to the main one.

    Examples:
        >>> t = TopicThresholds()
        >>> (t.enter_threshold, t.exit_threshold, t.temp_stay_threshold)
        (0.5, 0.65, 0.8)
    """

    enter_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    exit_threshold: float = Field(default=0.65, ge=0.0, le=1.0)
    temp_stay_threshold: float = Field(default=0.8, ge=0.0, le=1.0)
    scorer_timeout_seconds: float = Field(default=5.0, gt=0.0)

    @model_validator(mode="after")
    def check_hysteresis(self) -> "TopicThresholds":
        if self.exit_threshold < self.enter_threshold:
            raise ValueError(
                f"exit_threshold ({self.exit_threshold}) must not be below "
                f"enter_threshold ({self.enter_threshold})"
            )
        if self.temp_stay_threshold < self.exit_threshold:
            raise ValueError(
                f"temp_stay_threshold ({self.temp_stay_threshold}) must not be below "
                f"exit_threshold ({self.exit_threshold})"
            )
        return self


DEFAULT_TOPIC_THRESHOLDS = TopicThresholds()


# =============================================================================
# SUMMARIES / INDEXING / COMPACTION
# =============================================================================


class SummarySettings(BaseModel):
    """Target sizes for the generated abstract (L0) and overview (L1)."""

    l0_target_tokens: int = Field(default=120, ge=1, le=2000)
    l1_target_tokens: int = Field(default=1200, ge=1, le=16_000)
    provider_timeout_seconds: float = Field(default=20.0, gt=0.0)


class IndexingSettings(BaseModel):
    """Segmenting and history limits used when checkpointing a session."""

    segment_size: int = Field(default=8, ge=1, le=200, description="Messages per indexed segment")
    max_keywords: int = Field(default=24, ge=1, le=200)
    max_archives: int = Field(
        default=12,
        ge=1,
        le=500,
        description="Newest nodes kept per session; older ones are pruned when a node is committed",
    )
    root_summary: bool = Field(
        default=True,
        description="Summarize the kept nodes into a session-level root offered first at retrieval",
    )
    max_context_messages: int = Field(
        default=20,
        ge=1,
        description="Most recent messages kept verbatim; older ones are archived into the index",
    )
    max_context_tokens: int = Field(
        default=150_000,
        ge=0,
        description="Cap on the estimated size of the assembled message list",
    )


class CompactionSettings(BaseModel):
    """Tool result offloading configuration."""

    tool_result_file_threshold: int = Field(
        default=2000,
        ge=0,
        description="Tool result text longer than this many characters is offloaded",
    )
    keep_recent_tool_pairs: int = Field(
        default=3,
        ge=0,
        description="Most recent tool-use/tool-result pairs that are never offloaded",
    )
    offload_max_age_hours: float = Field(default=24.0, ge=0.0)


class StorageSettings(BaseModel):
    """Location of per-session index files and offloaded tool results."""

    path: str = Field(default="~/.local/share/llmcontext")

    @field_validator("path")
    @classmethod
    def expand_path(cls, v: str) -> str:
        return os.path.expanduser(os.path.expandvars(v))


class LoggingSettings(BaseModel):
    """Subset of logging options forwarded to ``configure_logging``."""

    console_enabled: bool = False
    console_level: str = "WARNING"
    file_enabled: bool = False
    file_level: str = "DEBUG"
    file_directory: str = "~/.local/share/llmcontext/logs"
    file_mode: Literal["per_run", "single"] = "per_run"
    display_min_level: str = "INFO"

    @field_validator("console_level", "file_level", "display_min_level")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        level_upper = v.upper()
        if level_upper not in allowed:
            raise ValueError(f"Invalid log level: {v}. Must be one of {allowed}")
        return level_upper


# =============================================================================
# ROOT
# =============================================================================


class LayeredContextConfig(BaseModel):
    """
    Root configuration for layered context management.

    Usage:
        >>> config = LayeredContextConfig()
        >>> config = LayeredContextConfig(**toml_dict["layered_context"])
        >>> config = LayeredContextConfig(
        ...     retrieval=RetrievalSettings(max_prompt_tokens=8000),
        ...     compaction=CompactionSettings(keep_recent_tool_pairs=5),
        ... )
    """

    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    topic: TopicThresholds = Field(default_factory=TopicThresholds)
    summary: SummarySettings = Field(default_factory=SummarySettings)
    indexing: IndexingSettings = Field(default_factory=IndexingSettings)
    compaction: CompactionSettings = Field(default_factory=CompactionSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def logging_dict(self) -> dict[str, Any]:
        return self.logging.model_dump()
