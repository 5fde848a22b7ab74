# src/llmcontext/models.py
"""
Core data models for the llmcontext library.

This module defines the Pydantic models for the consumed message stream
(roles, content blocks, messages), the persisted layered index (context
nodes, offload records, topic state) and the dataclasses that carry
transient results between the components (summaries, topic decisions,
retrieval results, compaction results).

Persisted models that must never change after creation (``ContextNode``,
``OffloadRecord``, ``RootSummary``, ``TopicState``) are frozen; updates produce new
instances.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Message stream
# =============================================================================


class Role(str, Enum):
    """
    Enumeration of possible roles in a conversation.
    """
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def _missing_(cls, value: object):  # type: ignore[misc]
        """
        Handles case-insensitive matching; "agent" maps to ASSISTANT.
        """
        if isinstance(value, str):
            lower_value = value.lower()
            if lower_value == "agent":
                return cls.ASSISTANT
            for member in cls:
                if member.value == lower_value:
                    return member
        return None


class TextBlock(BaseModel):
    """Plain text content."""
    type: Literal["text"] = "text"
    text: str = ""


class ImageSource(BaseModel):
    """Image payload, either inline base64 data or a URL reference."""
    type: Literal["base64", "url"] = "base64"
    media_type: Optional[str] = None
    data: Optional[str] = None
    url: Optional[str] = None


class ImageBlock(BaseModel):
    """Image content. The estimator charges a fixed cost regardless of size."""
    type: Literal["image"] = "image"
    source: ImageSource = Field(default_factory=ImageSource)


class ToolUseBlock(BaseModel):
    """A tool invocation requested by the assistant."""
    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


ToolResultItem = Annotated[Union[TextBlock, ImageBlock], Field(discriminator="type")]
_TOOL_RESULT_ITEMS = TypeAdapter(List[ToolResultItem])


class ToolResultBlock(BaseModel):
    """
    The result of a tool invocation, paired with a ``ToolUseBlock`` by id.

    ``content`` is a string, a list of text/image items, or any other JSON
    payload (kept as-is and stringified when sized or rendered).
    """
    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: Any = ""
    is_error: bool = False

    @field_validator("content", mode="before")
    @classmethod
    def parse_item_list(cls, v: Any) -> Any:
        if isinstance(v, list) and v and all(
            isinstance(item, (TextBlock, ImageBlock))
            or (isinstance(item, dict) and item.get("type") in ("text", "image"))
            for item in v
        ):
            return _TOOL_RESULT_ITEMS.validate_python(v)
        return v


ContentBlock = Annotated[
    Union[TextBlock, ImageBlock, ToolUseBlock, ToolResultBlock],
    Field(discriminator="type"),
]


class Message(BaseModel):
    """
    Represents a single message in the conversation stream.

    Attributes:
        id: Unique identifier for the message.
        role: The role of the sender.
        content: Either a plain string or an ordered list of content blocks.
        created_at: Timestamp of creation (UTC).
    """
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique identifier for the message.")
    role: Role = Field(description="The role of the message sender (system, user, or assistant).")
    content: Union[str, List[ContentBlock]] = Field(default="", description="Plain text or a list of content blocks.")
    created_at: datetime = Field(default_factory=_utcnow)

    def blocks(self) -> List[BaseModel]:
        """Content as a list of blocks; plain string content becomes one TextBlock."""
        if isinstance(self.content, str):
            return [TextBlock(text=self.content)] if self.content else []
        return list(self.content)

    def tool_result_blocks(self) -> List[ToolResultBlock]:
        return [b for b in self.blocks() if isinstance(b, ToolResultBlock)]

    def tool_use_blocks(self) -> List[ToolUseBlock]:
        return [b for b in self.blocks() if isinstance(b, ToolUseBlock)]


# =============================================================================
# Persisted layered index
# =============================================================================


class Layer(str, Enum):
    """Detail levels of a context node."""
    L0 = "L0"
    """Abstract: one or two sentences."""
    L1 = "L1"
    """Overview: a bulleted or paragraph summary of the segment."""
    L2 = "L2"
    """Transcript: the raw text of the segment."""

    @property
    def attribute(self) -> str:
        return {"L0": "abstract", "L1": "overview", "L2": "transcript"}[self.value]


LAYER_ORDER: Tuple[Layer, ...] = (Layer.L0, Layer.L1, Layer.L2)


class ContextNode(BaseModel):
    """
    One archived conversation segment at three levels of detail.

    Nodes are immutable once created; a newer node supersedes, it never edits.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique per session.")
    session_key: str
    abstract: str = Field(description="L0 text.")
    overview: str = Field(description="L1 text.")
    transcript: str = Field(description="L2 text.")
    keywords: Tuple[str, ...] = Field(default=(), description="Most frequent terms first.")
    recency_rank: int = Field(ge=0, description="Strictly increasing per session; higher is newer.")
    created_at: datetime = Field(default_factory=_utcnow)
    message_ids: Tuple[str, ...] = Field(default=(), description="Ids of the source messages.")

    def text_for(self, layer: Layer) -> str:
        return getattr(self, layer.attribute)


class OffloadRecord(BaseModel):
    """A tool result payload that was moved out of the message stream into a file."""
    model_config = ConfigDict(frozen=True)

    original_id: str = Field(description="Deterministic id derived from the tool_use_id.")
    file_path: str
    size_bytes: int = Field(ge=0)
    created_at: datetime = Field(default_factory=_utcnow)


ROOT_NODE_ID = "root"


class RootSummary(BaseModel):
    """Session-level summary built from the overviews of the kept nodes."""
    model_config = ConfigDict(frozen=True)

    abstract: str
    overview: str
    child_ids: Tuple[str, ...] = Field(default=(), description="Ids of the nodes it was built from, oldest first.")
    updated_at: datetime = Field(default_factory=_utcnow)


class TopicMode(str, Enum):
    MAIN = "main"
    TEMP = "temp"


class TopicState(BaseModel):
    """Per-session topic tracking state. Transitions produce a new instance."""
    model_config = ConfigDict(frozen=True)

    mode: TopicMode = TopicMode.MAIN
    main_topic_reference: str = ""
    temp_topic_reference: Optional[str] = None

    @model_validator(mode="after")
    def check_temp_reference(self) -> "TopicState":
        if self.mode == TopicMode.MAIN and self.temp_topic_reference is not None:
            raise ValueError("temp_topic_reference must be None in MAIN mode")
        return self

    @property
    def active_reference(self) -> str:
        if self.mode == TopicMode.TEMP and self.temp_topic_reference:
            return self.temp_topic_reference
        return self.main_topic_reference


class LayeredIndex(BaseModel):
    """
    Per-session ordered collection of context nodes plus offload records.

    BM25 statistics are not stored; the retriever rebuilds them from the node
    texts on every read. ``with_node`` returns a new index so that readers
    holding the previous snapshot are unaffected.
    """
    version: int = 1
    session_key: str
    nodes: List[ContextNode] = Field(default_factory=list)
    offloads: List[OffloadRecord] = Field(default_factory=list)
    root: Optional[RootSummary] = None
    next_rank: int = Field(default=0, ge=0)
    indexed_message_count: int = Field(default=0, ge=0, description="Archived messages already covered by nodes.")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="after")
    def check_nodes(self) -> "LayeredIndex":
        ids = [n.id for n in self.nodes]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate node ids in index for session '{self.session_key}'")
        ranks = [n.recency_rank for n in self.nodes]
        if any(b <= a for a, b in zip(ranks, ranks[1:])):
            raise ValueError(f"Node recency ranks are not strictly increasing for session '{self.session_key}'")
        if ranks and self.next_rank <= ranks[-1]:
            raise ValueError("next_rank must be greater than every existing recency_rank")
        return self

    def with_node(
        self,
        node: ContextNode,
        indexed_message_count: Optional[int] = None,
        max_nodes: Optional[int] = None,
    ) -> "LayeredIndex":
        """New index with ``node`` appended; the oldest nodes beyond ``max_nodes`` are dropped."""
        nodes = [*self.nodes, node]
        if max_nodes is not None and len(nodes) > max_nodes:
            nodes = nodes[-max_nodes:]
        return self.model_copy(update={
            "nodes": nodes,
            "next_rank": node.recency_rank + 1,
            "indexed_message_count": self.indexed_message_count if indexed_message_count is None else indexed_message_count,
            "updated_at": _utcnow(),
        })

    def with_root(self, root: Optional[RootSummary]) -> "LayeredIndex":
        return self.model_copy(update={"root": root, "updated_at": _utcnow()})

    def with_offloads(self, records: List[OffloadRecord]) -> "LayeredIndex":
        known = {r.original_id for r in records}
        kept = [r for r in self.offloads if r.original_id not in known]
        return self.model_copy(update={"offloads": [*kept, *records], "updated_at": _utcnow()})

    def covered_message_ids(self) -> set[str]:
        return {message_id for node in self.nodes for message_id in node.message_ids}

    def find_offload(self, original_id: str) -> Optional[OffloadRecord]:
        for record in self.offloads:
            if record.original_id == original_id:
                return record
        return None


# =============================================================================
# Transient results
# =============================================================================


@dataclass
class SummaryResult:
    """
    Output of one summary generation call.

    Attributes:
        text: The summary; never empty.
        fallback_used: True when the extractive fallback produced ``text``.
        fallback_reason: ``<level>_llm_failed:<message>`` or ``<level>_llm_empty``.
    """
    text: str
    fallback_used: bool = False
    fallback_reason: Optional[str] = None


@dataclass(frozen=True)
class TopicRelevanceScores:
    rel_main: float
    rel_temp: float


class TopicTransition(str, Enum):
    STAY_MAIN = "stay-main"
    ENTER_TEMP = "enter-temp"
    STAY_TEMP = "stay-temp"
    EXIT_TEMP = "exit-temp"
    REPLACE_TEMP = "replace-temp"


@dataclass
class TopicDecision:
    """
    Attributes:
        transition: What the tracker decided.
        scores: Relevance scores, ``None`` when the scorer was not consulted.
        scorer_fallback: True when the configured scorer failed and the lexical scorer was used.
    """
    transition: TopicTransition
    scores: Optional[TopicRelevanceScores] = None
    scorer_fallback: bool = False


@dataclass
class LayerSelection:
    layer: Layer
    node_id: str
    score: float
    content: str
    estimated_tokens: int


@dataclass
class EscalationDecision:
    """
    Attributes:
        reached_layer: The layer selection happened at.
        reason: ``empty_index``, ``empty_query``, ``confident`` or ``terminal``.
        top_score: Best blended score at ``reached_layer``.
        layer_scores: Best blended score at each layer that was scored.
    """
    reached_layer: Layer
    reason: str
    top_score: float = 0.0
    layer_scores: Dict[Layer, float] = field(default_factory=dict)


@dataclass
class TokenUsage:
    """Selected tokens per layer against the cost of sending every transcript."""
    by_layer: Dict[Layer, int] = field(default_factory=lambda: {layer: 0 for layer in LAYER_ORDER})
    baseline_l2: int = 0

    @property
    def total(self) -> int:
        return sum(self.by_layer.values())

    @property
    def savings(self) -> int:
        return self.baseline_l2 - self.total

    @property
    def savings_ratio(self) -> float:
        return self.savings / self.baseline_l2 if self.baseline_l2 > 0 else 0.0


@dataclass
class RetrievalResult:
    decision: EscalationDecision
    selections: List[LayerSelection] = field(default_factory=list)
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    query: str = ""
    dense_fallback: bool = False

    @property
    def text(self) -> str:
        return "\n\n".join(s.content for s in self.selections)


@dataclass
class CompactionResult:
    """
    Attributes:
        messages: The compacted message list; input messages are not mutated.
        offloaded: Records for payloads written to offload files in this pass.
        images_compacted: Inline images replaced by a placeholder.
        failures: Offload writes that failed; their content stayed inline.
    """
    messages: List[Message]
    offloaded: List[OffloadRecord] = field(default_factory=list)
    images_compacted: int = 0
    failures: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.offloaded) or self.images_compacted > 0


@dataclass
class PreparedContext:
    """
    Message list ready to send, plus what the engine did to produce it.
    """
    messages: List[Message]
    topic: TopicState
    estimated_tokens: int
    retrieval: Optional[RetrievalResult] = None
    prompt_block: str = ""
    archived_message_count: int = 0
    new_nodes: int = 0
    trimmed_message_count: int = 0
    compaction: Optional[CompactionResult] = None
    fallback_events: List[str] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.retrieval is not None
