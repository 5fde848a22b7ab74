# src/llmcontext/context/indexer.py
"""
Builds context nodes from conversation segments.

Building is side-effect free: :meth:`ContextIndexer.build_node` returns a
:class:`NodeDraft` without touching the index.  The engine assigns the
recency rank and appends the node under its per-session lock, so a build
cancelled half-way leaves nothing behind.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Sequence, Tuple

from ..config.models import IndexingSettings, SummarySettings
from ..models import ContextNode, LayeredIndex, Message, RootSummary
from .messages import to_transcript
from .summarizer import SummaryGenerator
from .text import extract_keywords

logger = logging.getLogger(__name__)


@dataclass
class NodeDraft:
    """
    A fully summarized segment waiting for its recency rank.

    Attributes:
        session_key: Owning session.
        abstract: L0 text.
        overview: L1 text.
        transcript: L2 text.
        keywords: Top terms, most frequent first.
        message_ids: Ids of the source messages.
        fallback_events: Summary fallback reasons raised while building.
    """

    session_key: str
    abstract: str
    overview: str
    transcript: str
    keywords: Tuple[str, ...]
    message_ids: Tuple[str, ...]
    fallback_events: List[str] = field(default_factory=list)

    @property
    def checksum(self) -> str:
        return hashlib.sha1(self.transcript.encode("utf-8")).hexdigest()

    def commit(self, recency_rank: int) -> ContextNode:
        return ContextNode(
            id=f"node_{recency_rank}_{self.checksum[:12]}",
            session_key=self.session_key,
            abstract=self.abstract,
            overview=self.overview,
            transcript=self.transcript,
            keywords=self.keywords,
            recency_rank=recency_rank,
            created_at=datetime.now(timezone.utc),
            message_ids=self.message_ids,
        )


class ContextIndexer:
    """
    Turns a contiguous slice of messages into a :class:`NodeDraft`.

    The overview is generated from the full transcript, then the abstract
    from the overview.  Keywords come from the abstract and overview only,
    so detail that lives solely in the transcript does not lift L0/L1 scores.
    """

    def __init__(
        self,
        summary_generator: SummaryGenerator,
        summary_settings: SummarySettings,
        indexing_settings: IndexingSettings,
    ) -> None:
        self.summary_generator = summary_generator
        self.summary_settings = summary_settings
        self.indexing_settings = indexing_settings

    async def build_node(self, session_key: str, messages: Sequence[Message]) -> NodeDraft | None:
        """
        Summarize one segment.

        Returns:
            The draft, or ``None`` if the segment has no renderable content.
        """
        transcript = to_transcript(messages)
        if not transcript:
            logger.debug("Skipping empty segment of %d messages for session '%s'", len(messages), session_key)
            return None

        overview = await self.summary_generator.generate_overview(transcript, self.summary_settings.l1_target_tokens)
        abstract = await self.summary_generator.generate_abstract(overview.text, self.summary_settings.l0_target_tokens)

        fallback_events = [r.fallback_reason for r in (overview, abstract) if r.fallback_used and r.fallback_reason]
        if fallback_events:
            logger.info("Summary fallback for session '%s': %s", session_key, ", ".join(fallback_events))

        return NodeDraft(
            session_key=session_key,
            abstract=abstract.text,
            overview=overview.text,
            transcript=transcript,
            keywords=extract_keywords(f"{abstract.text}\n{overview.text}", self.indexing_settings.max_keywords),
            message_ids=tuple(m.id for m in messages),
            fallback_events=fallback_events,
        )

    async def build_root(self, session_key: str, nodes: Sequence[ContextNode]) -> Tuple[RootSummary | None, List[str]]:
        """
        Summarize the kept nodes into one session-level summary.

        The source is each node's overview under an ``Archive <id>`` heading,
        oldest first.  Returns ``(None, [])`` when there are no nodes.
        """
        if not nodes:
            return None, []
        source = "\n\n".join(f"Archive {n.id}\n{n.overview}" for n in nodes)
        overview = await self.summary_generator.generate_overview(source, self.summary_settings.l1_target_tokens)
        abstract = await self.summary_generator.generate_abstract(overview.text, self.summary_settings.l0_target_tokens)
        fallback_events = [r.fallback_reason for r in (overview, abstract) if r.fallback_used and r.fallback_reason]
        if fallback_events:
            logger.info("Root summary fallback for session '%s': %s", session_key, ", ".join(fallback_events))
        root = RootSummary(abstract=abstract.text, overview=overview.text, child_ids=tuple(n.id for n in nodes))
        return root, fallback_events


def append_draft(
    index: LayeredIndex,
    draft: NodeDraft,
    indexed_message_count: int | None = None,
    max_nodes: int | None = None,
) -> Tuple[LayeredIndex, ContextNode]:
    """
    Commit a draft as the newest node of ``index``.

    Returns a new index; ``index`` itself is left untouched for readers
    still holding it.  With ``max_nodes`` set, the oldest nodes beyond it
    are dropped.
    """
    if draft.session_key != index.session_key:
        raise ValueError(f"Draft for session '{draft.session_key}' cannot join index of '{index.session_key}'")
    node = draft.commit(index.next_rank)
    return index.with_node(node, indexed_message_count, max_nodes), node
