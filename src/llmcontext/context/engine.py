# src/llmcontext/context/engine.py
"""
Layered context engine: one explicitly constructed object per application.

The engine wires the components together and owns all per-session state:

- the current :class:`~llmcontext.models.LayeredIndex` snapshot,
- a per-session ``asyncio.Lock`` serializing index mutation,
- the session's :class:`~llmcontext.models.TopicState`.

Concurrency model:

- Node building (summaries, the only slow part) happens outside the lock.
  The draft is committed under the lock, where the recency rank is assigned
  and the new index is saved and swapped in.  A cancelled build leaves no
  trace.
- Archive indexing for one session is serialized by a second, coarser
  checkpoint lock, so two overlapping ``prepare_context`` calls never
  summarize the same archived messages.  A draft whose messages another
  commit already covers is dropped at commit time.
- Only the newest ``max_archives`` nodes are kept; older nodes are pruned
  when a new one is committed.
- Retrieval reads the current snapshot without taking the lock; snapshots
  are never mutated, only replaced.
- Sessions share no mutable state.

Usage::

    engine = LayeredContextEngine(config, JsonFileStorage(config.storage.path))
    await engine.initialize()

    prepared = await engine.prepare_context("telegram:42", history)
    send_to_llm(prepared.messages)
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..config.models import LayeredContextConfig
from ..exceptions import StorageError
from ..models import (
    CompactionResult,
    ContextNode,
    LayeredIndex,
    Message,
    PreparedContext,
    RetrievalResult,
    Role,
    RootSummary,
    TopicDecision,
    TopicMode,
    TopicState,
)
from ..storage.base import LayeredContextStorage, OffloadFile
from ..storage.json_storage import JsonFileStorage
from .compaction import Compactor, is_expired
from .dense import DenseScoreProvider
from .indexer import ContextIndexer, append_draft
from .messages import build_topic_reference, latest_user_query, split_segments
from .metrics import LayeredContextMetrics, MetricsSnapshot
from .retriever import ContextRetriever, render_prompt_block
from .summarizer import LlmSummaryProvider, SummaryGenerator
from .tokens import estimate_message_tokens, estimate_messages_tokens
from .topic import TopicScorer, TopicTracker, with_main_reference

logger = logging.getLogger(__name__)


class LayeredContextEngine:
    """
    Entry point for indexing, retrieval, topic tracking and compaction.

    Args:
        config: Validated configuration; defaults are used when omitted.
        storage: Persistence backend; defaults to :class:`JsonFileStorage`
            at ``config.storage.path``.
        summary_provider: Optional LLM summarizer for node overviews/abstracts.
        dense_provider: Optional dense score provider for retrieval.
        topic_scorer: Optional topic scorer for the topic tracker.
    """

    def __init__(
        self,
        config: Optional[LayeredContextConfig] = None,
        storage: Optional[LayeredContextStorage] = None,
        summary_provider: Optional[LlmSummaryProvider] = None,
        dense_provider: Optional[DenseScoreProvider] = None,
        topic_scorer: Optional[TopicScorer] = None,
    ) -> None:
        self.config = config or LayeredContextConfig()
        self.storage = storage or JsonFileStorage(self.config.storage.path)
        self.summary_generator = SummaryGenerator(summary_provider, self.config.summary.provider_timeout_seconds)
        self.indexer = ContextIndexer(self.summary_generator, self.config.summary, self.config.indexing)
        self.retriever = ContextRetriever(self.config.retrieval, dense_provider)
        self.topic_tracker = TopicTracker(self.config.topic, topic_scorer)
        self.compactor = Compactor(self.storage, self.config.compaction)
        self.metrics = LayeredContextMetrics()

        self._indexes: Dict[str, LayeredIndex] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._checkpoint_locks: Dict[str, asyncio.Lock] = {}
        self._topics: Dict[str, TopicState] = {}

    async def initialize(self) -> None:
        await self.storage.initialize()

    async def close(self) -> None:
        await self.storage.close()

    # =========================================================================
    # Index snapshots
    # =========================================================================

    def _lock(self, session_key: str) -> asyncio.Lock:
        lock = self._locks.get(session_key)
        if lock is None:
            lock = self._locks[session_key] = asyncio.Lock()
        return lock

    def _checkpoint_lock(self, session_key: str) -> asyncio.Lock:
        lock = self._checkpoint_locks.get(session_key)
        if lock is None:
            lock = self._checkpoint_locks[session_key] = asyncio.Lock()
        return lock

    async def get_index(self, session_key: str) -> LayeredIndex:
        """Current snapshot of the session's index; loaded from storage on first use."""
        cached = self._indexes.get(session_key)
        if cached is not None:
            return cached
        loaded = await self.storage.load_index(session_key)
        # A commit may have landed while loading; it wins.
        return self._indexes.setdefault(session_key, loaded or LayeredIndex(session_key=session_key))

    async def _commit(self, index: LayeredIndex) -> None:
        try:
            await self.storage.save_index(index)
        except StorageError as e:
            logger.warning("Index for session '%s' kept in memory only: %s", index.session_key, e)
        self._indexes[index.session_key] = index

    # =========================================================================
    # Indexing
    # =========================================================================

    async def index_segment(self, session_key: str, messages: Sequence[Message]) -> Optional[ContextNode]:
        """
        Summarize a segment and append it to the session index as the newest node.

        Returns:
            The committed node, or ``None`` for a segment with no content or
            one whose messages are already covered by another node.
        """
        node, _ = await self._index_segment(session_key, messages)
        return node

    async def _index_segment(self, session_key: str, messages: Sequence[Message]) -> Tuple[Optional[ContextNode], List[str]]:
        draft = await self.indexer.build_node(session_key, messages)
        if draft is None:
            return None, []
        if draft.fallback_events:
            self.metrics.record_fallback(len(draft.fallback_events))

        async with self._lock(session_key):
            index = await self.get_index(session_key)
            if index.covered_message_ids().intersection(draft.message_ids):
                logger.info("Dropped duplicate segment of %d messages for session '%s'", len(messages), session_key)
                return None, draft.fallback_events
            new_index, node = append_draft(
                index,
                draft,
                index.indexed_message_count + len(messages),
                max_nodes=self.config.indexing.max_archives,
            )
            await self._commit(new_index)
        pruned = len(index.nodes) + 1 - len(new_index.nodes)
        if pruned:
            logger.debug("Pruned %d archived node(s) for session '%s'", pruned, session_key)
        self.metrics.record_node()
        logger.debug("Indexed %s (%d messages) for session '%s'", node.id, len(messages), session_key)
        return node, draft.fallback_events

    async def _index_archived(self, session_key: str, archived: Sequence[Message]) -> Tuple[int, List[str]]:
        """Index archived messages not covered by any node yet, in complete segments."""
        async with self._checkpoint_lock(session_key):
            index = await self.get_index(session_key)
            pending = _pending_messages(archived, index.covered_message_ids())
            if not pending:
                return 0, []

            segment_size = self.config.indexing.segment_size
            segments = split_segments(pending, segment_size)
            if segments and len(segments[-1]) < segment_size:
                # The tail waits until it fills up.
                segments.pop()

            created = 0
            events: List[str] = []
            for segment in segments:
                node, segment_events = await self._index_segment(session_key, segment)
                events.extend(segment_events)
                if node is not None:
                    created += 1
            return created, events

    async def refresh_root_summary(self, session_key: str) -> Optional[RootSummary]:
        """
        Rebuild the session root summary from the kept nodes.

        The new summary is committed only if the node list did not change
        while it was being generated.

        Returns:
            The session's root summary after the refresh, ``None`` without nodes.
        """
        root, _ = await self._refresh_root(session_key)
        return root

    async def _refresh_root(self, session_key: str) -> Tuple[Optional[RootSummary], List[str]]:
        index = await self.get_index(session_key)
        if not index.nodes:
            return index.root, []
        root, events = await self.indexer.build_root(session_key, index.nodes)
        if events:
            self.metrics.record_fallback(len(events))

        async with self._lock(session_key):
            current = await self.get_index(session_key)
            if [n.id for n in current.nodes] != [n.id for n in index.nodes]:
                logger.debug("Root summary for session '%s' is stale, keeping the previous one", session_key)
                return current.root, events
            await self._commit(current.with_root(root))
        logger.debug("Refreshed root summary for session '%s' over %d node(s)", session_key, len(index.nodes))
        return root, events

    # =========================================================================
    # Retrieval and topics
    # =========================================================================

    async def retrieve(self, session_key: str, query: str) -> RetrievalResult:
        """
        Retrieve archived context for ``query``.

        An empty query falls back to the active topic reference.
        """
        index = await self.get_index(session_key)
        effective_query = query if query and query.strip() else self.topic_state(session_key).active_reference
        result = await self.retriever.retrieve(index, effective_query)
        self.metrics.record_retrieval(result)
        return result

    def topic_state(self, session_key: str) -> TopicState:
        return self._topics.get(session_key) or TopicState()

    def set_main_topic(self, session_key: str, messages: Sequence[Message]) -> TopicState:
        """Rebuild the main topic reference from ``messages``."""
        state = with_main_reference(self.topic_state(session_key), build_topic_reference(messages))
        self._topics[session_key] = state
        return state

    async def observe_query(self, session_key: str, query: str) -> TopicDecision:
        """Decide the topic transition for ``query`` and advance the session state."""
        state = self.topic_state(session_key)
        decision = await self.topic_tracker.decide(query, state)
        if decision.scorer_fallback:
            self.metrics.record_topic_fallback()
        new_state = self.topic_tracker.advance(state, decision.transition, query)
        if new_state is not state:
            logger.info(
                "Session '%s' topic %s -> %s (%s)",
                session_key, state.mode.value, new_state.mode.value, decision.transition.value,
            )
        self._topics[session_key] = new_state
        return decision

    # =========================================================================
    # Compaction and offloads
    # =========================================================================

    async def compact(self, session_key: str, messages: Sequence[Message]) -> CompactionResult:
        """Offload old oversized tool results and record them in the session index."""
        result = await self.compactor.compact(session_key, messages)
        self.metrics.record_offloads(len(result.offloaded), result.failures)
        if result.offloaded:
            async with self._lock(session_key):
                index = await self.get_index(session_key)
                await self._commit(index.with_offloads(result.offloaded))
        return result

    async def resolve_offload(self, session_key: str, original_id: str) -> Optional[bytes]:
        """Original bytes of an offloaded payload, or ``None`` if unknown or unreadable."""
        index = await self.get_index(session_key)
        record = index.find_offload(original_id)
        if record is None:
            return None
        return await self.resolve_offload_path(record.file_path)

    async def resolve_offload_path(self, path: str) -> Optional[bytes]:
        try:
            return await self.storage.read_offload(path)
        except StorageError as e:
            logger.warning("Could not resolve offload %s: %s", path, e)
            return None

    async def _delete_offloads(self, files: Iterable[OffloadFile]) -> List[str]:
        deleted = []
        for f in files:
            try:
                if await self.storage.delete_offload(f.path):
                    deleted.append(f.path)
            except StorageError as e:
                logger.warning("Could not delete offload %s: %s", f.path, e)
        return deleted

    async def clear_session(self, session_key: str) -> int:
        """
        Remove the session's index, offload files and topic state.

        Returns:
            Number of offload files removed.
        """
        async with self._lock(session_key):
            deleted = await self._delete_offloads(await self.storage.list_offloads(session_key))
            await self.storage.delete_index(session_key)
            self._indexes.pop(session_key, None)
            self._topics.pop(session_key, None)
        self._locks.pop(session_key, None)
        self._checkpoint_locks.pop(session_key, None)
        logger.info("Cleared session '%s' (%d offload file(s) removed)", session_key, len(deleted))
        return len(deleted)

    async def cleanup_offloads(self, live_session_keys: Iterable[str]) -> int:
        """
        Delete offload files not referenced by a live session.

        Files of sessions outside ``live_session_keys`` are all removed; in
        live sessions, files without an ``OffloadRecord`` are removed.
        """
        live = set(live_session_keys)
        removed = 0
        for session_key in await self.storage.list_sessions():
            files = await self.storage.list_offloads(session_key)
            if not files:
                continue
            if session_key in live:
                referenced = {r.file_path for r in (await self.get_index(session_key)).offloads}
                files = [f for f in files if f.path not in referenced]
            removed += len(await self._delete_offloads(files))
        if removed:
            logger.info("Offload cleanup removed %d unreferenced file(s)", removed)
        return removed

    async def cleanup_expired_offloads(self, max_age: Optional[timedelta] = None) -> int:
        """Delete offload files older than ``max_age`` (default from config) and drop their records."""
        if max_age is None:
            max_age = timedelta(hours=self.config.compaction.offload_max_age_hours)
        removed = 0
        for session_key in await self.storage.list_sessions():
            expired = [f for f in await self.storage.list_offloads(session_key) if is_expired(f.modified_at, max_age)]
            if not expired:
                continue
            deleted = set(await self._delete_offloads(expired))
            removed += len(deleted)
            async with self._lock(session_key):
                index = await self.get_index(session_key)
                kept = [r for r in index.offloads if r.file_path not in deleted]
                if len(kept) != len(index.offloads):
                    await self._commit(index.model_copy(update={"offloads": kept}))
        if removed:
            logger.info("Removed %d expired offload file(s)", removed)
        return removed

    def metrics_snapshot(self) -> MetricsSnapshot:
        return self.metrics.snapshot()

    # =========================================================================
    # Checkpoint orchestration
    # =========================================================================

    async def prepare_context(self, session_key: str, messages: Sequence[Message]) -> PreparedContext:
        """
        Build the message list for the next model call.

        Steps: compact tool results; split the history into archived
        messages and the last ``max_context_messages``; index archived
        messages not yet covered and refresh the root summary when nodes
        were added; update the topic state for the latest user
        query; retrieve archived context and prepend it as one synthetic
        message; drop the oldest recent messages until the estimate fits
        ``max_context_tokens``.  The newest message is always kept.
        """
        compaction = await self.compact(session_key, messages)
        history = compaction.messages
        if not history:
            state = self.topic_state(session_key)
            return PreparedContext(messages=[], topic=state, estimated_tokens=0, compaction=compaction)

        settings = self.config.indexing
        current = history[-1]
        previous = history[:-1]
        archived = previous[:-settings.max_context_messages] if len(previous) > settings.max_context_messages else []
        recent = previous[len(archived):]

        if self.topic_state(session_key).mode == TopicMode.MAIN:
            self.set_main_topic(session_key, previous)
        query = latest_user_query(history)
        await self.observe_query(session_key, query)

        new_nodes, fallback_events = await self._index_archived(session_key, archived)
        if new_nodes and settings.root_summary:
            _, root_events = await self._refresh_root(session_key)
            fallback_events.extend(root_events)

        retrieval: Optional[RetrievalResult] = None
        prompt_block = ""
        if archived and (await self.get_index(session_key)).nodes:
            retrieval = await self.retrieve(session_key, query)
            prompt_block = render_prompt_block(retrieval)

        assembled: List[Message] = [*recent, current]
        head = 0
        if prompt_block:
            synthetic_role = Role.USER if recent and recent[0].role == Role.ASSISTANT else Role.ASSISTANT
            assembled.insert(0, Message(role=synthetic_role, content=prompt_block))
            head = 1

        trimmed = _trim_to_budget(assembled, head, settings.max_context_tokens)
        if trimmed:
            logger.info("Trimmed %d recent message(s) for session '%s' to fit the token cap", trimmed, session_key)

        return PreparedContext(
            messages=assembled,
            topic=self.topic_state(session_key),
            estimated_tokens=estimate_messages_tokens(assembled),
            retrieval=retrieval,
            prompt_block=prompt_block,
            archived_message_count=len(archived),
            new_nodes=new_nodes,
            trimmed_message_count=trimmed,
            compaction=compaction,
            fallback_events=fallback_events,
        )


def _trim_to_budget(messages: List[Message], head: int, max_tokens: int) -> int:
    """
    Remove messages at position ``head`` until the total fits; the last message stays.

    A tool-result message left at ``head`` after its tool call was removed is
    dropped too, so no result is orphaned.
    """
    removed = 0
    total = estimate_messages_tokens(messages)
    while len(messages) - head > 1 and total > max_tokens:
        total -= estimate_message_tokens(messages.pop(head))
        removed += 1
        while len(messages) - head > 1 and messages[head].role == Role.USER and messages[head].tool_result_blocks():
            total -= estimate_message_tokens(messages.pop(head))
            removed += 1
    return removed


def _pending_messages(archived: Sequence[Message], covered: set[str]) -> List[Message]:
    """
    Archived messages after the last one a node covers.

    Pruned nodes no longer list their messages, so coverage is positional:
    everything up to the newest covered message counts as indexed.
    """
    last = -1
    for position, message in enumerate(archived):
        if message.id in covered:
            last = position
    return list(archived[last + 1:])
