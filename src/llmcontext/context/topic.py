# src/llmcontext/context/topic.py
"""
Main/temporary topic tracking.

A session is either on its MAIN thread or on a TEMP side-topic.  For each
new query a :class:`TopicScorer` rates the query against the main and temp
topic references and :func:`decide_transition` maps the two scores onto
one of five transitions:

==========  ===========================================  ==============
Mode        Condition (first match wins)                  Transition
==========  ===========================================  ==============
MAIN        rel_main < enter                              enter-temp
MAIN        otherwise                                     stay-main
TEMP        rel_temp >= temp_stay                         stay-temp
TEMP        rel_main >= exit                              exit-temp
TEMP        rel_main < enter                              replace-temp
TEMP        otherwise (ambiguous middle zone)             stay-temp
==========  ===========================================  ==============

An empty query keeps the current mode without consulting the scorer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol, runtime_checkable

from ..config.models import TopicThresholds
from ..models import (
    TopicDecision,
    TopicMode,
    TopicRelevanceScores,
    TopicState,
    TopicTransition,
)
from .dense import TermVectorDenseScoreProvider, blend_scores
from .lexical import bm25_scores

logger = logging.getLogger(__name__)


@runtime_checkable
class TopicScorer(Protocol):
    """Rates ``query`` against the main and temp topic references, each in [0, 1]."""

    async def score(self, query: str, main_reference: str, temp_reference: str) -> TopicRelevanceScores: ...


class LexicalTopicScorer:
    """
    In-process scorer: BM25 blended with term-vector cosine per reference.

    An empty reference scores 0.
    """

    def __init__(self, alpha: float = 0.5) -> None:
        self.alpha = alpha
        self._dense = TermVectorDenseScoreProvider()

    def relevance(self, query: str, reference: str) -> float:
        if not query.strip() or not reference.strip():
            return 0.0
        sparse = bm25_scores(query, [reference])[0]
        dense = self._dense.score_sync(query, [reference])[0].normalized
        return blend_scores(dense, sparse, self.alpha)

    async def score(self, query: str, main_reference: str, temp_reference: str) -> TopicRelevanceScores:
        return TopicRelevanceScores(
            rel_main=self.relevance(query, main_reference),
            rel_temp=self.relevance(query, temp_reference),
        )


def decide_transition(mode: TopicMode, scores: TopicRelevanceScores, thresholds: TopicThresholds) -> TopicTransition:
    """
    Pure decision table; see the module docstring.

    Examples:
        >>> t = TopicThresholds()
        >>> decide_transition(TopicMode.MAIN, TopicRelevanceScores(0.2, 0.0), t).value
        'enter-temp'
        >>> decide_transition(TopicMode.TEMP, TopicRelevanceScores(0.75, 0.3), t).value
        'exit-temp'
    """
    if mode == TopicMode.MAIN:
        if scores.rel_main < thresholds.enter_threshold:
            return TopicTransition.ENTER_TEMP
        return TopicTransition.STAY_MAIN

    if scores.rel_temp >= thresholds.temp_stay_threshold:
        return TopicTransition.STAY_TEMP
    if scores.rel_main >= thresholds.exit_threshold:
        return TopicTransition.EXIT_TEMP
    if scores.rel_main < thresholds.enter_threshold:
        return TopicTransition.REPLACE_TEMP
    return TopicTransition.STAY_TEMP


class TopicTracker:
    """
    Applies the decision table with a bounded, fault-tolerant scorer call.

    Args:
        thresholds: Transition thresholds and scorer timeout.
        scorer: Primary scorer; defaults to :class:`LexicalTopicScorer`.
    """

    def __init__(self, thresholds: TopicThresholds, scorer: Optional[TopicScorer] = None) -> None:
        self.thresholds = thresholds
        self.fallback_scorer = LexicalTopicScorer()
        self.scorer = scorer or self.fallback_scorer

    async def decide(self, query: str, state: TopicState) -> TopicDecision:
        if not query or not query.strip():
            return TopicDecision(TopicTransition.STAY_MAIN if state.mode == TopicMode.MAIN else TopicTransition.STAY_TEMP)
        if state.mode == TopicMode.MAIN and not state.main_topic_reference.strip():
            # Nothing established yet to drift away from.
            return TopicDecision(TopicTransition.STAY_MAIN)

        scores, fell_back = await self._score(query, state)
        transition = decide_transition(state.mode, scores, self.thresholds)
        logger.debug(
            "Topic decision %s (mode=%s, rel_main=%.3f, rel_temp=%.3f)",
            transition.value, state.mode.value, scores.rel_main, scores.rel_temp,
        )
        return TopicDecision(transition, scores, fell_back)

    async def _score(self, query: str, state: TopicState) -> tuple[TopicRelevanceScores, bool]:
        main_reference = state.main_topic_reference
        temp_reference = state.temp_topic_reference or ""
        if self.scorer is not self.fallback_scorer:
            try:
                scores = await asyncio.wait_for(
                    self.scorer.score(query, main_reference, temp_reference),
                    timeout=self.thresholds.scorer_timeout_seconds,
                )
                return scores, False
            except asyncio.TimeoutError:
                logger.warning("Topic scorer timed out after %ss, using lexical scorer", self.thresholds.scorer_timeout_seconds)
            except Exception as exc:
                logger.warning("Topic scorer failed: %s, using lexical scorer", exc)
            return await self.fallback_scorer.score(query, main_reference, temp_reference), True
        return await self.fallback_scorer.score(query, main_reference, temp_reference), False

    @staticmethod
    def advance(state: TopicState, transition: TopicTransition, query: str) -> TopicState:
        """
        State after ``transition``.

        Entering or replacing a temp topic makes ``query`` the temp reference;
        exiting clears it.  Stay transitions return ``state`` itself.
        """
        if transition in (TopicTransition.ENTER_TEMP, TopicTransition.REPLACE_TEMP):
            return TopicState(
                mode=TopicMode.TEMP,
                main_topic_reference=state.main_topic_reference,
                temp_topic_reference=query,
            )
        if transition == TopicTransition.EXIT_TEMP:
            return TopicState(mode=TopicMode.MAIN, main_topic_reference=state.main_topic_reference)
        return state


def with_main_reference(state: TopicState, reference: str) -> TopicState:
    return state.model_copy(update={"main_topic_reference": reference})
