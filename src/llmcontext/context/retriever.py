# src/llmcontext/context/retriever.py
"""
Layered retrieval: the least detail that answers the query, within budget.

Escalation is a short sequential loop over L0 (abstracts), L1 (overviews)
and L2 (transcripts):

1. Score every candidate node's text at the current layer by blending
   BM25 with the dense provider's score.
2. If the best score reaches the layer's confidence threshold, select
   there and stop.  L2 is terminal and always selects.
3. Otherwise move one layer down, optionally narrowed to the top
   ``candidate_limit`` nodes of the layer just scored.

Selection is greedy: nodes at or above ``selection_threshold``, best score
first with ties going to the more recent node, are added while their
layer text fits the remaining token budget.  The first node that does not
fit ends the selection; node text is never truncated.

When the index carries a session root summary, its abstract is offered
first as an L0 navigation entry and paid for like any other selection.
The header and usage lines of the rendered block are reserved up front,
and trailing selections are dropped until the rendered block itself fits
``max_prompt_tokens``.

Example::

    retriever = ContextRetriever(config.retrieval)
    result = await retriever.retrieve(index, "why did the canary deploy fail?")
    result.decision.reached_layer   # Layer.L2
    render_prompt_block(result)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..config.models import RetrievalSettings
from ..models import (
    LAYER_ORDER,
    ROOT_NODE_ID,
    ContextNode,
    EscalationDecision,
    LayeredIndex,
    Layer,
    LayerSelection,
    RetrievalResult,
    TokenUsage,
)
from .dense import DenseScoreProvider, TermVectorDenseScoreProvider, blend_scores
from .lexical import BM25Model
from .tokens import estimate_text_tokens

logger = logging.getLogger(__name__)

REASON_EMPTY_INDEX = "empty_index"
REASON_EMPTY_QUERY = "empty_query"
REASON_CONFIDENT = "confident"
REASON_TERMINAL = "terminal"


class ContextRetriever:
    """
    Selects context nodes for a query under a token budget.

    Args:
        settings: Retrieval thresholds, blend and BM25 parameters, budget.
        dense_provider: Dense score provider; defaults to the in-process
            term-vector provider.
        token_counter: Text cost function; defaults to the estimator.
    """

    def __init__(
        self,
        settings: RetrievalSettings,
        dense_provider: Optional[DenseScoreProvider] = None,
        token_counter: Optional[Callable[[str], int]] = None,
    ) -> None:
        self.settings = settings
        self.fallback_provider = TermVectorDenseScoreProvider()
        self.dense_provider = dense_provider or self.fallback_provider
        self.count_tokens = token_counter or estimate_text_tokens

    def _threshold(self, layer: Layer) -> Optional[float]:
        if layer == Layer.L0:
            return self.settings.layer_thresholds.l0
        if layer == Layer.L1:
            return self.settings.layer_thresholds.l1
        return None

    async def retrieve(self, index: LayeredIndex, query: str) -> RetrievalResult:
        """
        Run layer escalation for ``query`` over ``index``.

        Never raises for provider trouble or budget pressure; the result may
        hold no selections.
        """
        nodes = list(index.nodes)
        usage = TokenUsage(baseline_l2=sum(self.count_tokens(n.transcript) for n in nodes))

        if not nodes:
            return RetrievalResult(EscalationDecision(Layer.L0, REASON_EMPTY_INDEX), token_usage=usage, query=query)
        if not query or not query.strip():
            return RetrievalResult(EscalationDecision(Layer.L0, REASON_EMPTY_QUERY), token_usage=usage, query=query)

        candidates = nodes
        layer_scores: Dict[Layer, float] = {}
        dense_fallback = False
        scored: List[Tuple[ContextNode, float]] = []
        layer = Layer.L0
        reason = REASON_TERMINAL

        for layer in LAYER_ORDER:
            scores, used_fallback = await self.score_layer(query, candidates, layer)
            dense_fallback = dense_fallback or used_fallback
            scored = list(zip(candidates, scores))
            top = max(scores, default=0.0)
            layer_scores[layer] = top
            threshold = self._threshold(layer)
            logger.debug("Layer %s: %d candidates, top score %.3f", layer.value, len(candidates), top)

            if threshold is None:
                reason = REASON_TERMINAL
                break
            if top >= threshold:
                reason = REASON_CONFIDENT
                break
            if self.settings.candidate_limit is not None:
                candidates = [n for n, _ in _rank(scored)[: self.settings.candidate_limit]]

        decision = EscalationDecision(
            reached_layer=layer,
            reason=reason,
            top_score=layer_scores.get(layer, 0.0),
            layer_scores=layer_scores,
        )

        budget = self.settings.max_prompt_tokens - self.count_tokens("\n".join(_frame_lines(decision, usage)))
        selections: List[LayerSelection] = []
        root = index.root
        if root is not None and root.abstract:
            cost = self.count_tokens(root.abstract)
            if cost <= budget:
                selections.append(LayerSelection(Layer.L0, ROOT_NODE_ID, layer_scores.get(Layer.L0, 0.0), root.abstract, cost))
                budget -= cost
        selections.extend(self.select(scored, layer, terminal=(reason == REASON_TERMINAL), budget=budget))
        for s in selections:
            usage.by_layer[s.layer] += s.estimated_tokens

        result = RetrievalResult(decision, selections, usage, query=query, dense_fallback=dense_fallback)
        self._fit_rendered(result)
        logger.debug(
            "Retrieval reached %s (%s) with %d selection(s), %d tokens",
            layer.value, reason, len(result.selections), usage.total,
        )
        return result

    def _fit_rendered(self, result: RetrievalResult) -> None:
        """Drop trailing selections until the rendered block fits the budget."""
        budget = self.settings.max_prompt_tokens
        while result.selections and self.count_tokens(render_prompt_block(result)) > budget:
            dropped = result.selections.pop()
            result.token_usage.by_layer[dropped.layer] -= dropped.estimated_tokens
            logger.debug("Dropped %s selection '%s' to fit the rendered block", dropped.layer.value, dropped.node_id)

    async def score_layer(self, query: str, nodes: Sequence[ContextNode], layer: Layer) -> Tuple[List[float], bool]:
        """
        Blended scores of ``query`` against each node's text at ``layer``.

        At L0 and L1 the node keywords are appended to the scored text.

        Returns:
            The scores and whether the dense fallback had to be used.
        """
        texts = [_scored_text(n, layer) for n in nodes]
        sparse = BM25Model(texts, k1=self.settings.bm25_k1, b=self.settings.bm25_b).score_all(query)
        dense, used_fallback = await self._dense_scores(query, texts)
        alpha = self.settings.blend_alpha
        return [blend_scores(d, s, alpha) for d, s in zip(dense, sparse)], used_fallback

    async def _dense_scores(self, query: str, texts: List[str]) -> Tuple[List[float], bool]:
        if self.dense_provider is not self.fallback_provider:
            try:
                results = await asyncio.wait_for(
                    self.dense_provider.score(query, texts),
                    timeout=self.settings.dense_timeout_seconds,
                )
                if len(results) == len(texts):
                    return [r.normalized for r in results], False
                logger.warning("Dense provider returned %d scores for %d texts, using term vectors", len(results), len(texts))
            except asyncio.TimeoutError:
                logger.warning("Dense provider timed out after %ss, using term vectors", self.settings.dense_timeout_seconds)
            except Exception as exc:
                logger.warning("Dense provider failed: %s, using term vectors", exc)
            fallback = True
        else:
            fallback = False
        results = self.fallback_provider.score_sync(query, texts)
        return [r.normalized for r in results], fallback

    def select(
        self,
        scored: Sequence[Tuple[ContextNode, float]],
        layer: Layer,
        terminal: bool = False,
        budget: Optional[int] = None,
    ) -> List[LayerSelection]:
        """
        Greedy budget-bounded selection at one layer.

        At the terminal layer, if nothing reaches ``selection_threshold``,
        the single best node is still offered when its score is positive.
        ``budget`` defaults to ``max_prompt_tokens``.
        """
        ranked = _rank(scored)
        eligible = [(n, s) for n, s in ranked if s >= self.settings.selection_threshold]
        if not eligible and terminal and ranked and ranked[0][1] > 0:
            eligible = ranked[:1]

        if budget is None:
            budget = self.settings.max_prompt_tokens
        used = 0
        selections: List[LayerSelection] = []
        for node, score in eligible:
            content = node.text_for(layer)
            cost = self.count_tokens(content)
            if used + cost > budget:
                break
            used += cost
            selections.append(LayerSelection(layer, node.id, score, content, cost))
        return selections


def _rank(scored: Sequence[Tuple[ContextNode, float]]) -> List[Tuple[ContextNode, float]]:
    return sorted(scored, key=lambda item: (-item[1], -item[0].recency_rank))


def _scored_text(node: ContextNode, layer: Layer) -> str:
    text = node.text_for(layer)
    if layer == Layer.L2 or not node.keywords:
        return text
    return f"{text}\n{' '.join(node.keywords)}"


def _frame_lines(decision: EscalationDecision, usage: TokenUsage) -> List[str]:
    by_layer = usage.by_layer
    header = [
        "Layered context package (L0/L1/L2) generated from archived history.",
        f"Escalation decision: {decision.reached_layer.value} ({decision.reason})",
    ]
    footer = [
        f"Layer token usage: L0={by_layer[Layer.L0]}, L1={by_layer[Layer.L1]}, "
        f"L2={by_layer[Layer.L2]}, total={usage.total}",
        f"Baseline L2={usage.baseline_l2}, savings={usage.savings} ({usage.savings_ratio * 100:.1f}%)",
    ]
    return header + footer


def render_prompt_block(result: RetrievalResult) -> str:
    """
    Format a retrieval result as a text block for prompt assembly.

    Returns an empty string when nothing was selected.
    """
    if not result.selections:
        return ""
    frame = _frame_lines(result.decision, result.token_usage)
    lines = [*frame[:2], ""]
    for layer in LAYER_ORDER:
        items = [s for s in result.selections if s.layer == layer]
        if not items:
            continue
        lines.append(f"{layer.value} context:")
        for item in items:
            lines.append(f"- node={item.node_id}, score={item.score:.3f}, tokens={item.estimated_tokens}")
            lines.append(item.content)
        lines.append("")
    lines.extend(frame[2:])
    return "\n".join(lines)
