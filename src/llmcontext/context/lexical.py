# src/llmcontext/context/lexical.py
"""
BM25 lexical scorer with saturating normalization and an exact-phrase bonus.

Raw BM25 is unbounded, so the accumulated score is mapped through
``1 - exp(-raw)`` into [0, 1).  A query whose normalized form appears
verbatim inside the normalized document earns ``PHRASE_BONUS`` on top,
which lets an exact quote (an error line, a file name) beat documents that
merely share vocabulary.

Example::

    model = BM25Model(["deployment checklist", "billing migration"])
    model.score("deployment status", 0)   # > 0
    model.score("deployment status", 1)   # == 0.0
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Sequence

from .dense import clamp01
from .text import normalize_for_match, tokenize

logger = logging.getLogger(__name__)

DEFAULT_K1 = 1.2
DEFAULT_B = 0.75
PHRASE_BONUS = 0.15


@dataclass
class BM25Document:
    """
    Per-document statistics.

    Attributes:
        term_frequencies: Term counts.
        length: Number of terms.
        normalized: Whitespace-collapsed, lower-cased content for phrase matching.
    """

    term_frequencies: Counter
    length: int
    normalized: str


class BM25Model:
    """
    BM25 statistics over a fixed document set.

    Args:
        documents: Document texts; positions are used as document ids.
        k1: Term frequency saturation.
        b: Length normalization strength.
    """

    def __init__(self, documents: Sequence[str], k1: float = DEFAULT_K1, b: float = DEFAULT_B) -> None:
        self.k1 = k1
        self.b = b
        self.documents: List[BM25Document] = []
        self.document_frequency: Dict[str, int] = {}

        for text in documents:
            terms = tokenize(text)
            tf = Counter(terms)
            self.documents.append(BM25Document(tf, len(terms), normalize_for_match(text)))
            for term in tf:
                self.document_frequency[term] = self.document_frequency.get(term, 0) + 1

        total = sum(d.length for d in self.documents)
        self.avg_length = total / len(self.documents) if self.documents else 0.0

    def __len__(self) -> int:
        return len(self.documents)

    def idf(self, term: str) -> float:
        n = len(self.documents)
        df = self.document_frequency.get(term, 0)
        return math.log(1 + (n - df + 0.5) / (df + 0.5))

    def raw_score(self, query_terms: Counter, doc_index: int) -> float:
        doc = self.documents[doc_index]
        if doc.length == 0:
            return 0.0
        length_ratio = doc.length / self.avg_length if self.avg_length > 0 else 1.0
        length_norm = 1 - self.b + self.b * length_ratio
        raw = 0.0
        for term, query_count in query_terms.items():
            tf = doc.term_frequencies.get(term, 0)
            if tf == 0:
                continue
            tf_norm = tf * (self.k1 + 1) / (tf + self.k1 * length_norm)
            query_weight = 1 + math.log(1 + query_count)
            raw += self.idf(term) * tf_norm * query_weight
        return raw

    def score(self, query: str, doc_index: int) -> float:
        """Normalized score in [0, 1] of ``query`` against one document."""
        return self._score(Counter(tokenize(query)), normalize_for_match(query), doc_index)

    def score_all(self, query: str) -> List[float]:
        query_terms = Counter(tokenize(query))
        normalized_query = normalize_for_match(query)
        return [self._score(query_terms, normalized_query, i) for i in range(len(self.documents))]

    def _score(self, query_terms: Counter, normalized_query: str, doc_index: int) -> float:
        raw = self.raw_score(query_terms, doc_index)
        score = 1 - math.exp(-raw)
        normalized_doc = self.documents[doc_index].normalized
        if normalized_query and normalized_query in normalized_doc:
            score += PHRASE_BONUS
        return clamp01(score)


def bm25_scores(query: str, documents: Sequence[str], k1: float = DEFAULT_K1, b: float = DEFAULT_B) -> List[float]:
    """Score ``query`` against every document of a one-off collection."""
    return BM25Model(documents, k1=k1, b=b).score_all(query)
