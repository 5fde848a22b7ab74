# src/llmcontext/context/text.py
"""
Text utilities shared by the lexical scorer, indexer and summary generator.

Tokenization is tuned for mixed English/CJK chat history:

- ASCII runs of letters, digits and ``_ . / -`` are lower-cased and kept
  when at least two characters long after stripping edge punctuation, so
  identifiers like ``deploy.ts`` or ``src/main`` survive as one term.
- CJK spans are split into overlapping bigrams; a lone CJK character is
  its own token.
- Multi-character stopwords are dropped.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Callable, List, Optional, Tuple

from .tokens import CJK_PATTERN, estimate_text_tokens

STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "to", "for", "of", "in", "on", "at",
    "is", "are", "was", "were", "be", "been", "this", "that", "it", "as",
    "with", "by", "from", "about", "into", "through", "can", "could",
    "should", "would", "you", "your", "we", "they", "their", "our", "i",
    "he", "she", "them", "his", "her",
})

_CJK_CLASS = CJK_PATTERN.pattern
_TOKEN_PATTERN = re.compile(rf"([a-z0-9_./\-]+)|({_CJK_CLASS}+)")
_EDGE_PUNCTUATION = "._/-"
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_MULTI_NEWLINE = re.compile(r"\n{3,}")
_MULTI_SPACE = re.compile(r"[ \t]{2,}")
_ANY_WHITESPACE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    """
    Normalize line endings, collapse blank-line runs and inline space runs.

    Examples:
        >>> normalize_whitespace("  a\\r\\n\\n\\n\\nb   c ")
        'a\\n\\nb c'
    """
    if not text:
        return ""
    text = text.replace("\r\n", "\n")
    text = _MULTI_NEWLINE.sub("\n\n", text)
    text = _MULTI_SPACE.sub(" ", text)
    return text.strip()


def normalize_for_match(text: str) -> str:
    """Collapse all whitespace to single spaces and lower-case, for phrase matching."""
    return _ANY_WHITESPACE.sub(" ", text or "").strip().lower()


def tokenize(text: str) -> List[str]:
    """
    Split text into lexical terms.

    Examples:
        >>> tokenize("Fix the error in deploy.ts!")
        ['fix', 'error', 'deploy.ts']
    """
    if not text:
        return []
    tokens: List[str] = []
    for match in _TOKEN_PATTERN.finditer(text.lower()):
        ascii_run, cjk_run = match.group(1), match.group(2)
        if ascii_run is not None:
            term = ascii_run.strip(_EDGE_PUNCTUATION)
            if len(term) >= 2 and term not in STOPWORDS:
                tokens.append(term)
        elif cjk_run:
            if len(cjk_run) == 1:
                tokens.append(cjk_run)
            else:
                tokens.extend(cjk_run[i:i + 2] for i in range(len(cjk_run) - 1))
    return tokens


def extract_keywords(text: str, max_keywords: int) -> Tuple[str, ...]:
    """
    Most frequent terms of ``text``; ties keep first-occurrence order.
    """
    if max_keywords <= 0:
        return ()
    counts = Counter(tokenize(text))
    # Counter preserves insertion order, and sorted() is stable.
    ranked = sorted(counts.items(), key=lambda item: -item[1])
    return tuple(term for term, _ in ranked[:max_keywords])


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text.strip()) if s.strip()]


def clip(text: str, limit: int, ellipsis: str = "...") -> str:
    """Cut ``text`` to ``limit`` characters, appending ``ellipsis`` when cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + ellipsis


def trim_to_token_target(
    text: str,
    target_tokens: int,
    counter: Optional[Callable[[str], int]] = None,
) -> str:
    """
    Longest whitespace-delimited word prefix of the normalized text that fits.

    Binary search over the number of words; at least one word is always
    returned, so the result can exceed ``target_tokens`` only when the first
    word alone does.

    Examples:
        >>> trim_to_token_target("one two three four five six", 7)
        'one two'
    """
    count = counter or estimate_text_tokens
    normalized = normalize_whitespace(text)
    if not normalized or count(normalized) <= target_tokens:
        return normalized

    spans = [m.span() for m in re.finditer(r"\S+", normalized)]
    low, high = 1, len(spans)
    best = 1
    while low <= high:
        mid = (low + high) // 2
        if count(normalized[:spans[mid - 1][1]]) <= target_tokens:
            best = mid
            low = mid + 1
        else:
            high = mid - 1
    return normalized[:spans[best - 1][1]]
