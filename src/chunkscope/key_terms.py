"""
Key term extraction for English and Turkish questions.
"""
from __future__ import annotations

import re
from itertools import combinations
from typing import Iterable

from .tokenization import is_numeric_token, strip_punctuation, tokenize_for_matching

_ENGLISH_STOP_WORDS = frozenset({
    "the", "is", "are", "was", "were", "what", "whats", "how", "why", "when", "where",
    "who", "which", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "from", "up", "about", "into", "through", "during", "before", "after",
    "above", "below", "between", "under", "again", "further", "then", "once", "here",
    "there", "all", "both", "each", "few", "more", "most", "other", "some", "such", "no",
    "nor", "not", "only", "own", "same", "so", "than", "too", "very", "can", "will",
    "just", "difference", "differences", "compare", "comparison", "versus", "vs", "among",
    "you", "your", "yours", "this", "that", "these", "those", "me", "my", "mine", "we",
    "our", "ours",
    # Frequent in questions about an upload, never discriminative inside it.
    "file", "document", "text", "content",
})

_TURKISH_STOP_WORDS = frozenset({
    "nedir", "ne", "nasıl", "neden", "niçin", "nerede", "kim", "hangi", "bir", "ve",
    "veya", "ile", "için", "üzerinde", "altında", "arasında", "içinde", "dışında",
    "önce", "sonra", "bu", "şu", "o", "bunlar", "şunlar", "onlar", "ben", "sen", "biz",
    "siz", "fark", "farkı", "farklar", "karşılaştır", "karşılaştırma", "arasındaki",
})

STOP_WORDS = _ENGLISH_STOP_WORDS | _TURKISH_STOP_WORDS

# "X and Y", "X ve Y", "X, Y"; lookahead so chained lists yield every pair.
_CONJUNCTION_RE = re.compile(r"(\w+)(?=(?:\s*,\s*|\s+(?:and|ve)\s+)(\w+))", flags=re.UNICODE)

MIN_TERM_LENGTH = 3


def _dedupe(terms: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for term in terms:
        if term in seen:
            continue
        seen.add(term)
        out.append(term)
    return out


class KeyTermExtractor:
    def __init__(self, stop_words: Iterable[str] | None = None, min_length: int = MIN_TERM_LENGTH):
        self.stop_words = frozenset(stop_words) if stop_words is not None else STOP_WORDS
        self.min_length = int(min_length)

    def _is_salient(self, token: str) -> bool:
        if token in self.stop_words:
            return False
        return len(token) >= self.min_length or is_numeric_token(token)

    def extract(self, query: str) -> list[str]:
        """
        Salient terms in first-seen order.
        Numbers survive the length filter because they carry meaning in
        version comparisons such as "wifi 5 6 7".
        """
        tokens = tokenize_for_matching(strip_punctuation(query))
        return _dedupe(token for token in tokens if self._is_salient(token))

    def extract_named_terms(self, query: str) -> list[str]:
        terms = self.extract(query)
        for left, right in _CONJUNCTION_RE.findall(str(query or "").lower()):
            for term in (left, right):
                if self._is_salient(term):
                    terms.append(term)
        return _dedupe(terms)


def expand_query_for_comparison(query: str, terms: list[str]) -> list[str]:
    """Query variations: the original, per-term definition questions, then pairwise contrasts."""
    expanded = [query]
    for term in terms:
        expanded.extend((f"what is {term}", f"{term} definition", term))
    for left, right in combinations(terms, 2):
        expanded.append(f"difference between {left} and {right}")
        expanded.append(f"{left} vs {right}")
    return expanded
