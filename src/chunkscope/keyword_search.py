"""
Substring keyword scoring over chunk text and the precomputed `key_terms` metadata.
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from .models import SimilarityResult

TEXT_MATCH_WEIGHT = 10
KEY_TERMS_MATCH_WEIGHT = 5


def keyword_score(text: str, metadata: Mapping[str, Any] | None, keywords: Sequence[str]) -> tuple[int, int]:
    """Returns (score, matched_keywords); a body match outweighs a metadata match."""
    body = str(text or "").lower()
    key_terms = str((metadata or {}).get("key_terms") or "").lower()
    score = 0
    matched = 0
    for keyword in keywords:
        needle = str(keyword or "").lower()
        if not needle:
            continue
        in_body = needle in body
        in_terms = bool(key_terms) and needle in key_terms
        if in_body:
            score += TEXT_MATCH_WEIGHT
        if in_terms:
            score += KEY_TERMS_MATCH_WEIGHT
        if in_body or in_terms:
            matched += 1
    return score, matched


def rank_keyword_matches(
    candidates: Iterable[tuple[str, str, Mapping[str, Any]]],
    keywords: Sequence[str],
    top_k: int,
) -> list[SimilarityResult]:
    """
    Scores (chunk_id, text, metadata) candidates; only chunks matching at least
    one keyword survive. Distance is the score's shortfall from a perfect match.
    """
    if top_k <= 0 or not keywords:
        return []
    best_possible = float((TEXT_MATCH_WEIGHT + KEY_TERMS_MATCH_WEIGHT) * len(keywords))
    scored: list[tuple[int, str, str, Mapping[str, Any]]] = []
    for chunk_id, text, metadata in candidates:
        score, matched = keyword_score(text, metadata, keywords)
        if matched > 0:
            scored.append((score, chunk_id, text, metadata))
    # Stable: equal scores keep candidate order.
    scored.sort(key=lambda item: item[0], reverse=True)
    return [
        SimilarityResult(
            chunk_id=chunk_id,
            distance=1.0 - (score / best_possible),
            text=text,
            metadata=dict(metadata or {}),
            source="keyword",
        )
        for score, chunk_id, text, metadata in scored[:top_k]
    ]
