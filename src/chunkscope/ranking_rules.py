"""
Intent-specific reordering applied after retrieval.
"""
from __future__ import annotations

from typing import Sequence

from .models import SimilarityResult

COMPARISON_TABLE_MARKERS = ("comparison table:", "comparison of")

PROMINENCE_WINDOW = 200


def _has_table_marker(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in COMPARISON_TABLE_MARKERS)


def is_specific_table_query(question: str, key_terms: Sequence[str]) -> bool:
    """
    True only for questions that name one comparison table, e.g.
    "comparison of X vs Y". Broad questions about X and Y need several chunks.
    """
    q = str(question or "").lower()
    if len(key_terms) < 2:
        return False

    has_vs = any(token in q for token in (" vs ", " vs. ", " versus "))
    has_comparison_of = "comparison of" in q
    has_compare_vs = "compare" in q and has_vs
    has_vs_comparison = has_vs and "comparison" in q
    has_indicator = "comparison" in q or has_vs

    return (has_comparison_of or has_compare_vs or has_vs_comparison) and has_indicator


def find_perfect_comparison_match(chunks: Sequence[SimilarityResult], key_terms: Sequence[str]) -> int:
    """Index of the first comparison-table chunk containing every key term, or -1."""
    terms = [term.lower() for term in key_terms]
    for idx, chunk in enumerate(chunks):
        text = chunk.text.lower()
        if not _has_table_marker(text):
            continue
        if all(term in text for term in terms):
            return idx
    return -1


def prioritize_comparison_chunks(
    chunks: Sequence[SimilarityResult],
    key_terms: Sequence[str],
    question: str,
) -> list[SimilarityResult]:
    comparison = [c for c in chunks if c.metadata.get("chunk_type") == "comparison"]
    others = [c for c in chunks if c.metadata.get("chunk_type") != "comparison"]
    ordered = comparison + others if comparison else list(chunks)

    perfect_idx = find_perfect_comparison_match(ordered, key_terms)
    if perfect_idx < 0:
        return ordered
    perfect = ordered.pop(perfect_idx)
    ordered.insert(0, perfect)
    if is_specific_table_query(question, key_terms):
        return [perfect]
    return ordered


def definition_prominence(text: str, term: str) -> int:
    """Scores how prominently `term` appears; 0 means absent."""
    lowered = text.lower()
    term = term.lower()
    if not term or term not in lowered:
        return 0
    score = 0
    if lowered.startswith(term):
        score += 100
    head = lowered[:PROMINENCE_WINDOW]
    if term in head:
        score += 50
    if f"{term} " in head or f"{term}\n" in head or f" {term} " in head:
        score += 30
    if len(text) > PROMINENCE_WINDOW:
        score += 10
    score += 5 * lowered.count(term)
    return score


def promote_definition_match(chunks: Sequence[SimilarityResult], key_terms: Sequence[str]) -> list[SimilarityResult]:
    """Moves the chunk where the first key term is most prominent to the front."""
    ordered = list(chunks)
    if not key_terms or not ordered:
        return ordered
    primary = key_terms[0]
    best_idx = -1
    best_score = 0
    for idx, chunk in enumerate(ordered):
        score = definition_prominence(chunk.text, primary)
        if score > best_score:
            best_score = score
            best_idx = idx
    if best_idx > 0:
        ordered.insert(0, ordered.pop(best_idx))
    return ordered
