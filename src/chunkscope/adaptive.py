"""
Adaptive result-set sizing driven by the similarity-score distribution.

Confident, tight distributions need few chunks; weak or mixed ones get more.
"""
from __future__ import annotations

from typing import Sequence

from .models import SimilarityResult
from .vector_math import mean, population_stddev

HIGH_VARIANCE_STDDEV = 0.2
HIGH_VARIANCE_INFLATION = 1.2
HIGH_CONFIDENCE_SHARE = 0.3
MEDIUM_CONFIDENCE_SHARE = 0.6
DYNAMIC_THRESHOLD_CEILING = 0.7


class AdaptiveRetriever:
    def __init__(
        self,
        max_top_k: int = 10,
        min_top_k: int | None = None,
        high_threshold: float = 0.8,
        medium_threshold: float = 0.5,
        min_threshold: float = 0.3,
    ):
        self.max_top_k = int(max_top_k)
        self.min_top_k = int(min_top_k) if min_top_k is not None else max(1, self.max_top_k // 4)
        if self.min_top_k > self.max_top_k:
            raise ValueError("min_top_k must not exceed max_top_k")
        self.high_threshold = float(high_threshold)
        self.medium_threshold = float(medium_threshold)
        self.min_threshold = float(min_threshold)

    @classmethod
    def from_settings(cls, settings) -> "AdaptiveRetriever":
        return cls(
            max_top_k=settings.max_chunks,
            min_top_k=settings.min_top_k,
            high_threshold=settings.high_threshold,
            medium_threshold=settings.medium_threshold,
            min_threshold=settings.min_threshold,
        )

    def compute_adaptive_top_k(self, scores: Sequence[float], available: int | None = None) -> int:
        """`available` caps k when some candidates carry no score (keyword-only fusion hits)."""
        if len(scores) == 0:
            return self.min_top_k

        avg = mean(scores)
        spread = self.max_top_k - self.min_top_k
        if avg >= self.high_threshold:
            top_k = self.min_top_k + int(spread * HIGH_CONFIDENCE_SHARE)
        elif avg >= self.medium_threshold:
            top_k = self.min_top_k + int(spread * MEDIUM_CONFIDENCE_SHARE)
        else:
            top_k = self.max_top_k

        if population_stddev(scores) > HIGH_VARIANCE_STDDEV:
            top_k = int(top_k * HIGH_VARIANCE_INFLATION)

        top_k = max(self.min_top_k, min(self.max_top_k, top_k))
        return min(top_k, len(scores) if available is None else max(len(scores), int(available)))

    def filter_by_threshold(self, results: Sequence[SimilarityResult]) -> list[SimilarityResult]:
        """Drops results below the minimum similarity; results with no cosine evidence are kept."""
        kept: list[SimilarityResult] = []
        for result in results:
            similarity = result.similarity
            if similarity is None or similarity >= self.min_threshold:
                kept.append(result)
        return kept

    def compute_dynamic_threshold(self, scores: Sequence[float]) -> float:
        if len(scores) == 0:
            return self.min_threshold
        threshold = mean(scores) - 1.5 * population_stddev(scores)
        return min(DYNAMIC_THRESHOLD_CEILING, max(self.min_threshold, threshold))

    @staticmethod
    def similarity_scores(results: Sequence[SimilarityResult]) -> list[float]:
        return [result.similarity for result in results if result.similarity is not None]

    def get_threshold_results(self, results: Sequence[SimilarityResult]) -> list[SimilarityResult]:
        """Keeps every result at or above a threshold derived from the score spread."""
        threshold = self.compute_dynamic_threshold(self.similarity_scores(results))
        return [
            result for result in results
            if result.similarity is None or result.similarity >= threshold
        ]

    def get_adaptive_results(self, results: Sequence[SimilarityResult]) -> list[SimilarityResult]:
        if not results:
            return []
        # Size from the full candidate distribution, then cut the filtered list.
        top_k = self.compute_adaptive_top_k(self.similarity_scores(results), available=len(results))
        return self.filter_by_threshold(results)[:top_k]

    def explain_decision(self, scores: Sequence[float], top_k: int) -> str:
        if len(scores) == 0:
            return "No similarities provided"
        avg = mean(scores)
        stddev = population_stddev(scores)
        explanation = f"Selected top-k={top_k} based on mean similarity={avg:.3f}, stddev={stddev:.3f}. "
        if avg >= self.high_threshold:
            explanation += "High confidence match - fewer chunks needed."
        elif avg >= self.medium_threshold:
            explanation += "Medium confidence - moderate number of chunks."
        else:
            explanation += "Low confidence - retrieving more chunks for better coverage."
        if stddev > HIGH_VARIANCE_STDDEV:
            explanation += " High variance detected, increased chunk count."
        return explanation
