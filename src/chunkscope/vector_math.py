"""
Vector helpers shared by the caches, the router and the adaptive policy.

This is the only module that converts between cosine distance and similarity.
"""
from __future__ import annotations

from typing import Sequence

import numpy as np

from .errors import ValidationError


def as_vector(values: Sequence[float] | np.ndarray) -> np.ndarray:
    try:
        return np.asarray(values, dtype=np.float64).reshape(-1)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"not a numeric vector: {exc}") from exc


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Returns dot(a, b) / (|a| |b|); raises ValidationError when undefined."""
    va = as_vector(a)
    vb = as_vector(b)
    if va.size == 0 or vb.size == 0:
        raise ValidationError("cosine similarity of an empty vector is undefined")
    if va.size != vb.size:
        raise ValidationError(f"vector length mismatch: {va.size} != {vb.size}")
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        raise ValidationError("cosine similarity of a zero-magnitude vector is undefined")
    if not np.isfinite(norm_a) or not np.isfinite(norm_b):
        raise ValidationError("vector contains non-finite values")
    return float(np.dot(va, vb) / (norm_a * norm_b))


def similarity_to_distance(similarity: float) -> float:
    return 1.0 - float(similarity)


def distance_to_similarity(distance: float) -> float:
    return 1.0 - float(distance)


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    return similarity_to_distance(cosine_similarity(a, b))


def mean(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    return float(np.mean(np.asarray(values, dtype=np.float64)))


def population_stddev(values: Sequence[float]) -> float:
    if len(values) == 0:
        return 0.0
    # ddof=0: population, not sample, deviation
    return float(np.std(np.asarray(values, dtype=np.float64), ddof=0))
