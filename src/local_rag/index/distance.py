"""
Cosine similarity and distance.

similarity = (a . b) / (|a| |b|), defined as 0 when either norm is 0.
distance = 1 - similarity. Results are clipped to [-1, 1] so float error
on identical vectors never reports a similarity above 1.
"""

from __future__ import annotations

import numpy as np


def vector_norm(vector: np.ndarray) -> float:
    return float(np.linalg.norm(vector))


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two vectors, 0 for zero vectors."""
    denom = vector_norm(a) * vector_norm(b)
    if denom == 0:
        return 0.0
    return float(np.clip(np.dot(a, b) / denom, -1.0, 1.0))


def cosine_distance(a: np.ndarray, b: np.ndarray) -> float:
    """1 - cosine_similarity(a, b)."""
    return 1.0 - cosine_similarity(a, b)


def batch_cosine_distance(
    query: np.ndarray,
    query_norm: float,
    vectors: np.ndarray,
    norms: np.ndarray,
) -> np.ndarray:
    """Distances from one query to each row of `vectors`.

    `norms` holds the precomputed row norms. Rows (or a query) with zero
    norm get similarity 0, i.e. distance 1.
    """
    denom = norms * query_norm
    dots = vectors @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(denom > 0, dots / np.where(denom > 0, denom, 1.0), 0.0)
    return 1.0 - np.clip(sims, -1.0, 1.0)
