"""Cosine similarity and deterministic top-k ranking."""

import logging
from typing import Callable, List, Sequence, Tuple, TypeVar

import numpy as np

logger = logging.getLogger("verifiable-rag.vectors")

T = TypeVar("T")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity dot(a, b) / (|a| * |b|).

    Args:
        a: First vector
        b: Second vector (same length as ``a``)

    Returns:
        Similarity in [-1, 1]; 0.0 when either vector has zero norm

    Raises:
        ValueError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise ValueError(f"Vectors must have same length ({len(a)} != {len(b)})")

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)

    denominator = np.linalg.norm(va) * np.linalg.norm(vb)
    if denominator == 0:
        return 0.0

    # Clamp float drift so identical vectors never report 1.0000000000000002
    return float(np.clip(np.dot(va, vb) / denominator, -1.0, 1.0))


def cosine_scores(query: Sequence[float], matrix: np.ndarray) -> np.ndarray:
    """Cosine of every row of ``matrix`` against ``query``; zero-norm rows score 0."""
    q = np.asarray(query, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q

    scores = np.zeros(len(matrix), dtype=np.float64)
    np.divide(dots, norms, out=scores, where=norms != 0)
    return np.clip(scores, -1.0, 1.0)


def rank_by_similarity(
    query: Sequence[float],
    candidates: Sequence[T],
    vector_of: Callable[[T], Sequence[float]],
    k: int,
) -> List[Tuple[T, float]]:
    """
    Score every candidate against the query and keep the top k.

    Sorting is stable, so equal scores keep their retrieval order.
    Candidates whose vector length differs from the query are skipped.

    Args:
        query: Query embedding
        candidates: Candidates in retrieval order
        vector_of: Accessor returning a candidate's embedding
        k: Number of results to keep

    Returns:
        List of (candidate, score) pairs, best first
    """
    kept: List[T] = []
    vectors: List[Sequence[float]] = []

    for candidate in candidates:
        vector = vector_of(candidate)
        if len(vector) != len(query):
            continue
        kept.append(candidate)
        vectors.append(vector)

    skipped = len(candidates) - len(kept)
    if skipped:
        logger.warning(
            f"Skipped {skipped} candidates with mismatched embedding dimension "
            f"(expected {len(query)})"
        )

    if not kept or k <= 0:
        return []

    matrix = np.asarray(vectors, dtype=np.float64).reshape(len(kept), len(query))
    scores = cosine_scores(query, matrix)
    order = np.argsort(-scores, kind="stable")[:k]

    return [(kept[i], float(scores[i])) for i in order]
