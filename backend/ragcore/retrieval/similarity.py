"""
Similarity Primitives

Cosine similarity shared by vector scoring, MMR, deduplication and
context compression. Scores are clamped to [0, 1].

A corpus can mix embedding models (e.g. 768 and 1536 dimensions), so a
dimension mismatch is logged and scored as a non-match instead of
raising, unless strict mode is requested.
"""

import logging
from typing import List, Sequence

import numpy as np

from ragcore.exceptions import DimensionMismatchError

logger = logging.getLogger(__name__)


def cosine_similarity(
    vec1: Sequence[float],
    vec2: Sequence[float],
    strict: bool = False
) -> float:
    """
    Calculate cosine similarity between two vectors.

    Args:
        vec1: First vector
        vec2: Second vector
        strict: Raise DimensionMismatchError instead of returning 0

    Returns:
        Cosine similarity clamped to [0, 1]; 0 for empty, zero-magnitude
        or mismatched vectors
    """
    if vec1 is None or vec2 is None:
        return 0.0

    a = np.asarray(vec1, dtype=np.float64)
    b = np.asarray(vec2, dtype=np.float64)

    if a.shape != b.shape:
        if strict:
            raise DimensionMismatchError(a.size, b.size)
        logger.warning(f"Vector dimension mismatch: {a.size} vs {b.size}")
        return 0.0

    if a.size == 0:
        return 0.0

    norm1 = np.linalg.norm(a)
    norm2 = np.linalg.norm(b)

    if norm1 == 0 or norm2 == 0:
        return 0.0

    similarity = float(np.dot(a, b) / (norm1 * norm2))
    return min(1.0, max(0.0, similarity))


def batch_cosine_similarity(
    query: Sequence[float],
    vectors: List[Sequence[float]]
) -> List[float]:
    """
    Score many vectors against one query.

    Vectors whose dimension differs from the query are scored 0.

    Args:
        query: Query vector
        vectors: Candidate vectors

    Returns:
        One similarity per input vector, in input order
    """
    if not vectors:
        return []

    q = np.asarray(query, dtype=np.float64)
    q_norm = np.linalg.norm(q)
    if q.size == 0 or q_norm == 0:
        return [0.0] * len(vectors)

    scores = [0.0] * len(vectors)
    matching = [i for i, v in enumerate(vectors) if v is not None and len(v) == q.size]

    mismatched = len(vectors) - len(matching)
    if mismatched:
        logger.warning(f"{mismatched} vectors do not match query dimension {q.size}, scoring as 0")

    if not matching:
        return scores

    matrix = np.asarray([vectors[i] for i in matching], dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1)
    dots = matrix @ q

    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(norms > 0, dots / (norms * q_norm), 0.0)

    for i, sim in zip(matching, sims):
        scores[i] = min(1.0, max(0.0, float(sim)))

    return scores
