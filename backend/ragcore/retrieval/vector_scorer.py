"""
Vector Scorer

Dense scoring of an in-memory candidate snapshot against a query vector.

Candidates are pulled into memory first and scored with the pure cosine
primitive, so the scorer has no persistence dependency.

Usage:
    scorer = VectorScorer()
    results = scorer.score(query_vector, candidates, min_similarity=0.5)
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from ragcore.config import settings
from ragcore.exceptions import InvalidParameterError
from ragcore.models import CandidateVector, ScoredResult
from ragcore.retrieval.cancellation import raise_if_cancelled
from ragcore.retrieval.similarity import cosine_similarity

logger = logging.getLogger(__name__)


class VectorScorer:
    """Cosine-similarity scorer with a minimum similarity cut-off."""

    def __init__(self, min_similarity: float = None):
        """
        Initialize vector scorer.

        Args:
            min_similarity: Default similarity threshold (0-1)
        """
        self.min_similarity = min_similarity if min_similarity is not None else settings.MIN_SIMILARITY

    def score(
        self,
        query_vector: Sequence[float],
        candidates: List[CandidateVector],
        min_similarity: float = None,
        top_k: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[ScoredResult]:
        """
        Score candidates by cosine similarity to the query.

        Args:
            query_vector: Query embedding
            candidates: Candidate snapshot (read-only)
            min_similarity: Candidates below this score are excluded
            top_k: Keep only the best top_k results
            cancel_event: Checked before every candidate

        Returns:
            Results sorted by similarity descending, ties in candidate order,
            with 1-based vector_rank set
        """
        min_similarity = min_similarity if min_similarity is not None else self.min_similarity
        if not 0.0 <= min_similarity <= 1.0:
            raise InvalidParameterError(f"min_similarity must be in [0, 1], got {min_similarity}")

        if not query_vector or not candidates:
            return []

        scored = []
        for candidate in candidates:
            raise_if_cancelled(cancel_event, "vector scoring")
            try:
                similarity = cosine_similarity(query_vector, candidate.vector)
            except Exception as e:
                logger.error(f"Vector scoring failed for candidate {candidate.id}: {e}")
                continue

            if similarity >= min_similarity:
                scored.append((candidate.id, similarity))

        scored.sort(key=lambda x: x[1], reverse=True)
        if top_k is not None:
            scored = scored[:top_k]

        logger.debug(f"Vector scoring kept {len(scored)}/{len(candidates)} candidates (min={min_similarity})")

        return [
            ScoredResult(
                id=candidate_id,
                vector_score=similarity,
                combined_score=similarity,
                vector_rank=rank
            )
            for rank, (candidate_id, similarity) in enumerate(scored, start=1)
        ]
