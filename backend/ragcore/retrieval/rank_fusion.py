"""
Rank Fusion Module

Merges the dense and keyword rankings with Reciprocal Rank Fusion (RRF).

Why ranks instead of scores?
- Cosine similarity and keyword overlap ratios live on different scales
- Rank-based fusion needs no calibration between them

Usage:
    fuser = RankFuser(k=60)
    fused = fuser.fuse(vector_results, keyword_results, top_k=10)
"""

from typing import Dict, List
import logging

from ragcore.config import settings
from ragcore.exceptions import InvalidParameterError
from ragcore.models import ScoredResult

logger = logging.getLogger(__name__)


class RankFuser:
    """Reciprocal Rank Fusion over a vector and a keyword ranking."""

    def __init__(self, k: int = None):
        """
        Initialize rank fuser.

        Args:
            k: RRF constant (typically 60)
        """
        self.k = k if k is not None else settings.RRF_K
        if self.k <= 0:
            raise InvalidParameterError(f"RRF constant must be positive, got {self.k}")

    def fuse(
        self,
        vector_results: List[ScoredResult],
        keyword_results: List[ScoredResult],
        top_k: int = None
    ) -> List[ScoredResult]:
        """
        Fuse results using Reciprocal Rank Fusion.

        RRF score = Σ 1 / (k + rank), summed over the lists containing the id.
        Absence from a list contributes nothing.

        Args:
            vector_results: Dense ranking, best first
            keyword_results: Keyword ranking, best first
            top_k: Number of results to return

        Returns:
            Fused results sorted by RRF score; ties keep first-seen order
        """
        top_k = top_k if top_k is not None else settings.RETRIEVAL_TOP_K
        if top_k <= 0:
            raise InvalidParameterError(f"top_k must be positive, got {top_k}")

        merged: Dict[str, ScoredResult] = {}

        # Score from dense results
        for position, result in enumerate(vector_results, start=1):
            rank = result.vector_rank or position
            entry = merged.get(result.id)
            if entry is None:
                entry = ScoredResult(id=result.id)
                merged[result.id] = entry
            entry.vector_score = result.vector_score
            entry.vector_rank = rank
            entry.combined_score += 1.0 / (self.k + rank)

        # Score from keyword results
        for position, result in enumerate(keyword_results, start=1):
            rank = result.text_rank or position
            entry = merged.get(result.id)
            if entry is None:
                entry = ScoredResult(id=result.id)
                merged[result.id] = entry
            entry.keyword_score = result.keyword_score
            entry.text_rank = rank
            entry.combined_score += 1.0 / (self.k + rank)

        # Stable sort keeps insertion order among equal scores
        fused = sorted(merged.values(), key=lambda r: r.combined_score, reverse=True)

        logger.debug(
            f"RRF fused {len(vector_results)} dense + {len(keyword_results)} keyword "
            f"into {len(fused)} results (k={self.k}, top_k={top_k})"
        )
        return fused[:top_k]
