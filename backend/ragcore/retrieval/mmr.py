"""
Diversity Reranker Module

Maximal Marginal Relevance (MMR) reranking. Greedily picks the candidate
that best balances relevance to the query against similarity to what
has already been picked:

    MMR = λ * relevance(c) - (1 - λ) * max_{s in selected} sim(c, s)

λ = 1 is pure relevance ordering, λ = 0 is pure novelty.

Usage:
    reranker = DiversityReranker(lambda_source=tenant_configs)
    effective = await reranker.resolve_lambda(None, tenant_id="acme")
    picks = reranker.rerank(query_vector, candidates, top_k=5, lambda_=effective)
"""

from typing import List, Optional, Sequence
import logging

from ragcore.config import settings
from ragcore.exceptions import InvalidParameterError
from ragcore.models import CandidateVector, MMRResult
from ragcore.retrieval.ports import LambdaConfigSource
from ragcore.retrieval.similarity import cosine_similarity

logger = logging.getLogger(__name__)


class DiversityReranker:
    """
    Greedy MMR selection over an already-scored candidate pool.

    Relevance is the candidate's cosine similarity to the query vector;
    without a query vector the candidate's initial score is used instead.
    """

    def __init__(
        self,
        lambda_source: Optional[LambdaConfigSource] = None,
        default_lambda: float = None
    ):
        """
        Initialize diversity reranker.

        Args:
            lambda_source: Per-tenant stored lambda configuration
            default_lambda: Static fallback lambda
        """
        self.lambda_source = lambda_source
        self.default_lambda = default_lambda if default_lambda is not None else settings.MMR_LAMBDA

    async def resolve_lambda(
        self,
        explicit_lambda: Optional[float] = None,
        tenant_id: Optional[str] = None
    ) -> float:
        """
        Pick the effective lambda.

        Priority: explicit argument > tenant configuration > static default.
        None means "not provided", so an explicit 0.5 is honoured.

        Args:
            explicit_lambda: Caller-supplied lambda or None
            tenant_id: Tenant whose stored configuration to consult

        Returns:
            Effective lambda in [0, 1]
        """
        if explicit_lambda is not None:
            if not 0.0 <= explicit_lambda <= 1.0:
                raise InvalidParameterError(f"lambda must be in [0, 1], got {explicit_lambda}")
            return explicit_lambda

        if self.lambda_source is not None and tenant_id is not None:
            try:
                stored = await self.lambda_source.get_mmr_lambda(tenant_id)
                if stored is not None and 0.0 < stored <= 1.0:
                    logger.debug(f"Using MMR lambda {stored} from tenant {tenant_id} configuration")
                    return stored
                if stored is not None:
                    logger.warning(f"Ignoring invalid stored MMR lambda {stored} for tenant {tenant_id}")
            except Exception as e:
                logger.warning(f"Error loading MMR lambda for tenant {tenant_id}, using default: {e}")

        logger.debug(f"Using default MMR lambda {self.default_lambda}")
        return self.default_lambda

    def rerank(
        self,
        query_vector: Optional[Sequence[float]],
        candidates: List[CandidateVector],
        top_k: int,
        lambda_: float = None
    ) -> List[MMRResult]:
        """
        Rerank candidates with MMR.

        Args:
            query_vector: Query embedding (None to use initial scores as relevance)
            candidates: Candidate pool
            top_k: Number of candidates to select
            lambda_: Relevance vs diversity balance

        Returns:
            Selected candidates in pick order
        """
        lambda_ = lambda_ if lambda_ is not None else self.default_lambda
        if top_k <= 0:
            raise InvalidParameterError(f"top_k must be positive, got {top_k}")
        if not 0.0 <= lambda_ <= 1.0:
            raise InvalidParameterError(f"lambda must be in [0, 1], got {lambda_}")

        if not candidates:
            logger.warning("No candidates provided for MMR reranking")
            return []

        logger.info(
            f"Starting MMR reranking with {len(candidates)} candidates, top_k={top_k}, lambda={lambda_}"
        )

        # Pool in initial score order; ties keep input order
        pool = sorted(candidates, key=lambda c: c.initial_score, reverse=True)
        relevance = {
            c.id: self._relevance(query_vector, c) for c in pool
        }

        # Candidates without a vector cannot be compared; they follow the MMR picks in pool order
        remaining = [c for c in pool if c.vector]
        vectorless = [c for c in pool if not c.vector]

        results: List[MMRResult] = []
        selected_vectors: List[List[float]] = []

        while remaining and len(results) < top_k:
            best_index = -1
            best_score = float("-inf")

            for j, candidate in enumerate(remaining):
                mmr_score = self.calculate_mmr_score(
                    relevance[candidate.id], candidate.vector, selected_vectors, lambda_
                )
                if mmr_score > best_score:
                    best_score = mmr_score
                    best_index = j

            best = remaining.pop(best_index)
            results.append(MMRResult(
                id=best.id,
                vector=best.vector,
                initial_score=best.initial_score,
                mmr_score=best_score,
                rank=len(results) + 1,
                metadata=best.metadata
            ))
            selected_vectors.append(best.vector)

        for candidate in vectorless[:top_k - len(results)]:
            results.append(MMRResult(
                id=candidate.id,
                initial_score=candidate.initial_score,
                mmr_score=self.calculate_mmr_score(relevance[candidate.id], candidate.vector, [], lambda_),
                rank=len(results) + 1,
                metadata=candidate.metadata
            ))

        logger.info(f"MMR reranking completed. Selected {len(results)} documents")
        return results

    def calculate_mmr_score(
        self,
        relevance: float,
        candidate_vector: Sequence[float],
        selected_vectors: List[Sequence[float]],
        lambda_: float
    ) -> float:
        """
        MMR score of one candidate against the current selection.

        Args:
            relevance: Candidate relevance to the query
            candidate_vector: Candidate embedding
            selected_vectors: Embeddings already selected
            lambda_: Relevance vs diversity balance

        Returns:
            MMR score (the redundancy term is 0 for an empty selection)
        """
        max_similarity = 0.0
        if selected_vectors:
            max_similarity = max(
                cosine_similarity(candidate_vector, selected) for selected in selected_vectors
            )
        return lambda_ * relevance - (1 - lambda_) * max_similarity

    @staticmethod
    def _relevance(query_vector: Optional[Sequence[float]], candidate: CandidateVector) -> float:
        if query_vector is not None and len(query_vector) > 0 and candidate.vector:
            return cosine_similarity(query_vector, candidate.vector)
        return candidate.initial_score
