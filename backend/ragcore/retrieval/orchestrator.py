"""
Retrieval Orchestrator

End-to-end retrieval for one query:

    embed query -> [vector scoring || keyword scoring] -> RRF
      -> deduplication -> MMR -> context compression -> ranked passages

Failure model:
- Query embedding fails: the vector branch is skipped and the pipeline
  runs keyword-only (retry is the embedding adapter's job)
- Both branches empty: an empty list, never a placeholder passage
- Bad parameters: InvalidParameterError before any work
- Cancellation: RetrievalCancelledError between stages and per candidate

Usage:
    orchestrator = RetrievalOrchestrator(embedding_service, candidate_source, chunk_store)
    passages = await orchestrator.retrieve("How is revenue recognised?", top_k=5)
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from ragcore.cache.result_cache import build_cache_key
from ragcore.config import settings
from ragcore.exceptions import InvalidParameterError
from ragcore.models import CandidateVector, RankedPassage, ScoredResult, SearchScope
from ragcore.retrieval.cancellation import raise_if_cancelled
from ragcore.retrieval.compressor import ContextCompressor
from ragcore.retrieval.deduplicator import Deduplicator
from ragcore.retrieval.keyword_scorer import KeywordScorer
from ragcore.retrieval.mmr import DiversityReranker
from ragcore.retrieval.ports import (
    CandidateSource,
    ChunkStore,
    EmbeddingPort,
    LambdaConfigSource,
    ResultCache,
)
from ragcore.retrieval.rank_fusion import RankFuser
from ragcore.retrieval.vector_scorer import VectorScorer

logger = logging.getLogger(__name__)


class RetrievalOrchestrator:
    """
    Hybrid retrieval pipeline over an injected candidate snapshot.

    All collaborators are injected; the optional stages (deduplication,
    MMR, compression, caching) can be switched off individually.
    """

    def __init__(
        self,
        embedding_service: Optional[EmbeddingPort],
        candidate_source: CandidateSource,
        chunk_store: Optional[ChunkStore] = None,
        cache: Optional[ResultCache] = None,
        lambda_source: Optional[LambdaConfigSource] = None,
        vector_scorer: Optional[VectorScorer] = None,
        keyword_scorer: Optional[KeywordScorer] = None,
        rank_fuser: Optional[RankFuser] = None,
        deduplicator: Optional[Deduplicator] = None,
        reranker: Optional[DiversityReranker] = None,
        compressor: Optional[ContextCompressor] = None,
        enable_deduplication: bool = None,
        enable_mmr: bool = None,
        enable_compression: bool = None,
        candidate_multiplier: int = None
    ):
        """
        Initialize retrieval orchestrator.

        Args:
            embedding_service: Query and passage embeddings (None = keyword-only)
            candidate_source: Read-only candidate snapshot per scope
            chunk_store: Used to hydrate candidate texts that are missing
            cache: Result cache consulted before running the pipeline (ignored when CACHE_ENABLED is off)
            lambda_source: Per-tenant MMR lambda configuration
            vector_scorer: Dense scorer
            keyword_scorer: Keyword scorer
            rank_fuser: RRF fuser
            deduplicator: Near-duplicate filter
            reranker: MMR reranker
            compressor: Token-budget compressor
            enable_deduplication: Run the deduplication stage
            enable_mmr: Run the MMR stage
            enable_compression: Run the compression stage
            candidate_multiplier: Each branch keeps top_k * multiplier candidates
        """
        self.embedding_service = embedding_service
        self.candidate_source = candidate_source
        self.chunk_store = chunk_store
        self.cache = cache if settings.CACHE_ENABLED else None
        self.vector_scorer = vector_scorer or VectorScorer()
        self.keyword_scorer = keyword_scorer or KeywordScorer()
        self.rank_fuser = rank_fuser or RankFuser()
        self.deduplicator = deduplicator or Deduplicator(embedding_service)
        self.reranker = reranker or DiversityReranker(lambda_source=lambda_source)
        self.compressor = compressor or ContextCompressor(embedding_service, enabled=enable_compression)
        self.enable_deduplication = (
            enable_deduplication if enable_deduplication is not None else settings.DEDUP_ENABLED
        )
        self.enable_mmr = enable_mmr if enable_mmr is not None else settings.MMR_ENABLED
        self.candidate_multiplier = candidate_multiplier or settings.CANDIDATE_MULTIPLIER

    async def retrieve(
        self,
        query: str,
        scope: Optional[SearchScope] = None,
        top_k: int = None,
        min_similarity: float = None,
        lambda_: Optional[float] = None,
        target_token_count: int = None,
        user_id: Optional[str] = None,
        tenant_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[RankedPassage]:
        """
        Turn a query into ranked, deduplicated, token-budgeted passages.

        Args:
            query: Free-text query
            scope: Corpus scope filter
            top_k: Number of passages to return
            min_similarity: Vector similarity cut-off
            lambda_: MMR lambda; None defers to tenant config, then settings
            target_token_count: Token budget for the returned passages
            user_id: Caller identity (defaults to scope.user_id), used for caching
            tenant_id: Tenant for lambda lookup (defaults to scope.tenant_id)
            cancel_event: Cancellation signal checked between stages

        Returns:
            Ranked passages; empty when nothing relevant was found
        """
        top_k = top_k if top_k is not None else settings.RETRIEVAL_TOP_K
        min_similarity = min_similarity if min_similarity is not None else settings.MIN_SIMILARITY
        target_token_count = (
            target_token_count if target_token_count is not None else settings.TARGET_TOKEN_COUNT
        )
        self._validate(query, top_k, min_similarity, lambda_, target_token_count)

        scope = scope or SearchScope()
        user_id = user_id or scope.user_id
        tenant_id = tenant_id or scope.tenant_id

        cache_key = None
        if self.cache is not None:
            cache_key = build_cache_key(user_id, query, scope.document_ids, extra={
                "top_k": top_k,
                "min_similarity": min_similarity,
                "lambda": lambda_,
                "target_token_count": target_token_count,
                "tenant_id": tenant_id,
                "category": scope.category,
            })
            cached = await self.cache.get(cache_key)
            if cached is not None:
                logger.info(f"Returning {len(cached)} cached passages for '{query[:50]}'")
                return [p.model_copy(deep=True) for p in cached]

        logger.info(f"Retrieve: '{query[:80]}' (top_k={top_k}, min_similarity={min_similarity})")

        fused, candidates_by_id, query_vector = await self._search(
            query, scope, top_k * self.candidate_multiplier, min_similarity, cancel_event
        )
        if not fused:
            logger.info("No relevant candidates found")
            return []

        passages = [self._to_passage(result, candidates_by_id[result.id]) for result in fused]

        if self.enable_deduplication:
            raise_if_cancelled(cancel_event, "deduplication")
            passages = await self.deduplicator.deduplicate(passages, cancel_event=cancel_event)

        raise_if_cancelled(cancel_event, "diversity reranking")
        if self.enable_mmr and query_vector:
            passages = await self._diversify(passages, candidates_by_id, query_vector, top_k, lambda_, tenant_id)
        else:
            passages = passages[:top_k]

        raise_if_cancelled(cancel_event, "compression")
        # An empty query vector keeps leading sentences instead of re-embedding
        passages = await self.compressor.compress(
            query,
            passages,
            target_token_count=target_token_count,
            query_embedding=query_vector or [],
            cancel_event=cancel_event
        )
        passages = [p.model_copy(update={"embedding": None}) for p in passages]

        logger.info(
            f"Returned {len(passages)} passages "
            f"({sum(p.token_count for p in passages)} tokens, vector branch={'on' if query_vector else 'off'})"
        )

        if self.cache is not None:
            await self.cache.set(
                cache_key,
                [p.model_copy(deep=True) for p in passages],
                document_ids={p.document_id for p in passages}
            )

        return passages

    async def hybrid_search(
        self,
        query: str,
        scope: Optional[SearchScope] = None,
        top_k: int = None,
        min_similarity: float = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[ScoredResult]:
        """
        Run only the scoring and fusion stages.

        Args:
            query: Free-text query
            scope: Corpus scope filter
            top_k: Number of fused results
            min_similarity: Vector similarity cut-off
            cancel_event: Cancellation signal

        Returns:
            Fused results sorted by RRF score
        """
        top_k = top_k if top_k is not None else settings.RETRIEVAL_TOP_K
        min_similarity = min_similarity if min_similarity is not None else settings.MIN_SIMILARITY
        self._validate(query, top_k, min_similarity, None, 1)

        fused, _, _ = await self._search(query, scope or SearchScope(), top_k, min_similarity, cancel_event)
        return fused

    async def _search(
        self,
        query: str,
        scope: SearchScope,
        pool_size: int,
        min_similarity: float,
        cancel_event: Optional[asyncio.Event]
    ) -> Tuple[List[ScoredResult], Dict[str, CandidateVector], Optional[List[float]]]:
        """
        Score the candidate snapshot on both branches concurrently and fuse.

        Returns:
            (fused results, candidates by id, query vector or None)
        """
        candidates = await self.candidate_source.list_candidates(scope)
        raise_if_cancelled(cancel_event, "candidate loading")

        if not candidates:
            return [], {}, None

        candidates = await self._hydrate_texts(candidates)
        candidates_by_id = {c.id: c for c in candidates}

        query_vector = await self._embed_query(query)
        raise_if_cancelled(cancel_event, "query embedding")

        keyword_task = asyncio.to_thread(
            self.keyword_scorer.score, query, candidates, pool_size, cancel_event
        )

        if query_vector:
            vector_task = asyncio.to_thread(
                self.vector_scorer.score, query_vector, candidates, min_similarity, pool_size, cancel_event
            )
            vector_results, keyword_results = await asyncio.gather(vector_task, keyword_task)
        else:
            vector_results, keyword_results = [], await keyword_task

        logger.debug(
            f"Candidates: {len(candidates)}, dense: {len(vector_results)}, keyword: {len(keyword_results)}"
        )

        raise_if_cancelled(cancel_event, "rank fusion")
        fused = self.rank_fuser.fuse(vector_results, keyword_results, top_k=pool_size)
        return fused, candidates_by_id, query_vector

    async def _embed_query(self, query: str) -> Optional[List[float]]:
        """Embed the query; any failure disables the vector branch."""
        if self.embedding_service is None:
            return None
        try:
            vector = await self.embedding_service.embed(query)
        except Exception as e:
            logger.warning(f"Query embedding unavailable, falling back to keyword-only search: {e}")
            return None
        if not vector:
            logger.warning("Query embedding was empty, falling back to keyword-only search")
            return None
        return list(vector)

    async def _hydrate_texts(self, candidates: List[CandidateVector]) -> List[CandidateVector]:
        """Fill in missing candidate texts from the chunk store."""
        missing_docs = {c.document_id for c in candidates if c.text is None and c.document_id is not None}
        if not missing_docs or self.chunk_store is None:
            return candidates

        texts: Dict[Tuple[str, int], str] = {}
        for document_id in missing_docs:
            try:
                for chunk in await self.chunk_store.read(document_id):
                    texts[(chunk.document_id, chunk.chunk_index)] = chunk.text
            except Exception as e:
                logger.error(f"Could not read chunks for document {document_id}: {e}")

        hydrated = []
        for candidate in candidates:
            key = (candidate.document_id, candidate.chunk_index)
            if candidate.text is None and key in texts:
                candidate = candidate.model_copy(update={"text": texts[key]})
            hydrated.append(candidate)
        return hydrated

    async def _diversify(
        self,
        passages: List[RankedPassage],
        candidates_by_id: Dict[str, CandidateVector],
        query_vector: List[float],
        top_k: int,
        explicit_lambda: Optional[float],
        tenant_id: Optional[str]
    ) -> List[RankedPassage]:
        """Reorder passages with MMR and cut to top_k."""
        effective_lambda = await self.reranker.resolve_lambda(explicit_lambda, tenant_id)

        by_id = {p.chunk_id: p for p in passages}
        mmr_candidates = [
            CandidateVector(
                id=p.chunk_id,
                vector=candidates_by_id[p.chunk_id].vector,
                initial_score=p.relevance_score,
                metadata=p.metadata
            )
            for p in passages
        ]

        picks = self.reranker.rerank(query_vector, mmr_candidates, top_k, effective_lambda)
        return [by_id[pick.id] for pick in picks]

    @staticmethod
    def _to_passage(result: ScoredResult, candidate: CandidateVector) -> RankedPassage:
        return RankedPassage(
            document_id=candidate.document_id or candidate.id,
            chunk_index=candidate.chunk_index,
            chunk_id=candidate.id,
            text=candidate.text or "",
            relevance_score=result.combined_score,
            embedding=candidate.vector or None,
            metadata=dict(candidate.metadata)
        )

    @staticmethod
    def _validate(
        query: str,
        top_k: int,
        min_similarity: float,
        lambda_: Optional[float],
        target_token_count: int
    ) -> None:
        if not query or not query.strip():
            raise InvalidParameterError("Query must not be empty")
        if top_k is None or top_k <= 0:
            raise InvalidParameterError(f"top_k must be positive, got {top_k}")
        if not 0.0 <= min_similarity <= 1.0:
            raise InvalidParameterError(f"min_similarity must be in [0, 1], got {min_similarity}")
        if lambda_ is not None and not 0.0 <= lambda_ <= 1.0:
            raise InvalidParameterError(f"lambda must be in [0, 1], got {lambda_}")
        if target_token_count <= 0:
            raise InvalidParameterError(f"target_token_count must be positive, got {target_token_count}")
