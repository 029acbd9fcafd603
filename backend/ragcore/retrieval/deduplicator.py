"""
Semantic Deduplicator

Removes near-duplicate passages by pairwise cosine similarity.

- Passages keep their original order; the first of a duplicate group wins
- Passages that cannot be embedded are kept (never silently dropped)
- Missing embeddings are fetched concurrently, bounded by a semaphore

Comparison is O(n²) in the number of unique passages, which is fine for
a top-k candidate pool.

Usage:
    dedup = Deduplicator(embedding_service, similarity_threshold=0.85)
    unique = await dedup.deduplicate(passages)
"""

import asyncio
import logging
from typing import List, Optional

from ragcore.config import settings
from ragcore.exceptions import InvalidParameterError
from ragcore.models import RankedPassage
from ragcore.retrieval.cancellation import raise_if_cancelled
from ragcore.retrieval.ports import EmbeddingPort
from ragcore.retrieval.similarity import cosine_similarity

logger = logging.getLogger(__name__)


class Deduplicator:
    """Embedding-based near-duplicate filter."""

    def __init__(
        self,
        embedding_service: Optional[EmbeddingPort] = None,
        similarity_threshold: float = None,
        max_concurrency: int = None
    ):
        """
        Initialize deduplicator.

        Args:
            embedding_service: Used for passages without an embedding
            similarity_threshold: Similarity at or above which passages are duplicates
            max_concurrency: Maximum concurrent embedding calls
        """
        self.embedding_service = embedding_service
        self.similarity_threshold = (
            similarity_threshold if similarity_threshold is not None else settings.DEDUP_THRESHOLD
        )
        self.max_concurrency = max_concurrency or settings.DEDUP_MAX_CONCURRENCY

    async def deduplicate(
        self,
        passages: List[RankedPassage],
        similarity_threshold: float = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[RankedPassage]:
        """
        Drop passages too similar to an earlier unique passage.

        Args:
            passages: Passages in priority order
            similarity_threshold: Override for the duplicate threshold
            cancel_event: Checked before embedding and before comparison

        Returns:
            Unique passages in input order, with embeddings attached
            where one was available
        """
        threshold = similarity_threshold if similarity_threshold is not None else self.similarity_threshold
        if not 0.0 <= threshold <= 1.0:
            raise InvalidParameterError(f"similarity_threshold must be in [0, 1], got {threshold}")

        if len(passages) <= 1:
            return list(passages)

        logger.debug(f"Deduplicating {len(passages)} passages with threshold {threshold:.2f}")

        raise_if_cancelled(cancel_event, "deduplication")
        embeddings = await self._collect_embeddings(passages)
        raise_if_cancelled(cancel_event, "deduplication")

        unique: List[RankedPassage] = []
        unique_embeddings: List[List[float]] = []

        for passage, embedding in zip(passages, embeddings):
            if not embedding:
                unique.append(passage)
                continue

            is_duplicate = any(
                cosine_similarity(embedding, existing) >= threshold
                for existing in unique_embeddings
            )
            if is_duplicate:
                logger.debug(f"Dropping duplicate passage {passage.chunk_id or passage.document_id}")
                continue

            unique.append(passage if passage.embedding else passage.model_copy(update={"embedding": embedding}))
            unique_embeddings.append(embedding)

        logger.info(f"Deduplicated {len(passages)} passages to {len(unique)} unique passages")
        return unique

    async def deduplicate_texts(
        self,
        texts: List[str],
        similarity_threshold: float = None
    ) -> List[str]:
        """
        Deduplicate plain strings.

        Args:
            texts: Texts in priority order
            similarity_threshold: Override for the duplicate threshold

        Returns:
            Unique texts in input order
        """
        passages = [
            RankedPassage(document_id="", chunk_index=i, text=text, relevance_score=0.0)
            for i, text in enumerate(texts)
        ]
        unique = await self.deduplicate(passages, similarity_threshold)
        return [p.text for p in unique]

    async def _collect_embeddings(self, passages: List[RankedPassage]) -> List[Optional[List[float]]]:
        """
        Use stored embeddings and fetch the missing ones concurrently.

        Results are placed by passage position, so completion order does
        not matter.
        """
        embeddings: List[Optional[List[float]]] = [p.embedding or None for p in passages]
        missing = [i for i, e in enumerate(embeddings) if e is None]

        if not missing or self.embedding_service is None:
            return embeddings

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def embed_one(index: int) -> None:
            async with semaphore:
                try:
                    embeddings[index] = await self.embedding_service.embed(passages[index].text) or None
                except Exception as e:
                    logger.error(f"Embedding failed for passage {index}, keeping it as unique: {e}")
                    embeddings[index] = None

        await asyncio.gather(*(embed_one(i) for i in missing))
        return embeddings
