"""
Context Compressor

Fits relevance-ordered passages into a token budget.

Strategy:
1. Accept passages in order while they fit
2. The first passage that overflows is compressed into the remaining
   space by keeping its sentences most similar to the query, then
   selection stops
3. With too little space left (<= 50 tokens) the passage is skipped

Without a query embedding the budget still holds: the overflowing passage
keeps its leading sentences instead of the most relevant ones. If anything
fails, the original passages are returned unmodified.

Usage:
    compressor = ContextCompressor(embedding_service)
    context = await compressor.compress(query, passages, target_token_count=2000)
"""

import asyncio
import re
import logging
from typing import List, Optional, Sequence

from ragcore.chunking.text_chunker import CHARS_PER_TOKEN, estimate_token_count
from ragcore.config import settings
from ragcore.exceptions import InvalidParameterError, RetrievalCancelledError
from ragcore.models import CompressedPassage, RankedPassage
from ragcore.retrieval.cancellation import raise_if_cancelled
from ragcore.retrieval.ports import EmbeddingPort
from ragcore.retrieval.similarity import batch_cosine_similarity

logger = logging.getLogger(__name__)

SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def split_into_sentences(text: str) -> List[str]:
    """Split text after sentence terminators, keeping the punctuation."""
    if not text or not text.strip():
        return []
    return [s.strip() for s in SENTENCE_SPLIT.split(text) if s.strip()]


class ContextCompressor:
    """Greedy token-budget selection with extractive compression."""

    def __init__(
        self,
        embedding_service: Optional[EmbeddingPort] = None,
        enabled: bool = None,
        min_remaining_tokens: int = None,
        tokens_per_sentence: int = None,
        max_concurrency: int = None
    ):
        """
        Initialize context compressor.

        Args:
            embedding_service: Embeds the query and sentences
            enabled: Disable to pass passages through untouched
            min_remaining_tokens: Compress only when more tokens than this remain
            tokens_per_sentence: Estimated tokens per extracted sentence
            max_concurrency: Maximum concurrent sentence embedding calls
        """
        self.embedding_service = embedding_service
        self.enabled = enabled if enabled is not None else settings.COMPRESSION_ENABLED
        self.min_remaining_tokens = (
            min_remaining_tokens if min_remaining_tokens is not None
            else settings.COMPRESSION_MIN_REMAINING_TOKENS
        )
        self.tokens_per_sentence = tokens_per_sentence or settings.TOKENS_PER_SENTENCE
        self.max_concurrency = max_concurrency or settings.COMPRESSION_MAX_CONCURRENCY

    async def compress(
        self,
        query: str,
        passages: List[RankedPassage],
        target_token_count: int = None,
        query_embedding: Optional[Sequence[float]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> List[RankedPassage]:
        """
        Select and compress passages to fit the token budget.

        Args:
            query: Query used to rank sentences
            passages: Passages in relevance order
            target_token_count: Token budget
            query_embedding: Precomputed query vector (embedded if absent)
            cancel_event: Checked before compression starts

        Returns:
            Passages whose token sum fits the budget, with compression_ratio
            set on the one that was shortened
        """
        target = target_token_count if target_token_count is not None else settings.TARGET_TOKEN_COUNT
        if target <= 0:
            raise InvalidParameterError(f"target_token_count must be positive, got {target}")

        if not self.enabled or not passages:
            return self._unmodified(passages)

        raise_if_cancelled(cancel_event, "compression")

        try:
            if query_embedding is None:
                query_embedding = await self._embed(query)
            if not query_embedding:
                logger.warning("No query embedding available, compressing by sentence order")
                query_embedding = []

            logger.debug(f"Compressing {len(passages)} passages to target {target} tokens")

            selected: List[RankedPassage] = []
            current_tokens = 0

            for passage in passages:
                passage_tokens = estimate_token_count(passage.text)

                if current_tokens + passage_tokens <= target:
                    selected.append(passage.model_copy(update={
                        "compression_ratio": 1.0,
                        "token_count": passage_tokens
                    }))
                    current_tokens += passage_tokens
                    continue

                remaining = target - current_tokens
                if remaining > self.min_remaining_tokens:
                    compressed = await self.compress_text(query, passage.text, remaining, query_embedding)
                    compressed_tokens = estimate_token_count(compressed)

                    if 0 < compressed_tokens <= remaining:
                        selected.append(passage.model_copy(update={
                            "text": compressed,
                            "compression_ratio": compressed_tokens / passage_tokens,
                            "token_count": compressed_tokens
                        }))
                        current_tokens += compressed_tokens
                break

            original_tokens = sum(estimate_token_count(p.text) for p in passages)
            logger.info(
                f"Compressed {len(passages)} passages ({original_tokens} tokens) "
                f"to {len(selected)} passages ({current_tokens} tokens)"
            )
            return selected

        except RetrievalCancelledError:
            raise
        except Exception as e:
            logger.error(f"Error compressing passages, returning originals: {e}")
            return self._unmodified(passages)

    async def compress_chunks(
        self,
        query: str,
        chunks: List[str],
        target_token_count: int = None
    ) -> List[CompressedPassage]:
        """
        Compress plain text chunks given in relevance order.

        Args:
            query: Query used to rank sentences
            chunks: Chunk texts, most relevant first
            target_token_count: Token budget

        Returns:
            CompressedPassage records pointing back at their input index
        """
        passages = [
            RankedPassage(document_id="", chunk_index=i, text=text, relevance_score=1.0)
            for i, text in enumerate(chunks)
        ]
        compressed = await self.compress(query, passages, target_token_count)
        return [
            CompressedPassage(
                content=p.text,
                original_index=p.chunk_index,
                compression_ratio=p.compression_ratio,
                relevance_score=p.relevance_score,
                token_count=p.token_count
            )
            for p in compressed
        ]

    async def compress_text(
        self,
        query: str,
        text: str,
        max_tokens: int,
        query_embedding: Optional[Sequence[float]] = None
    ) -> str:
        """
        Shrink text to at most max_tokens by extracting relevant sentences.

        Args:
            query: Query used to rank sentences
            text: Text to compress
            max_tokens: Token allowance
            query_embedding: Precomputed query vector

        Returns:
            Extracted sentences, hard-truncated if still too long
        """
        if estimate_token_count(text) <= max_tokens:
            return text

        target_sentences = max(1, max_tokens // self.tokens_per_sentence)
        sentences = await self.extract_relevant_sentences(query, text, target_sentences, query_embedding)
        compressed = " ".join(sentences)

        if estimate_token_count(compressed) > max_tokens:
            compressed = compressed[:max_tokens * CHARS_PER_TOKEN].rstrip()

        return compressed

    async def extract_relevant_sentences(
        self,
        query: str,
        text: str,
        max_sentences: int,
        query_embedding: Optional[Sequence[float]] = None
    ) -> List[str]:
        """
        Pick the sentences most similar to the query.

        Args:
            query: Query text
            text: Text to split into sentences
            max_sentences: Number of sentences to keep
            query_embedding: Precomputed query vector

        Returns:
            Selected sentences in their original order; the first
            max_sentences sentences when embeddings are unavailable
        """
        sentences = split_into_sentences(text)
        if len(sentences) <= max_sentences:
            return sentences

        try:
            if query_embedding is None:
                query_embedding = await self._embed(query)
            if not query_embedding:
                return sentences[:max_sentences]

            logger.debug(f"Extracting {max_sentences} most relevant sentences from {len(sentences)} sentences")

            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def embed_sentence(sentence: str) -> Optional[List[float]]:
                async with semaphore:
                    return await self._embed(sentence)

            sentence_embeddings = await asyncio.gather(*(embed_sentence(s) for s in sentences))
            embedded = [i for i, e in enumerate(sentence_embeddings) if e]
            scores = [0.0] * len(sentences)
            for i, score in zip(embedded, batch_cosine_similarity(
                query_embedding, [sentence_embeddings[i] for i in embedded]
            )):
                scores[i] = score

            ranked = sorted(range(len(sentences)), key=lambda i: scores[i], reverse=True)
            keep = sorted(ranked[:max_sentences])
            return [sentences[i] for i in keep]

        except Exception as e:
            logger.error(f"Error extracting relevant sentences: {e}")
            return sentences[:max_sentences]

    async def _embed(self, text: str) -> Optional[List[float]]:
        if self.embedding_service is None:
            return None
        try:
            return await self.embedding_service.embed(text)
        except Exception as e:
            logger.warning(f"Embedding unavailable during compression: {e}")
            return None

    @staticmethod
    def _unmodified(passages: List[RankedPassage]) -> List[RankedPassage]:
        return [
            p.model_copy(update={"compression_ratio": 1.0, "token_count": estimate_token_count(p.text)})
            for p in passages
        ]
