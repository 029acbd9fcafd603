"""
Embedding Service

Implements the embedding port on OpenAI's embedding models.
Handles batching, caching, and retry; the retrieval core itself never
retries, it only sees a vector or an EmbeddingUnavailableError.

Supported models:
- text-embedding-3-small (1536 dims, recommended)
- text-embedding-3-large (3072 dims, higher quality)
- text-embedding-ada-002 (1536 dims, legacy)

Usage:
    service = OpenAIEmbeddingService()
    vector = await service.embed("Quarterly revenue grew 12%")
"""

import logging
from typing import List, Optional, Dict, Any
import hashlib
from tenacity import retry, stop_after_attempt, wait_exponential

from openai import AsyncOpenAI

from ragcore.chunking.text_chunker import estimate_token_count
from ragcore.config import settings
from ragcore.exceptions import EmbeddingUnavailableError, InvalidParameterError

logger = logging.getLogger(__name__)


class OpenAIEmbeddingService:
    """
    Embedding port backed by the OpenAI API.

    Features:
    - Async batch processing
    - Automatic retry with exponential backoff
    - In-process cache keyed by model and text
    """

    # Model specifications
    MODEL_SPECS = {
        "text-embedding-3-small": {"dims": 1536, "max_tokens": 8191, "cost_per_1k": 0.00002},
        "text-embedding-3-large": {"dims": 3072, "max_tokens": 8191, "cost_per_1k": 0.00013},
        "text-embedding-ada-002": {"dims": 1536, "max_tokens": 8191, "cost_per_1k": 0.0001}
    }

    def __init__(
        self,
        model: str = None,
        api_key: str = None,
        cache_enabled: bool = True,
        batch_size: int = None
    ):
        """
        Initialize embedding service.

        Args:
            model: OpenAI embedding model name
            api_key: OpenAI API key (uses settings if not provided)
            cache_enabled: Enable embedding cache
            batch_size: Texts per API call
        """
        self.model = model or settings.EMBEDDING_MODEL
        if self.model not in self.MODEL_SPECS:
            raise InvalidParameterError(f"Unknown model: {self.model}")

        self.client = AsyncOpenAI(api_key=api_key or settings.OPENAI_API_KEY)
        self.cache_enabled = cache_enabled
        self.batch_size = batch_size or settings.EMBEDDING_BATCH_SIZE
        self._cache: Dict[str, List[float]] = {}
        self.dimension = self.MODEL_SPECS[self.model]["dims"]

    async def embed(self, text: str) -> Optional[List[float]]:
        """
        Generate embedding for a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector, None for blank text

        Raises:
            EmbeddingUnavailableError: When the API keeps failing
        """
        if not text or not text.strip():
            return None
        embeddings = await self.embed_texts([text])
        return embeddings[0]

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors in input order

        Raises:
            EmbeddingUnavailableError: When a batch keeps failing
        """
        if not texts:
            return []

        embeddings: List[Optional[List[float]]] = [None] * len(texts)
        texts_to_embed = []
        indices_to_embed = []

        for i, text in enumerate(texts):
            cached = self._check_cache(text)
            if cached is not None:
                embeddings[i] = cached
            else:
                texts_to_embed.append(text)
                indices_to_embed.append(i)

        if texts_to_embed:
            logger.info(f"Embedding {len(texts_to_embed)} texts (cache hit: {len(texts) - len(texts_to_embed)})")

            for i in range(0, len(texts_to_embed), self.batch_size):
                batch = texts_to_embed[i:i + self.batch_size]
                batch_indices = indices_to_embed[i:i + self.batch_size]

                try:
                    batch_embeddings = await self._embed_batch(batch)
                except Exception as e:
                    raise EmbeddingUnavailableError(f"Embedding request failed: {e}") from e

                for j, (text, embedding) in enumerate(zip(batch, batch_embeddings)):
                    self._add_to_cache(text, embedding)
                    embeddings[batch_indices[j]] = embedding

        return embeddings

    @retry(stop=stop_after_attempt(3), wait=wait_exponential(multiplier=1, min=2, max=10), reraise=True)
    async def _embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embed a batch of texts via API.

        Args:
            texts: Batch of texts (max batch_size)

        Returns:
            List of embeddings
        """
        try:
            response = await self.client.embeddings.create(
                model=self.model,
                input=texts,
                encoding_format="float"
            )
            return [item.embedding for item in response.data]

        except Exception as e:
            logger.error(f"Error embedding batch: {e}")
            raise

    def _get_cache_key(self, text: str) -> str:
        """Generate cache key for a text."""
        return hashlib.md5(f"{self.model}:{text}".encode()).hexdigest()

    def _check_cache(self, text: str) -> Optional[List[float]]:
        if not self.cache_enabled:
            return None
        return self._cache.get(self._get_cache_key(text))

    def _add_to_cache(self, text: str, embedding: List[float]) -> None:
        if self.cache_enabled:
            self._cache[self._get_cache_key(text)] = embedding

    def estimate_cost(self, texts: List[str]) -> Dict[str, Any]:
        """
        Estimate cost for embedding texts.

        Args:
            texts: Texts to estimate

        Returns:
            Cost estimation details
        """
        estimated_tokens = sum(estimate_token_count(t) for t in texts)
        cost_per_1k = self.MODEL_SPECS[self.model]["cost_per_1k"]

        return {
            "num_texts": len(texts),
            "estimated_tokens": estimated_tokens,
            "estimated_cost_usd": (estimated_tokens / 1000) * cost_per_1k,
            "model": self.model
        }

    def clear_cache(self) -> int:
        """
        Clear the embedding cache.

        Returns:
            Number of entries cleared
        """
        count = len(self._cache)
        self._cache.clear()
        return count
