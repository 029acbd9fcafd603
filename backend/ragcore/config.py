"""
Retrieval Configuration Module

Manages retrieval settings using Pydantic.
Every per-call argument overrides these values; these values override
the hard-coded defaults in the individual components.

Environment variables are loaded from .env file or system environment.
"""

from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache
from pathlib import Path


class Settings(BaseSettings):
    """
    Retrieval settings loaded from environment variables.

    API keys should be set via environment variables, never hardcoded.
    """

    # Chunking Configuration
    CHUNK_SIZE: int = Field(default=1000, description="Target chunk size in characters")
    CHUNK_OVERLAP: int = Field(default=200, description="Overlap between consecutive chunks")
    CHUNK_BOUNDARY_WINDOW: int = Field(
        default=100,
        description="How far back to search for a sentence or word boundary"
    )

    # Retrieval Configuration
    RETRIEVAL_TOP_K: int = Field(default=10, description="Number of passages to return")
    MIN_SIMILARITY: float = Field(default=0.5, description="Minimum cosine similarity for vector matches")
    CANDIDATE_MULTIPLIER: int = Field(
        default=2,
        description="Each branch keeps top_k * multiplier candidates for fusion"
    )
    RRF_K: int = Field(default=60, description="Reciprocal Rank Fusion constant")

    # Diversity (MMR) Configuration
    MMR_ENABLED: bool = Field(default=True, description="Enable MMR diversity reranking")
    MMR_LAMBDA: float = Field(
        default=0.5,
        description="Relevance vs diversity balance (1=pure relevance, 0=pure novelty)"
    )

    # Deduplication Configuration
    DEDUP_ENABLED: bool = Field(default=True, description="Enable semantic deduplication")
    DEDUP_THRESHOLD: float = Field(default=0.85, description="Cosine similarity treated as duplicate")
    DEDUP_MAX_CONCURRENCY: int = Field(
        default=4,
        description="Maximum concurrent embedding calls during deduplication"
    )

    # Context Compression Configuration
    COMPRESSION_ENABLED: bool = Field(default=True, description="Enable contextual compression")
    TARGET_TOKEN_COUNT: int = Field(default=2000, description="Token budget for the returned context")
    COMPRESSION_MIN_REMAINING_TOKENS: int = Field(
        default=50,
        description="Only compress the overflowing passage when more than this many tokens remain"
    )
    TOKENS_PER_SENTENCE: int = Field(
        default=50,
        description="Estimated tokens per sentence when picking how many sentences fit"
    )
    COMPRESSION_MAX_CONCURRENCY: int = Field(
        default=4,
        description="Maximum concurrent sentence embedding calls during compression"
    )

    # Embedding Configuration
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key for embeddings")
    EMBEDDING_MODEL: str = Field(default="text-embedding-3-small", description="OpenAI embedding model")
    EMBEDDING_BATCH_SIZE: int = Field(default=100, description="Texts per embedding API call")

    # Result Cache Configuration
    CACHE_ENABLED: bool = Field(default=True, description="Cache ranked passages per (user, query, docs)")
    CACHE_TTL_SECONDS: int = Field(default=900, description="Result cache time-to-live in seconds")
    CACHE_MAX_ENTRIES: int = Field(default=1000, description="Maximum cached results before LRU eviction")

    model_config = {
        "env_file": Path(__file__).parent.parent / ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore"
    }


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.

    Returns:
        Settings instance with all configuration values
    """
    return Settings()


# Global settings instance
settings = get_settings()


def validate_settings(config: Settings = None) -> dict:
    """
    Check that the chunking and scoring parameters are consistent.

    Args:
        config: Settings to check (defaults to the global instance)

    Returns:
        Dict with validation status for each parameter group
    """
    config = config or settings
    return {
        "chunking": 0 <= config.CHUNK_OVERLAP < config.CHUNK_SIZE,
        "similarity": 0.0 <= config.MIN_SIMILARITY <= 1.0,
        "deduplication": 0.0 <= config.DEDUP_THRESHOLD <= 1.0 and config.DEDUP_MAX_CONCURRENCY > 0,
        "mmr": 0.0 < config.MMR_LAMBDA <= 1.0,
        "fusion": config.RRF_K > 0 and config.CANDIDATE_MULTIPLIER >= 1,
        "compression": config.TARGET_TOKEN_COUNT > 0,
    }
