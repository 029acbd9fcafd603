"""
Retrieval Module

Hybrid retrieve-and-rerank pipeline:
- Cosine vector scoring and keyword overlap scoring
- Reciprocal Rank Fusion for combining the two rankings
- Semantic deduplication and MMR diversity reranking
- Context compression to a token budget
"""

from ragcore.retrieval.similarity import cosine_similarity, batch_cosine_similarity
from ragcore.retrieval.vector_scorer import VectorScorer
from ragcore.retrieval.keyword_scorer import KeywordScorer
from ragcore.retrieval.rank_fusion import RankFuser
from ragcore.retrieval.mmr import DiversityReranker
from ragcore.retrieval.deduplicator import Deduplicator
from ragcore.retrieval.compressor import ContextCompressor
from ragcore.retrieval.embeddings import OpenAIEmbeddingService
from ragcore.retrieval.orchestrator import RetrievalOrchestrator
from ragcore.retrieval.ports import (
    EmbeddingPort,
    CandidateSource,
    ChunkStore,
    LambdaConfigSource,
    ResultCache,
    InMemoryCandidateSource,
    InMemoryChunkStore,
    StaticLambdaConfigSource,
)

__all__ = [
    "cosine_similarity",
    "batch_cosine_similarity",
    "VectorScorer",
    "KeywordScorer",
    "RankFuser",
    "DiversityReranker",
    "Deduplicator",
    "ContextCompressor",
    "OpenAIEmbeddingService",
    "RetrievalOrchestrator",
    "EmbeddingPort",
    "CandidateSource",
    "ChunkStore",
    "LambdaConfigSource",
    "ResultCache",
    "InMemoryCandidateSource",
    "InMemoryChunkStore",
    "StaticLambdaConfigSource",
]
