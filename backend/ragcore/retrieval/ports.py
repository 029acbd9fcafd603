"""
Collaborator Ports

Interfaces the retrieval core consumes, plus in-memory implementations
used by tests and by single-process deployments.

- EmbeddingPort: text -> vector (may fail; retry is the adapter's job)
- CandidateSource: read-only candidate snapshot for a scope
- ChunkStore: chunk read path (writes belong to ingestion)
- LambdaConfigSource: per-tenant stored MMR lambda
- ResultCache: get/set of ranked results with a TTL
"""

import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Protocol, runtime_checkable

from ragcore.models import CandidateVector, Chunk, SearchScope, TenantRetrievalConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class EmbeddingPort(Protocol):
    async def embed(self, text: str) -> Optional[List[float]]:
        ...


@runtime_checkable
class CandidateSource(Protocol):
    async def list_candidates(self, scope: Optional[SearchScope] = None) -> List[CandidateVector]:
        ...


@runtime_checkable
class ChunkStore(Protocol):
    async def read(self, document_id: str) -> List[Chunk]:
        ...


@runtime_checkable
class LambdaConfigSource(Protocol):
    async def get_mmr_lambda(self, tenant_id: str) -> Optional[float]:
        ...


@runtime_checkable
class ResultCache(Protocol):
    async def get(self, key: str) -> Optional[Any]:
        ...

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        document_ids: Optional[Iterable[str]] = None
    ) -> None:
        ...


class InMemoryCandidateSource:
    """Candidate snapshot held in memory, filtered by scope before scoring."""

    def __init__(self, candidates: Optional[List[CandidateVector]] = None):
        self._candidates: List[CandidateVector] = list(candidates or [])

    def add(self, candidate: CandidateVector) -> None:
        self._candidates.append(candidate)

    @classmethod
    def from_chunks(cls, chunks: List[Chunk], metadata: Optional[Dict[str, Any]] = None) -> "InMemoryCandidateSource":
        """
        Build candidates from embedded chunks.

        Args:
            chunks: Chunks (usually with embeddings)
            metadata: Extra provenance merged into every candidate

        Returns:
            Candidate source over those chunks
        """
        candidates = []
        for chunk in chunks:
            meta = dict(metadata or {})
            meta.update({"document_id": chunk.document_id, "chunk_index": chunk.chunk_index})
            candidates.append(CandidateVector(
                id=chunk.chunk_id,
                vector=list(chunk.embedding or []),
                text=chunk.text,
                metadata=meta
            ))
        return cls(candidates)

    async def list_candidates(self, scope: Optional[SearchScope] = None) -> List[CandidateVector]:
        if scope is None:
            return list(self._candidates)
        return [c for c in self._candidates if scope.matches(c.metadata)]


class InMemoryChunkStore:
    """Chunks keyed by document, in chunk_index order."""

    def __init__(self):
        self._chunks: Dict[str, List[Chunk]] = defaultdict(list)

    def add_chunks(self, chunks: List[Chunk]) -> None:
        for chunk in chunks:
            self._chunks[chunk.document_id].append(chunk)
            self._chunks[chunk.document_id].sort(key=lambda c: c.chunk_index)

    def delete_document(self, document_id: str) -> int:
        """Remove all chunks of a document; returns the number removed."""
        removed = self._chunks.pop(document_id, [])
        if removed:
            logger.info(f"Deleted {len(removed)} chunks for document {document_id}")
        return len(removed)

    async def read(self, document_id: str) -> List[Chunk]:
        return list(self._chunks.get(document_id, []))


class StaticLambdaConfigSource:
    """Per-tenant retrieval configuration held in memory."""

    def __init__(self, configs: Optional[List[TenantRetrievalConfig]] = None):
        self._configs: Dict[str, TenantRetrievalConfig] = {c.tenant_id: c for c in configs or []}

    def upsert(self, config: TenantRetrievalConfig) -> None:
        self._configs[config.tenant_id] = config

    async def get_mmr_lambda(self, tenant_id: str) -> Optional[float]:
        config = self._configs.get(tenant_id)
        return config.mmr_lambda if config else None
