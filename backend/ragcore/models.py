"""
Pydantic Data Models

Defines the data structures flowing through the retrieval pipeline:
- Chunks produced at ingestion time
- Transient scoring units (candidates, fused results, MMR picks)
- Ranked passages returned to the answer-synthesis layer
- Scope filters and per-tenant configuration
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any


# ============================================================================
# Ingestion Models
# ============================================================================

class Chunk(BaseModel):
    """A passage of a document, created once at ingestion and read-only afterwards."""
    document_id: str = Field(..., description="Parent document ID")
    chunk_index: int = Field(..., description="Position in document")
    text: str = Field(..., description="Chunk text content")
    start_offset: int = Field(..., description="Start position in the source text")
    end_offset: int = Field(..., description="End position in the source text")
    token_estimate: int = Field(..., description="Estimated token count (4 chars per token)")
    embedding: Optional[List[float]] = Field(None, description="Vector embedding")

    model_config = {"frozen": True}

    @property
    def chunk_id(self) -> str:
        return f"{self.document_id}:{self.chunk_index}"


# ============================================================================
# Scoring Models
# ============================================================================

class CandidateVector(BaseModel):
    """A transient scoring unit. Metadata is provenance only, never scored."""
    id: str = Field(..., description="Unique candidate identifier")
    vector: List[float] = Field(default_factory=list, description="Candidate embedding")
    initial_score: float = Field(0.0, description="Score carried in from a previous stage")
    text: Optional[str] = Field(None, description="Candidate text (hydrated from the chunk store if absent)")
    metadata: Dict[str, Any] = Field(
        default_factory=dict,
        description="Provenance: document_id, chunk_index, filename, category"
    )

    @property
    def document_id(self) -> Optional[str]:
        value = self.metadata.get("document_id")
        return str(value) if value is not None else None

    @property
    def chunk_index(self) -> Optional[int]:
        return self.metadata.get("chunk_index")


class ScoredResult(BaseModel):
    """A fused result. Ranks are 1-based and absent when the id missed that list."""
    id: str = Field(..., description="Candidate identifier")
    vector_score: float = Field(0.0, description="Cosine similarity to the query")
    keyword_score: float = Field(0.0, description="Fraction of query terms matched")
    combined_score: float = Field(0.0, description="Reciprocal Rank Fusion score")
    vector_rank: Optional[int] = Field(None, description="Position in the vector ranking")
    text_rank: Optional[int] = Field(None, description="Position in the keyword ranking")


class MMRResult(BaseModel):
    """A candidate selected by Maximal Marginal Relevance."""
    id: str = Field(..., description="Candidate identifier")
    vector: List[float] = Field(default_factory=list, description="Candidate embedding")
    initial_score: float = Field(..., description="Incoming relevance score")
    mmr_score: float = Field(..., description="Score at the moment of selection")
    rank: int = Field(..., description="1-based selection order")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Candidate provenance")


# ============================================================================
# Output Models
# ============================================================================

class RankedPassage(BaseModel):
    """Final output unit handed to answer synthesis."""
    document_id: str = Field(..., description="Source document ID")
    chunk_index: Optional[int] = Field(None, description="Chunk position in the source document")
    chunk_id: Optional[str] = Field(None, description="Candidate identifier")
    text: str = Field(..., description="Passage text, possibly compressed")
    relevance_score: float = Field(..., description="Fused relevance score")
    compression_ratio: float = Field(1.0, description="compressed tokens / original tokens")
    token_count: int = Field(0, description="Estimated tokens in text")
    embedding: Optional[List[float]] = Field(None, description="Passage embedding, used for deduplication", exclude=True)
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Candidate provenance")


class CompressedPassage(BaseModel):
    """A passage after context compression."""
    content: str = Field(..., description="Possibly shortened passage text")
    original_index: int = Field(..., description="Position in the compressor input")
    compression_ratio: float = Field(1.0, description="compressed tokens / original tokens")
    relevance_score: float = Field(1.0, description="Relevance carried from the input")
    token_count: int = Field(0, description="Estimated tokens in content")


# ============================================================================
# Scope and Configuration Models
# ============================================================================

class SearchScope(BaseModel):
    """Corpus scope for a retrieval call. Unset fields do not filter."""
    user_id: Optional[str] = Field(None, description="Owner of the documents")
    tenant_id: Optional[str] = Field(None, description="Tenant the documents belong to")
    category: Optional[str] = Field(None, description="Document category")
    document_ids: Optional[List[str]] = Field(None, description="Restrict to these documents")

    def matches(self, metadata: Dict[str, Any]) -> bool:
        """Check whether candidate metadata falls inside this scope."""
        if self.user_id is not None and metadata.get("user_id") != self.user_id:
            return False
        if self.tenant_id is not None and str(metadata.get("tenant_id")) != self.tenant_id:
            return False
        if self.category is not None and metadata.get("category") != self.category:
            return False
        if self.document_ids is not None and str(metadata.get("document_id")) not in self.document_ids:
            return False
        return True


class TenantRetrievalConfig(BaseModel):
    """Per-tenant stored retrieval configuration."""
    tenant_id: str = Field(..., description="Tenant identifier")
    mmr_lambda: Optional[float] = Field(None, description="Stored MMR lambda for this tenant")
