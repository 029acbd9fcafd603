"""
Tests for the end-to-end retrieval pipeline.

The corpus is embedded with the bag-of-words fake, so for the query
"revenue growth" the expected ranking can be worked out by hand:
fin:0 and its copy dup:0 match both terms, fin2:0 matches one, and
weather:0 matches nothing.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ragcore.cache.result_cache import InMemoryResultCache
from ragcore.chunking.text_chunker import estimate_token_count
from ragcore.exceptions import InvalidParameterError, RetrievalCancelledError
from ragcore.models import CandidateVector, Chunk, SearchScope, TenantRetrievalConfig
from ragcore.retrieval.orchestrator import RetrievalOrchestrator
from ragcore.retrieval.ports import InMemoryCandidateSource, InMemoryChunkStore, StaticLambdaConfigSource

from conftest import FakeEmbedder


CORPUS = [
    ("fin", "finance", "Revenue growth was driven by strong cash flow."),
    ("fin2", "finance", "Profit and revenue improved while debt fell."),
    ("weather", "weather", "Rain and sun alternated through the week."),
    ("dup", "finance", "Revenue growth was driven by strong cash flow."),
]


def build_chunks(embedder: FakeEmbedder):
    return [
        Chunk(
            document_id=doc_id,
            chunk_index=0,
            text=text,
            start_offset=0,
            end_offset=len(text),
            token_estimate=estimate_token_count(text),
            embedding=embedder.vector(text)
        )
        for doc_id, _, text in CORPUS
    ]


def build_source(embedder: FakeEmbedder, with_text: bool = True) -> InMemoryCandidateSource:
    source = InMemoryCandidateSource()
    for chunk, (_, category, _) in zip(build_chunks(embedder), CORPUS):
        source.add(CandidateVector(
            id=chunk.chunk_id,
            vector=chunk.embedding,
            text=chunk.text if with_text else None,
            metadata={
                "document_id": chunk.document_id,
                "chunk_index": chunk.chunk_index,
                "user_id": "u1",
                "category": category,
            }
        ))
    return source


class CountingCandidateSource(InMemoryCandidateSource):
    """Candidate source that counts snapshot requests."""

    def __init__(self, candidates):
        super().__init__(candidates)
        self.requests = 0

    async def list_candidates(self, scope=None):
        self.requests += 1
        return await super().list_candidates(scope)


class TestRetrievalOrchestrator:
    """Tests for the orchestrated pipeline."""

    @pytest.fixture
    def orchestrator(self, embedder):
        """Orchestrator with every stage enabled."""
        return RetrievalOrchestrator(
            embedder,
            build_source(embedder),
            enable_deduplication=True,
            enable_mmr=True
        )

    @pytest.mark.asyncio
    async def test_ranked_passages(self, orchestrator):
        """Test the full pipeline ranks, deduplicates and diversifies."""
        passages = await orchestrator.retrieve("revenue growth", top_k=5, min_similarity=0.3)

        assert [p.chunk_id for p in passages] == ["fin:0", "fin2:0"]
        assert passages[0].document_id == "fin"
        assert passages[0].chunk_index == 0
        assert passages[0].relevance_score == pytest.approx(2 / 61)
        assert passages[0].metadata["category"] == "finance"
        assert all(p.compression_ratio == 1.0 for p in passages)
        assert all(p.embedding is None for p in passages)

    @pytest.mark.asyncio
    async def test_keyword_only_fallback(self, failing_embedder, embedder):
        """Test an embedding outage still returns keyword matches."""
        orchestrator = RetrievalOrchestrator(
            failing_embedder, build_source(embedder), enable_deduplication=True, enable_mmr=True
        )

        passages = await orchestrator.retrieve("revenue growth", top_k=5, min_similarity=0.3)

        assert [p.chunk_id for p in passages] == ["fin:0", "fin2:0"]
        assert all(p.compression_ratio == 1.0 for p in passages)

    @pytest.mark.asyncio
    async def test_keyword_only_respects_token_budget(self, failing_embedder, embedder):
        """Test the token budget still holds when the vector branch is off."""
        orchestrator = RetrievalOrchestrator(failing_embedder, build_source(embedder))

        passages = await orchestrator.retrieve("revenue growth", top_k=5, target_token_count=15)

        assert [p.chunk_id for p in passages] == ["fin:0"]
        assert sum(p.token_count for p in passages) <= 15

    @pytest.mark.asyncio
    async def test_no_matches_returns_empty(self, orchestrator):
        """Test nothing relevant gives an empty list."""
        assert await orchestrator.retrieve("zebra", min_similarity=0.3) == []

    @pytest.mark.asyncio
    async def test_empty_corpus(self, embedder):
        """Test an empty candidate snapshot."""
        orchestrator = RetrievalOrchestrator(embedder, InMemoryCandidateSource())
        assert await orchestrator.retrieve("revenue growth") == []
        assert embedder.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"query": "   "},
        {"query": "revenue", "top_k": 0},
        {"query": "revenue", "min_similarity": 1.5},
        {"query": "revenue", "lambda_": -0.2},
        {"query": "revenue", "target_token_count": 0},
    ])
    async def test_invalid_parameters(self, embedder, kwargs):
        """Test bad parameters fail before any work is done."""
        source = MagicMock()
        source.list_candidates = AsyncMock(return_value=[])
        orchestrator = RetrievalOrchestrator(embedder, source)

        with pytest.raises(InvalidParameterError):
            await orchestrator.retrieve(**kwargs)

        source.list_candidates.assert_not_awaited()
        assert embedder.calls == []

    @pytest.mark.asyncio
    async def test_cancellation(self, orchestrator):
        """Test a set cancel event aborts the pipeline."""
        event = asyncio.Event()
        event.set()

        with pytest.raises(RetrievalCancelledError):
            await orchestrator.retrieve("revenue growth", cancel_event=event)

    @pytest.mark.asyncio
    async def test_scope_document_filter(self, orchestrator):
        """Test only scoped documents are considered."""
        passages = await orchestrator.retrieve(
            "revenue growth", scope=SearchScope(document_ids=["fin2"]), min_similarity=0.3
        )
        assert [p.chunk_id for p in passages] == ["fin2:0"]

    @pytest.mark.asyncio
    async def test_scope_category_filter(self, orchestrator):
        """Test category scoping."""
        passages = await orchestrator.retrieve("rain", scope=SearchScope(category="weather"))
        assert [p.document_id for p in passages] == ["weather"]

        assert await orchestrator.retrieve("rain", scope=SearchScope(user_id="someone_else")) == []

    @pytest.mark.asyncio
    async def test_texts_hydrated_from_chunk_store(self, embedder, failing_embedder):
        """Test candidates without text are filled from the chunk store."""
        store = InMemoryChunkStore()
        store.add_chunks(build_chunks(embedder))
        orchestrator = RetrievalOrchestrator(
            failing_embedder, build_source(embedder, with_text=False), chunk_store=store
        )

        passages = await orchestrator.retrieve("revenue growth", top_k=5)

        assert [p.chunk_id for p in passages] == ["fin:0", "fin2:0"]
        assert passages[0].text == CORPUS[0][2]

    @pytest.mark.asyncio
    async def test_token_budget(self, orchestrator):
        """Test the returned passages fit the token budget."""
        passages = await orchestrator.retrieve(
            "revenue growth", min_similarity=0.3, target_token_count=15
        )

        assert [p.chunk_id for p in passages] == ["fin:0"]
        assert sum(p.token_count for p in passages) <= 15

    @pytest.mark.asyncio
    async def test_compression_disabled(self, embedder):
        """Test the budget is ignored when compression is switched off."""
        orchestrator = RetrievalOrchestrator(embedder, build_source(embedder), enable_compression=False)

        passages = await orchestrator.retrieve("revenue growth", min_similarity=0.3, target_token_count=15)

        assert [p.chunk_id for p in passages] == ["fin:0", "fin2:0"]

    @pytest.mark.asyncio
    async def test_mmr_reorders_duplicates(self, embedder):
        """Test MMR pushes a copy behind a novel passage when dedup is off."""
        without_mmr = RetrievalOrchestrator(
            embedder, build_source(embedder), enable_deduplication=False, enable_mmr=False
        )
        with_mmr = RetrievalOrchestrator(
            embedder, build_source(embedder), enable_deduplication=False, enable_mmr=True
        )

        plain = await without_mmr.retrieve("revenue growth", min_similarity=0.3)
        diverse = await with_mmr.retrieve("revenue growth", min_similarity=0.3, lambda_=0.5)

        assert [p.chunk_id for p in plain] == ["fin:0", "dup:0", "fin2:0"]
        assert [p.chunk_id for p in diverse] == ["fin:0", "fin2:0", "dup:0"]

    @pytest.mark.asyncio
    async def test_tenant_lambda_used(self, embedder):
        """Test the stored tenant lambda reaches the reranker."""
        orchestrator = RetrievalOrchestrator(
            embedder,
            build_source(embedder),
            lambda_source=StaticLambdaConfigSource([TenantRetrievalConfig(tenant_id="acme", mmr_lambda=0.9)]),
            enable_mmr=True
        )

        with patch.object(orchestrator.reranker, "rerank", wraps=orchestrator.reranker.rerank) as rerank:
            await orchestrator.retrieve("revenue growth", min_similarity=0.3, tenant_id="acme")
            assert rerank.call_args[0][3] == 0.9

            await orchestrator.retrieve("revenue growth", min_similarity=0.3, tenant_id="acme", lambda_=0.2)
            assert rerank.call_args[0][3] == 0.2

    @pytest.mark.asyncio
    async def test_result_cache(self, embedder):
        """Test repeated calls are served from the cache."""
        source = CountingCandidateSource(await build_source(embedder).list_candidates())
        orchestrator = RetrievalOrchestrator(embedder, source, cache=InMemoryResultCache(max_size=10))

        first = await orchestrator.retrieve("revenue growth", min_similarity=0.3, user_id="u1")
        second = await orchestrator.retrieve("Revenue Growth ", min_similarity=0.3, user_id="u1")

        assert [p.chunk_id for p in second] == [p.chunk_id for p in first]
        assert source.requests == 1

        await orchestrator.retrieve("revenue growth", min_similarity=0.3, user_id="u1", top_k=1)
        assert source.requests == 2

    @pytest.mark.asyncio
    async def test_cached_result_isolated_from_caller(self, embedder):
        """Test changes made by a caller never reach the cached entry."""
        source = CountingCandidateSource(await build_source(embedder).list_candidates())
        orchestrator = RetrievalOrchestrator(embedder, source, cache=InMemoryResultCache(max_size=10))

        first = await orchestrator.retrieve("revenue growth", min_similarity=0.3, user_id="u1")
        first[0].text = "edited"
        first.clear()

        second = await orchestrator.retrieve("revenue growth", min_similarity=0.3, user_id="u1")
        second[0].text = "edited again"

        third = await orchestrator.retrieve("revenue growth", min_similarity=0.3, user_id="u1")

        assert source.requests == 1
        assert [p.chunk_id for p in third] == ["fin:0", "fin2:0"]
        assert third[0].text == CORPUS[0][2]

    @pytest.mark.asyncio
    async def test_hybrid_search(self, orchestrator):
        """Test scoring and fusion without the later stages."""
        results = await orchestrator.hybrid_search("revenue growth", top_k=10, min_similarity=0.3)

        assert [r.id for r in results] == ["fin:0", "dup:0", "fin2:0"]
        assert results[0].vector_rank == 1
        assert results[0].text_rank == 1
        assert results[2].keyword_score == 0.5
        assert results[0].combined_score == pytest.approx(2 / 61)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
