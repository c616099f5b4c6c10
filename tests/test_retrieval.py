"""Tests for knowledge indexing and tenant-scoped retrieval."""

from datetime import datetime

import pytest

from conftest import OTHER_TENANT, TENANT
from dine_agent.infra.embeddings import cosine_similarity
from dine_agent.models.knowledge import ChunkKind, KnowledgeChunk
from dine_agent.services.knowledge_store import chunk_text
from dine_agent.services.retrieval import CHUNKS_CACHE_KEY, format_context


def _chunk(chunk_id, tenant_id, text, embedding, kind=ChunkKind.MENU):
    return KnowledgeChunk(
        id=chunk_id,
        tenant_id=tenant_id,
        kind=kind,
        text=text,
        embedding=embedding,
        created_at=datetime(2026, 10, 19),
    )


class TestKnowledgeIndexer:
    """Building and replacing a tenant's knowledge."""

    @pytest.mark.asyncio
    async def test_index_tenant(self, indexer, knowledge_store):
        summary = await indexer.index_tenant(TENANT)

        assert summary["by_kind"] == {"schema": 4, "menu": 4, "table": 12, "api": 16, "intent-example": 5}
        assert summary["chunks"] == 41
        chunks = await knowledge_store.list_chunks(TENANT)
        assert len(chunks) == 41
        assert all(chunk.tenant_id == TENANT for chunk in chunks)
        assert all(chunk.embedding for chunk in chunks)
        assert f"{TENANT}_menu_m1" in {chunk.id for chunk in chunks}

    @pytest.mark.asyncio
    async def test_reindex_replaces_generated_chunks_but_keeps_documents(self, indexer, knowledge_store, store):
        """Deleted menu items drop out; uploaded documents survive re-indexing."""
        await indexer.index_tenant(TENANT)
        added = await indexer.add_document_text(TENANT, "House rules", "No outside food. Service charge is 10%.")
        assert added == 1

        menu_item = await store.get("menu_items", "m2")
        menu_item["is_deleted"] = True
        store.seed("menu_items", [menu_item])

        summary = await indexer.index_tenant(TENANT)
        assert summary["by_kind"]["menu"] == 3
        chunks = await knowledge_store.list_chunks(TENANT)
        assert len(chunks) == 40 + 1
        assert any(chunk.kind == ChunkKind.DOCUMENT for chunk in chunks)

    @pytest.mark.asyncio
    async def test_clear_knowledge(self, indexer):
        await indexer.index_tenant(TENANT)
        assert await indexer.has_knowledge(TENANT)
        assert await indexer.clear_knowledge(TENANT) == 41
        assert not await indexer.has_knowledge(TENANT)

    @pytest.mark.asyncio
    async def test_insert_rejects_foreign_chunks(self, knowledge_store):
        with pytest.raises(ValueError):
            await knowledge_store.insert_chunks(TENANT, [_chunk("x", OTHER_TENANT, "menu", [1.0])])

    def test_chunk_text_overlaps(self):
        text = "Sentence one is here. " * 100
        chunks = chunk_text(text, chunk_size=200, chunk_overlap=50)
        assert len(chunks) > 1
        assert all(len(chunk) <= 200 for chunk in chunks)

    def test_short_text_is_one_chunk(self):
        assert chunk_text("short") == ["short"]


class TestRetrievalEngine:
    """Similarity search confined to one tenant."""

    @pytest.mark.asyncio
    async def test_results_come_from_the_query_tenant_only(self, retrieval, knowledge_store):
        vector = [1.0, 0.0, 0.0]
        await knowledge_store.insert_chunks(TENANT, [_chunk("a1", TENANT, "menu of rest 1", vector)])
        await knowledge_store.insert_chunks(OTHER_TENANT, [_chunk("b1", OTHER_TENANT, "menu of rest 2", vector)])

        retrieval.embeddings.vector = lambda text: vector
        hits = await retrieval.search("menu", TENANT, min_score=0.0)
        assert [hit.chunk.id for hit in hits] == ["a1"]

        hits = await retrieval.search("menu", OTHER_TENANT, min_score=0.0)
        assert [hit.chunk.id for hit in hits] == ["b1"]

    @pytest.mark.asyncio
    async def test_foreign_chunks_are_dropped(self, retrieval, tenant_cache):
        """A chunk of another tenant that reaches the cache is never returned."""
        foreign = _chunk("b1", OTHER_TENANT, "menu of rest 2", [1.0, 0.0])
        await tenant_cache.set(TENANT, CHUNKS_CACHE_KEY, [foreign.model_dump(mode="json")])
        retrieval.embeddings.vector = lambda text: [1.0, 0.0]

        assert await retrieval.search("menu", TENANT, min_score=0.0) == []

    @pytest.mark.asyncio
    async def test_ranking_threshold_and_limit(self, retrieval, knowledge_store):
        await knowledge_store.insert_chunks(TENANT, [
            _chunk("low", TENANT, "low", [0.0, 1.0]),
            _chunk("mid", TENANT, "mid", [1.0, 1.0]),
            _chunk("top", TENANT, "top", [1.0, 0.0]),
            _chunk("top2", TENANT, "top twin", [2.0, 0.0]),
        ])
        retrieval.embeddings.vector = lambda text: [1.0, 0.0]

        hits = await retrieval.search("q", TENANT, limit=2, min_score=0.5)
        assert [hit.chunk.id for hit in hits] == ["top", "top2"]

        hits = await retrieval.search("q", TENANT, limit=10, min_score=0.5)
        assert [hit.chunk.id for hit in hits] == ["top", "top2", "mid"]

    @pytest.mark.asyncio
    async def test_no_knowledge_skips_embedding(self, retrieval, embeddings):
        assert await retrieval.search("anything", TENANT) == []
        assert embeddings.query_calls == 0

    @pytest.mark.asyncio
    async def test_refresh_after_indexing(self, indexer, retrieval):
        assert await retrieval.search("paneer", TENANT, min_score=0.5) == []
        await indexer.index_tenant(TENANT)
        hits = await retrieval.search("paneer", TENANT, min_score=0.5)
        assert hits
        assert hits[0].chunk.id == f"{TENANT}_menu_m1"

    def test_format_context(self):
        assert format_context([]) == ""

    def test_cosine_similarity_edge_cases(self):
        assert cosine_similarity([], [1.0]) == 0.0
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
        assert cosine_similarity([1.0], [1.0, 0.0]) == 0.0
        assert cosine_similarity([1.0, 0.0], [2.0, 0.0]) == pytest.approx(1.0)
