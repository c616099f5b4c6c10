"""Tenant-scoped semantic retrieval over knowledge chunks."""

import logging
from typing import List, Optional

from dine_agent.infra.cache import TenantCache
from dine_agent.infra.config import config
from dine_agent.infra.embeddings import EmbeddingGenerator, cosine_similarity
from dine_agent.infra.error_handler import UpstreamUnavailableError, retry_with_backoff
from dine_agent.infra.metrics import retrieval_cross_tenant_drops_total
from dine_agent.models.knowledge import KnowledgeChunk, ScoredChunk
from dine_agent.services.knowledge_store import TenantKnowledgeStore

logger = logging.getLogger(__name__)

CHUNKS_CACHE_KEY = "knowledge_chunks"


class RetrievalEngine:
    """
    Finds the knowledge chunks of one tenant most similar to a query.

    The tenant's chunk list is held in the injected cache under the tenant's
    own key and is only ever replaced as a whole by ``refresh``.
    """

    def __init__(self, knowledge_store: TenantKnowledgeStore, embeddings: EmbeddingGenerator, cache: TenantCache):
        self.knowledge_store = knowledge_store
        self.embeddings = embeddings
        self.cache = cache

    async def refresh(self, tenant_id: str) -> List[KnowledgeChunk]:
        """Reload a tenant's chunks from the knowledge store into the cache."""
        chunks = await self.knowledge_store.list_chunks(tenant_id)
        await self.cache.set(tenant_id, CHUNKS_CACHE_KEY, [chunk.model_dump(mode="json") for chunk in chunks])
        logger.debug(f"Refreshed {len(chunks)} knowledge chunks for tenant {tenant_id}")
        return chunks

    async def _chunks_for(self, tenant_id: str) -> List[KnowledgeChunk]:
        cached = await self.cache.get(tenant_id, CHUNKS_CACHE_KEY)
        if cached is None:
            return await self.refresh(tenant_id)
        return [KnowledgeChunk.model_validate(raw) for raw in cached]

    async def search(
        self,
        query: str,
        tenant_id: str,
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[ScoredChunk]:
        """
        Search a tenant's knowledge.

        The caller must already have verified that the acting user belongs to
        ``tenant_id``.

        Args:
            query: Query text
            tenant_id: Tenant whose knowledge is searched
            limit: Maximum results (default: RETRIEVAL_LIMIT)
            min_score: Minimum cosine similarity (default: RETRIEVAL_MIN_SCORE)

        Returns:
            Scored chunks, best first; equal scores keep storage order
        """
        limit = config.RETRIEVAL_LIMIT if limit is None else limit
        min_score = config.RETRIEVAL_MIN_SCORE if min_score is None else min_score

        chunks = await self._chunks_for(tenant_id)
        if not chunks:
            return []

        try:
            query_vector = await retry_with_backoff(
                lambda: self.embeddings.embed_query(query),
                max_retries=1,
                initial_delay=0.5,
            )
        except UpstreamUnavailableError as e:
            logger.warning(f"Query embedding failed for tenant {tenant_id}, continuing without context: {e}")
            return []

        scored: List[ScoredChunk] = []
        for chunk in chunks:
            if chunk.tenant_id != tenant_id:
                retrieval_cross_tenant_drops_total.inc()
                logger.error(
                    f"Dropped knowledge chunk {chunk.id} of tenant {chunk.tenant_id} "
                    f"from results for tenant {tenant_id}"
                )
                continue
            score = cosine_similarity(query_vector, chunk.embedding)
            if score >= min_score:
                scored.append(ScoredChunk(chunk=chunk, score=score))

        scored.sort(key=lambda hit: hit.score, reverse=True)
        return scored[:limit]


def format_context(hits: List[ScoredChunk]) -> str:
    """Render retrieval hits as a prompt section."""
    if not hits:
        return ""
    lines = [f"- [{hit.chunk.kind.value}] {hit.chunk.text}" for hit in hits]
    return "Relevant restaurant knowledge:\n" + "\n".join(lines)
