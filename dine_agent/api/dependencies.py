"""Service wiring for the API; each getter is a process-wide singleton that tests can override."""

from functools import lru_cache

import redis.asyncio as aioredis

from dine_agent.adapters.llm_client import LLMClient
from dine_agent.infra.cache import InMemoryTenantCache, RedisTenantCache, TenantCache
from dine_agent.infra.config import config
from dine_agent.infra.document_store import DocumentStore, InMemoryDocumentStore, SqlDocumentStore
from dine_agent.infra.embeddings import EmbeddingGenerator
from dine_agent.infra.rate_limiter import build_rate_limiter
from dine_agent.services.action_executor import ActionExecutor
from dine_agent.services.conversation_state import ConversationStateManager
from dine_agent.services.cost_governor import CostGovernor
from dine_agent.services.intent_resolver import IntentResolver
from dine_agent.services.knowledge_store import KnowledgeIndexer, TenantKnowledgeStore
from dine_agent.services.orchestrator import AgentOrchestrator
from dine_agent.services.permission_gate import PermissionGate
from dine_agent.services.response_synthesizer import ResponseSynthesizer
from dine_agent.services.retrieval import RetrievalEngine
from dine_agent.services.tenant_directory import TenantDirectory


@lru_cache()
def get_store() -> DocumentStore:
    if config.STORAGE_BACKEND == "memory":
        return InMemoryDocumentStore()
    return SqlDocumentStore()


@lru_cache()
def get_tenant_cache() -> TenantCache:
    if config.CACHE_BACKEND == "redis":
        return RedisTenantCache(aioredis.from_url(config.REDIS_URL, decode_responses=True))
    return InMemoryTenantCache()


@lru_cache()
def get_llm_client() -> LLMClient:
    return LLMClient()


@lru_cache()
def get_embeddings() -> EmbeddingGenerator:
    return EmbeddingGenerator()


@lru_cache()
def get_directory() -> TenantDirectory:
    return TenantDirectory(get_store())


@lru_cache()
def get_retrieval() -> RetrievalEngine:
    return RetrievalEngine(TenantKnowledgeStore(get_store()), get_embeddings(), get_tenant_cache())


@lru_cache()
def get_indexer() -> KnowledgeIndexer:
    store = get_store()
    return KnowledgeIndexer(store, TenantKnowledgeStore(store), get_embeddings(), retrieval=get_retrieval())


@lru_cache()
def get_governor() -> CostGovernor:
    return CostGovernor(get_store(), get_tenant_cache(), rate_limiter=build_rate_limiter())


@lru_cache()
def get_orchestrator() -> AgentOrchestrator:
    store = get_store()
    directory = get_directory()
    llm_client = get_llm_client()
    return AgentOrchestrator(
        store=store,
        directory=directory,
        retrieval=get_retrieval(),
        resolver=IntentResolver(llm_client),
        gate=PermissionGate(directory, audit_store=store),
        executor=ActionExecutor(store, directory),
        conversations=ConversationStateManager(),
        governor=get_governor(),
        synthesizer=ResponseSynthesizer(llm_client),
    )
