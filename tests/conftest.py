"""Pytest configuration and fixtures."""

import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest
from dotenv import load_dotenv

# Load test environment variables
load_dotenv()

# Set test environment (before dine_agent.infra.config is imported)
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["CACHE_BACKEND"] = "memory"
os.environ["RATE_LIMIT_BACKEND"] = "memory"

from dine_agent.adapters.llm_client import LLMResponse, ToolCall  # noqa: E402
from dine_agent.infra.cache import InMemoryTenantCache  # noqa: E402
from dine_agent.infra.document_store import InMemoryDocumentStore  # noqa: E402
from dine_agent.infra.rate_limiter import RequestRateLimiter  # noqa: E402
from dine_agent.models.usage import TokenUsage  # noqa: E402
from dine_agent.services.action_executor import ActionExecutor  # noqa: E402
from dine_agent.services.conversation_state import ConversationStateManager  # noqa: E402
from dine_agent.services.cost_governor import CostGovernor  # noqa: E402
from dine_agent.services.intent_resolver import IntentResolver  # noqa: E402
from dine_agent.services.knowledge_store import KnowledgeIndexer, TenantKnowledgeStore  # noqa: E402
from dine_agent.services.orchestrator import AgentOrchestrator  # noqa: E402
from dine_agent.services.permission_gate import PermissionGate  # noqa: E402
from dine_agent.services.response_synthesizer import ResponseSynthesizer  # noqa: E402
from dine_agent.services.retrieval import RetrievalEngine  # noqa: E402
from dine_agent.services.tenant_directory import TenantDirectory  # noqa: E402

TENANT = "rest_1"
OTHER_TENANT = "rest_2"
TODAY = "2026-10-19"
YESTERDAY = "2026-10-18"
MODEL = "gpt-4o-mini"

FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0)


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeLLMClient:
    """Scripted stand-in for LLMClient.chat; fails loudly on unexpected calls."""

    def __init__(self):
        self.responses: List[Any] = []
        self.calls: List[Dict[str, Any]] = []

    def queue_tool_call(self, name: str, arguments: str, prompt_tokens: int = 100, completion_tokens: int = 20):
        self.responses.append(("tool", [ToolCall(name=name, arguments=arguments)], prompt_tokens, completion_tokens))

    def queue_tool_calls(self, calls: List[ToolCall], prompt_tokens: int = 100, completion_tokens: int = 20):
        self.responses.append(("tool", calls, prompt_tokens, completion_tokens))

    def queue_text(self, text: Optional[str], prompt_tokens: int = 80, completion_tokens: int = 10):
        self.responses.append(("text", text, prompt_tokens, completion_tokens))

    def queue_error(self, error: Exception):
        self.responses.append(("error", error, 0, 0))

    async def chat(self, messages, model, tools=None, temperature=0.3, max_tokens=500, response_format=None):
        self.calls.append({"messages": messages, "model": model, "tools": tools})
        if not self.responses:
            raise AssertionError("Unexpected LLM call")
        kind, value, prompt_tokens, completion_tokens = self.responses.pop(0)
        if kind == "error":
            raise value
        usage = TokenUsage(model=model, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
        if kind == "tool":
            return LLMResponse(content=None, tool_calls=value, usage=usage)
        return LLMResponse(content=value, usage=usage)


class FakeEmbeddings:
    """Deterministic bag-of-keywords vectors."""

    VOCAB = ("table", "menu", "order", "sales", "customer", "paneer", "biryani", "policy")

    def __init__(self):
        self.query_calls = 0
        self.batch_calls = 0

    def vector(self, text: str) -> List[float]:
        lowered = text.lower()
        return [float(lowered.count(word)) for word in self.VOCAB] + [0.1]

    async def embed_query(self, text: str) -> List[float]:
        self.query_calls += 1
        return self.vector(text)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.batch_calls += 1
        return [self.vector(text) for text in texts]


def _tables() -> List[Dict[str, Any]]:
    tables = []
    for number in range(1, 13):
        tables.append({
            "id": f"t{number}",
            "tenant_id": TENANT,
            "name": str(number),
            "floor": "Ground" if number <= 6 else "Terrace",
            "capacity": 4,
            "status": "available" if number <= 5 else "occupied",
            "current_order_id": "o3" if number == 6 else None,
        })
    return tables


def _menu() -> List[Dict[str, Any]]:
    return [
        {
            "id": "m1", "tenant_id": TENANT, "name": "Paneer Tikka", "price": 250, "category": "Starters",
            "description": "Grilled cottage cheese", "is_veg": True, "is_available": True,
            "variants": [{"name": "Large", "price_delta": 50}],
            "customizations": [{"name": "Extra Cheese", "price": 30}],
        },
        {
            "id": "m2", "tenant_id": TENANT, "name": "Chicken Biryani", "price": 100, "category": "Main Course",
            "description": "Dum biryani", "is_veg": False, "is_available": True,
        },
        {
            "id": "m3", "tenant_id": TENANT, "name": "Veg Biryani", "price": 180, "category": "Main Course",
            "description": "Vegetable biryani", "is_veg": True, "is_available": True,
        },
        {
            "id": "m4", "tenant_id": TENANT, "name": "Masala Dosa", "price": 120, "category": "Breakfast",
            "description": "Crisp dosa", "is_veg": True, "is_available": False,
        },
        {
            "id": "m5", "tenant_id": TENANT, "name": "Old Soup", "price": 90, "category": "Starters",
            "is_veg": True, "is_available": False, "is_deleted": True,
        },
    ]


def _orders() -> List[Dict[str, Any]]:
    return [
        {
            "id": "o1", "tenant_id": TENANT, "order_number": "ORD-1000-AAAA", "daily_order_id": 1,
            "order_date": TODAY, "status": "completed", "final_amount": 315.0, "total_amount": 300.0,
            "items": [{"name": "Paneer Tikka", "quantity": 1}, {"name": "Veg Biryani", "quantity": 2}],
            "created_at": f"{TODAY}T09:00:00",
        },
        {
            "id": "o2", "tenant_id": TENANT, "order_number": "ORD-2000-BBBB", "daily_order_id": 2,
            "order_date": TODAY, "status": "cancelled", "final_amount": 200.0,
            "items": [{"name": "Chicken Biryani", "quantity": 2}],
            "created_at": f"{TODAY}T10:00:00",
        },
        {
            "id": "o3", "tenant_id": TENANT, "order_number": "ORD-3000-CCCC", "daily_order_id": 3,
            "order_date": TODAY, "status": "confirmed", "final_amount": 105.0, "table_number": "6",
            "items": [{"name": "Chicken Biryani", "quantity": 1}],
            "created_at": f"{TODAY}T11:00:00",
        },
        {
            "id": "o4", "tenant_id": TENANT, "order_number": "ORD-4000-DDDD", "daily_order_id": 1,
            "order_date": YESTERDAY, "status": "completed", "final_amount": 500.0,
            "items": [{"name": "Paneer Tikka", "quantity": 2}],
            "created_at": f"{YESTERDAY}T20:00:00",
        },
    ]


def _customers() -> List[Dict[str, Any]]:
    return [
        {
            "id": "c1", "tenant_id": TENANT, "name": "Asha Rao", "phone": "9876543210",
            "email": "asha@example.com", "order_count": 2, "total_spent": 600.0,
            "order_history": [
                {"order_id": "o1", "order_number": "ORD-1000-AAAA", "amount": 315.0, "date": f"{TODAY}T09:00:00"},
            ],
        },
        {
            "id": "c2", "tenant_id": TENANT, "name": "Ravi Kumar", "phone": "9123456780",
            "order_count": 0, "total_spent": 0, "order_history": [],
        },
        {
            "id": "c3", "tenant_id": TENANT, "name": "Ravi Kumar", "phone": "9000000001",
            "order_count": 1, "total_spent": 120.0, "order_history": [],
        },
    ]


def _memberships() -> List[Dict[str, Any]]:
    def member(user_id: str, tenant_id: str, role: str, permissions=(), **extra):
        return {
            "id": f"{user_id}_{tenant_id}",
            "user_id": user_id,
            "tenant_id": tenant_id,
            "role": role,
            "permissions": list(permissions),
            **extra,
        }

    return [
        member("u_owner", TENANT, "owner"),
        member("u_manager", TENANT, "Manager"),
        member("u_waiter", TENANT, "waiter", ["tables", "orders"]),
        member("u_cashier", TENANT, "cashier", ["analytics"]),
        member("u_former", TENANT, "waiter", ["tables"], is_active=False),
        member("u_other", OTHER_TENANT, "owner"),
    ]


def seed_store(store: InMemoryDocumentStore) -> InMemoryDocumentStore:
    store.seed("tenants", [
        {"id": TENANT, "tenant_id": TENANT, "name": "Spice Garden", "currency": "INR",
         "tax": {"enabled": True, "rate": 5}},
        {"id": OTHER_TENANT, "tenant_id": OTHER_TENANT, "name": "Blue Door", "currency": "USD"},
    ])
    store.seed("memberships", _memberships())
    store.seed("tables", _tables() + [{
        "id": "x1", "tenant_id": OTHER_TENANT, "name": "1", "floor": "Main", "status": "available",
    }])
    store.seed("menu_items", _menu())
    store.seed("orders", _orders())
    store.seed("customers", _customers())
    return store


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return seed_store(InMemoryDocumentStore())


@pytest.fixture
def directory(store):
    return TenantDirectory(store)


@pytest.fixture
def executor(store, directory, clock):
    return ActionExecutor(store, directory, clock=clock)


@pytest.fixture
def llm():
    return FakeLLMClient()


@pytest.fixture
def embeddings():
    return FakeEmbeddings()


@pytest.fixture
def tenant_cache():
    return InMemoryTenantCache()


@pytest.fixture
def knowledge_store(store):
    return TenantKnowledgeStore(store)


@pytest.fixture
def retrieval(knowledge_store, embeddings, tenant_cache):
    return RetrievalEngine(knowledge_store, embeddings, tenant_cache)


@pytest.fixture
def indexer(store, knowledge_store, embeddings, retrieval):
    return KnowledgeIndexer(store, knowledge_store, embeddings, retrieval=retrieval)


@pytest.fixture
def rate_limiter(clock):
    return RequestRateLimiter(per_tenant_limit=100, clock=clock)


@pytest.fixture
def governor(store, tenant_cache, rate_limiter, clock):
    return CostGovernor(
        store,
        tenant_cache,
        rate_limiter=rate_limiter,
        clock=clock,
        freshness_seconds=3600,
        limits={MODEL: 10_000, "default": 10_000},
    )


@pytest.fixture
def conversations():
    return ConversationStateManager(window=10)


@pytest.fixture
def orchestrator(store, directory, retrieval, llm, executor, conversations, governor, clock):
    return AgentOrchestrator(
        store=store,
        directory=directory,
        retrieval=retrieval,
        resolver=IntentResolver(llm, model=MODEL),
        gate=PermissionGate(directory, audit_store=store),
        executor=executor,
        conversations=conversations,
        governor=governor,
        synthesizer=ResponseSynthesizer(llm, model=MODEL),
        clock=clock,
    )
