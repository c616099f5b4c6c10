"""API tests for the agent, knowledge, usage and health endpoints."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from conftest import MODEL, OTHER_TENANT, TENANT, TODAY
from dine_agent.api.dependencies import get_directory, get_governor, get_indexer, get_orchestrator, get_store
from dine_agent.infra.error_handler import StorageUnavailableError
from dine_agent.main import app


def _headers(user_id="u_owner", tenant_id=TENANT):
    return {"X-Tenant-ID": tenant_id, "X-User-ID": user_id}


@pytest.fixture
def client(orchestrator, governor, directory, indexer, store):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_governor] = lambda: governor
    app.dependency_overrides[get_directory] = lambda: directory
    app.dependency_overrides[get_indexer] = lambda: indexer
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAgentQueryAPI:
    """POST /agent/query."""

    def test_query_with_gateway_headers(self, client, llm):
        llm.queue_tool_call("get_tables", '{"status": "available"}')
        response = client.post("/agent/query", json={"query_text": "how many tables are free"}, headers=_headers())

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["action_invoked"] == "get_tables"
        assert data["structured_result"]["count"] == 5
        assert response.headers["X-RateLimit-Limit"] == "100"
        assert "X-Request-ID" in response.headers

    def test_identity_from_body(self, client, llm):
        llm.queue_text("Hello! How can I help?")
        response = client.post(
            "/agent/query",
            json={"query_text": "hello", "tenant_id": TENANT, "user_id": "u_waiter"},
        )
        assert response.status_code == 200
        assert response.json()["reply"] == "Hello! How can I help?"

    def test_conflicting_tenant(self, client, llm):
        response = client.post(
            "/agent/query",
            json={"query_text": "show tables", "tenant_id": OTHER_TENANT},
            headers=_headers(),
        )
        assert response.status_code == 400
        assert llm.calls == []

    def test_missing_identity(self, client):
        response = client.post("/agent/query", json={"query_text": "show tables"})
        assert response.status_code == 400

    def test_malformed_identity(self, client):
        response = client.post(
            "/agent/query", json={"query_text": "show tables"}, headers=_headers(tenant_id="rest 1")
        )
        assert response.status_code == 400

    def test_failures_are_structured(self, client, llm):
        response = client.post("/agent/query", json={"query_text": "show tables"}, headers=_headers("u_other"))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["failure_reason"] == "permission_denied"
        assert llm.calls == []

    def test_empty_query_is_rejected(self, client):
        response = client.post("/agent/query", json={"query_text": ""}, headers=_headers())
        assert response.status_code == 422


class TestKnowledgeAPI:
    """Knowledge management endpoints."""

    def test_reindex(self, client):
        response = client.post("/agent/knowledge/reindex", headers=_headers("u_manager"))

        assert response.status_code == 200
        data = response.json()
        assert data["tenant_id"] == TENANT
        assert data["chunks"] == 41
        assert data["by_kind"]["table"] == 12

    def test_reindex_requires_owner_or_manager(self, client):
        response = client.post("/agent/knowledge/reindex", headers=_headers("u_waiter"))
        assert response.status_code == 403

    def test_reindex_for_foreign_tenant(self, client):
        response = client.post("/agent/knowledge/reindex", headers=_headers("u_owner", OTHER_TENANT))
        assert response.status_code == 403

    def test_add_document_and_clear(self, client):
        response = client.post(
            "/agent/knowledge/documents",
            json={"title": "House rules", "text": "Service charge is 10%. No outside food."},
            headers=_headers(),
        )
        assert response.status_code == 200
        assert response.json()["chunks"] == 1

        response = client.delete("/agent/knowledge", headers=_headers())
        assert response.status_code == 200
        assert response.json() == {"tenant_id": TENANT, "deleted": 1}

    def test_storage_outage_returns_503(self, client, indexer):
        indexer.index_tenant = AsyncMock(side_effect=StorageUnavailableError("db down"))
        response = client.post("/agent/knowledge/reindex", headers=_headers())

        assert response.status_code == 503
        assert "db down" not in response.text


class TestUsageAPI:
    """GET /agent/usage."""

    def test_usage_after_query(self, client, llm):
        llm.queue_tool_call("get_menu", "{}")
        client.post("/agent/query", json={"query_text": "show the menu"}, headers=_headers())

        response = client.get("/agent/usage", headers=_headers())

        assert response.status_code == 200
        data = response.json()
        assert data["date"] == TODAY
        assert data["limits"] == {MODEL: 10_000}
        assert data["records"][0]["token_count"] == 120

    def test_usage_of_past_day(self, client):
        response = client.get("/agent/usage", params={"day": "2026-10-01"}, headers=_headers())
        assert response.status_code == 200
        assert response.json()["records"] == []


class TestHealthAPI:
    """Health and metrics endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["service"] == "dine-agent"

    def test_ready(self, client):
        assert client.get("/health/ready").json() == {"status": "ready"}

    def test_not_ready(self, client, store):
        store.get = AsyncMock(side_effect=StorageUnavailableError("db down"))
        response = client.get("/health/ready")
        assert response.status_code == 503

    def test_metrics(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "agent_queries_total" in response.text
