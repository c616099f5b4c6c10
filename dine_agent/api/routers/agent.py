"""Assistant API router."""

from datetime import date
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response

from dine_agent.api.dependencies import get_directory, get_governor, get_indexer, get_orchestrator
from dine_agent.api.models import (
    AgentQueryBody,
    KnowledgeClearResponse,
    KnowledgeDocumentRequest,
    KnowledgeDocumentResponse,
    ReindexResponse,
    UsageResponse,
)
from dine_agent.infra.validation import validate_identifier
from dine_agent.models.agent import AgentRequest, AgentResponse
from dine_agent.services.cost_governor import CostGovernor
from dine_agent.services.knowledge_store import KnowledgeIndexer
from dine_agent.services.orchestrator import AgentOrchestrator
from dine_agent.services.tenant_directory import TenantDirectory

router = APIRouter(prefix="/agent")


def resolve_identity(
    header_tenant_id: Optional[str],
    header_user_id: Optional[str],
    body_tenant_id: Optional[str] = None,
    body_user_id: Optional[str] = None,
) -> Tuple[str, str]:
    """
    Pick tenant and user ids from gateway headers, falling back to the body.

    Raises:
        HTTPException: 400 if an id is missing, malformed, or conflicts
    """
    if header_tenant_id and body_tenant_id and header_tenant_id != body_tenant_id:
        raise HTTPException(status_code=400, detail="tenant_id in body does not match X-Tenant-ID")
    if header_user_id and body_user_id and header_user_id != body_user_id:
        raise HTTPException(status_code=400, detail="user_id in body does not match X-User-ID")

    tenant_id = header_tenant_id or body_tenant_id
    user_id = header_user_id or body_user_id
    if not tenant_id or not user_id:
        raise HTTPException(status_code=400, detail="tenant_id and user_id are required")
    try:
        validate_identifier(tenant_id, "tenant_id")
        validate_identifier(user_id, "user_id")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return tenant_id, user_id


async def require_admin(directory: TenantDirectory, user_id: str, tenant_id: str) -> None:
    """Knowledge and usage endpoints are limited to owners and managers."""
    membership = await directory.get_role(user_id, tenant_id)
    if membership is None:
        raise HTTPException(status_code=403, detail="You don't have access to this restaurant.")
    if not membership.bypasses_permission_checks:
        raise HTTPException(status_code=403, detail="Only owners and managers can do this.")


@router.post("/query", tags=["Agent"], response_model=AgentResponse)
async def query_agent(
    body: AgentQueryBody,
    response: Response,
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
    orchestrator: AgentOrchestrator = Depends(get_orchestrator),
    governor: CostGovernor = Depends(get_governor),
):
    """
    Ask the assistant something about the restaurant.

    Identity comes from the gateway's `X-Tenant-ID` / `X-User-ID` headers or
    the body. Failures are returned with HTTP 200 and a `failure_reason`.

    **Example Request:**
    ```json
    {"query_text": "mark table 3 as cleaning"}
    ```
    """
    tenant_id, user_id = resolve_identity(x_tenant_id, x_user_id, body.tenant_id, body.user_id)
    request = AgentRequest(
        query_text=body.query_text,
        tenant_id=tenant_id,
        user_id=user_id,
        conversation_hint=body.conversation_hint,
    )
    result = await orchestrator.handle_query(request)
    response.headers.update(governor.rate_limiter.headers(tenant_id))
    return result


@router.post("/knowledge/reindex", tags=["Knowledge"], response_model=ReindexResponse)
async def reindex_knowledge(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
    directory: TenantDirectory = Depends(get_directory),
    indexer: KnowledgeIndexer = Depends(get_indexer),
):
    """Rebuild the restaurant's knowledge from its current menu, tables and the action catalog."""
    tenant_id, user_id = resolve_identity(x_tenant_id, x_user_id)
    await require_admin(directory, user_id, tenant_id)
    return ReindexResponse(**await indexer.index_tenant(tenant_id))


@router.post("/knowledge/documents", tags=["Knowledge"], response_model=KnowledgeDocumentResponse)
async def add_knowledge_document(
    document: KnowledgeDocumentRequest,
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
    directory: TenantDirectory = Depends(get_directory),
    indexer: KnowledgeIndexer = Depends(get_indexer),
):
    """Add already-extracted document text (policies, FAQs) to the restaurant's knowledge."""
    tenant_id, user_id = resolve_identity(x_tenant_id, x_user_id)
    await require_admin(directory, user_id, tenant_id)
    chunks = await indexer.add_document_text(tenant_id, document.title, document.text)
    return KnowledgeDocumentResponse(tenant_id=tenant_id, title=document.title, chunks=chunks)


@router.delete("/knowledge", tags=["Knowledge"], response_model=KnowledgeClearResponse)
async def clear_knowledge(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
    directory: TenantDirectory = Depends(get_directory),
    indexer: KnowledgeIndexer = Depends(get_indexer),
):
    """Delete all knowledge chunks of the restaurant."""
    tenant_id, user_id = resolve_identity(x_tenant_id, x_user_id)
    await require_admin(directory, user_id, tenant_id)
    return KnowledgeClearResponse(tenant_id=tenant_id, deleted=await indexer.clear_knowledge(tenant_id))


@router.get("/usage", tags=["Agent"], response_model=UsageResponse)
async def get_usage(
    day: Optional[date] = Query(None, description="Day to report (YYYY-MM-DD, default today UTC)"),
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
    x_user_id: Optional[str] = Header(None, alias="X-User-ID"),
    directory: TenantDirectory = Depends(get_directory),
    governor: CostGovernor = Depends(get_governor),
):
    """Token usage and daily ceilings of the restaurant."""
    tenant_id, user_id = resolve_identity(x_tenant_id, x_user_id)
    await require_admin(directory, user_id, tenant_id)
    records = await governor.get_usage(tenant_id, day)
    return UsageResponse(
        tenant_id=tenant_id,
        date=(day.isoformat() if day else governor.today()),
        records=records,
        limits={model: limit for model, limit in governor.limits.items() if model != "default"},
    )
