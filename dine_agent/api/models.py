"""API request/response models."""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from dine_agent.models.usage import UsageRecord


# ============================================================================
# Agent Models
# ============================================================================

class AgentQueryBody(BaseModel):
    """Body of POST /agent/query. Identity may come from gateway headers instead."""
    query_text: str = Field(..., min_length=1, max_length=4000, example="how many tables are serving")
    tenant_id: Optional[str] = Field(default=None, description="Used when X-Tenant-ID is not set")
    user_id: Optional[str] = Field(default=None, description="Used when X-User-ID is not set")
    conversation_hint: Optional[str] = None


# ============================================================================
# Knowledge Models
# ============================================================================

class ReindexResponse(BaseModel):
    """Response model for knowledge re-indexing."""
    tenant_id: str
    chunks: int = Field(..., description="Number of chunks stored")
    by_kind: Dict[str, int] = Field(default_factory=dict)


class KnowledgeDocumentRequest(BaseModel):
    """Already-extracted document text to add to a tenant's knowledge."""
    title: str = Field(..., min_length=1, max_length=200, example="House rules")
    text: str = Field(..., min_length=1, max_length=200_000)


class KnowledgeDocumentResponse(BaseModel):
    tenant_id: str
    title: str
    chunks: int


class KnowledgeClearResponse(BaseModel):
    tenant_id: str
    deleted: int


# ============================================================================
# Usage Models
# ============================================================================

class UsageResponse(BaseModel):
    """Token usage of a tenant for one day."""
    tenant_id: str
    date: str
    records: List[UsageRecord] = Field(default_factory=list)
    limits: Dict[str, int] = Field(default_factory=dict, description="Daily token ceiling per model")
