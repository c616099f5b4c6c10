"""Usage, quota and cache models for cost governance."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class TokenUsage(BaseModel):
    """Tokens consumed by one model call."""
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class UsageRecord(BaseModel):
    """Daily usage of one model by one tenant."""
    tenant_id: str
    date: str = Field(..., description="Calendar day, YYYY-MM-DD (UTC)")
    model: str
    token_count: int = 0
    request_count: int = 0
    cost: float = 0.0


class QuotaStatus(BaseModel):
    """Result of a quota check."""
    allowed: bool
    remaining: int
    limit: int


class CacheEntry(BaseModel):
    """A cached assistant reply."""
    tenant_id: str
    query_hash: str
    response: Dict[str, Any]
    action_name: Optional[str] = None
    created_at: datetime
