"""Inbound request and outbound response shapes of the assistant core."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from dine_agent.infra.error_handler import FailureReason


class AgentRequest(BaseModel):
    """An operator query addressed to one restaurant."""
    query_text: str = Field(..., min_length=1)
    tenant_id: str
    user_id: str
    conversation_hint: Optional[str] = Field(
        default=None,
        description="Optional client-side context, e.g. the screen the operator is on",
    )


class AgentResponse(BaseModel):
    """Reply returned to the caller; failures are expressed as failure_reason."""
    success: bool
    reply: str
    action_invoked: Optional[str] = None
    structured_result: Optional[Dict[str, Any]] = None
    requires_follow_up: bool = False
    missing_params: List[str] = Field(default_factory=list)
    failure_reason: Optional[FailureReason] = None
    cached: bool = False
