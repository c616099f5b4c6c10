"""Conversation turn and state models."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, Optional

from pydantic import BaseModel, Field

from dine_agent.models.action import ActionName, ActionResult


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ConversationTurn(BaseModel):
    """One utterance in a conversation."""
    role: TurnRole
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


@dataclass
class ConversationState:
    """Recent turns plus the last structured result for one {user, tenant}."""
    turns: Deque[ConversationTurn] = field(default_factory=lambda: deque(maxlen=10))
    last_result: Optional[ActionResult] = None
    last_action_name: Optional[ActionName] = None
    last_arguments: Dict[str, Any] = field(default_factory=dict)
