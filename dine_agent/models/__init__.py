from .action import (
    ActionDescriptor,
    ActionName,
    ActionResult,
    DirectAnswer,
    IntentOutcome,
    ResolvedIntent,
    UnrecognizedIntent,
)
from .agent import AgentRequest, AgentResponse
from .conversation import ConversationState, ConversationTurn, TurnRole
from .knowledge import ChunkKind, KnowledgeChunk, ScoredChunk
from .tenant import TenantMembership, TenantSettings
from .usage import CacheEntry, QuotaStatus, TokenUsage, UsageRecord

__all__ = [
    "ActionDescriptor",
    "ActionName",
    "ActionResult",
    "AgentRequest",
    "AgentResponse",
    "CacheEntry",
    "ChunkKind",
    "ConversationState",
    "ConversationTurn",
    "DirectAnswer",
    "IntentOutcome",
    "KnowledgeChunk",
    "QuotaStatus",
    "ResolvedIntent",
    "ScoredChunk",
    "TenantMembership",
    "TenantSettings",
    "TokenUsage",
    "TurnRole",
    "UnrecognizedIntent",
    "UsageRecord",
]
