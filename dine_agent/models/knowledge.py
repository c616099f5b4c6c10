"""Knowledge chunk models for tenant-scoped retrieval."""

from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChunkKind(str, Enum):
    """What a knowledge chunk describes."""
    SCHEMA = "schema"
    MENU = "menu"
    TABLE = "table"
    API = "api"
    INTENT_EXAMPLE = "intent-example"
    DOCUMENT = "document"


class KnowledgeChunk(BaseModel):
    """A piece of tenant knowledge with its embedding. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Chunk id, e.g. '{tenant}_menu_{item_id}'")
    tenant_id: str = Field(..., description="Owning tenant; must match the query tenant")
    kind: ChunkKind
    text: str
    related_fields: FrozenSet[str] = Field(default_factory=frozenset)
    linked_action_name: Optional[str] = None
    embedding: List[float] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ScoredChunk(BaseModel):
    """A retrieval hit."""
    chunk: KnowledgeChunk
    score: float
