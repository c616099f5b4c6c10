"""Tenant knowledge chunks: storage and (re)indexing from live restaurant data."""

import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from dine_agent.infra.document_store import DocumentStore, WriteOp
from dine_agent.infra.embeddings import EmbeddingGenerator
from dine_agent.models.knowledge import ChunkKind, KnowledgeChunk
from dine_agent.services.action_catalog import list_descriptors

logger = logging.getLogger(__name__)

KNOWLEDGE_CHUNKS = "knowledge_chunks"

# Field listings for the schema chunks, one per collection
COLLECTION_SCHEMAS: Dict[str, Dict[str, str]] = {
    "tables": {
        "name": "Table number or name shown to staff",
        "floor": "Floor or section the table is on",
        "capacity": "Number of seats",
        "status": "available, occupied, reserved, cleaning or out-of-service",
        "current_order_id": "Order currently linked to the table",
    },
    "orders": {
        "order_number": "Human-readable order number",
        "daily_order_id": "Sequential order number for the day",
        "items": "Ordered items with quantity and price",
        "final_amount": "Total including tax",
        "status": "pending, confirmed, preparing, ready, served, completed or cancelled",
        "payment_status": "Payment state of the order",
        "table_number": "Table the order was placed for",
    },
    "menu_items": {
        "name": "Dish name",
        "price": "Base price",
        "category": "Menu section",
        "is_veg": "Vegetarian flag",
        "is_available": "Whether the dish can be ordered now",
        "variants": "Size or portion options with price differences",
    },
    "customers": {
        "name": "Customer name",
        "phone": "Contact number",
        "order_count": "Number of orders placed",
        "total_spent": "Lifetime spend",
    },
}

INTENT_EXAMPLES: List[Dict[str, Any]] = [
    {
        "name": "menu_query",
        "examples": ["show menu", "what dishes do you have", "vegetarian options", "what can I order"],
        "fields": ["name", "price", "category", "is_veg"],
        "action": "get_menu",
    },
    {
        "name": "table_booking",
        "examples": ["book table", "reserve table 5", "table for 4 people", "reserve a table"],
        "fields": ["name", "status", "capacity"],
        "action": "reserve_table",
    },
    {
        "name": "order_placement",
        "examples": ["place order", "order 2 paneer tikka", "order biryani for table 3"],
        "fields": ["name", "price", "table_number"],
        "action": "place_order",
    },
    {
        "name": "table_management",
        "examples": ["show tables", "table status", "how many tables are serving", "mark table 4 as cleaning"],
        "fields": ["name", "status", "floor"],
        "action": "get_tables",
    },
    {
        "name": "sales_overview",
        "examples": ["today's sales", "how much did we make today", "revenue for yesterday"],
        "fields": ["total_revenue", "total_orders"],
        "action": "get_sales_summary",
    },
]


def _slug(value: Any) -> str:
    return re.sub(r"[^A-Za-z0-9_\-]+", "_", str(value)).strip("_")


def chunk_text(text: str, chunk_size: int = 1000, chunk_overlap: int = 200) -> List[str]:
    """
    Split text into chunks with overlap.

    Args:
        text: Text to chunk
        chunk_size: Maximum characters per chunk
        chunk_overlap: Characters to overlap between chunks

    Returns:
        List of text chunks
    """
    if len(text) <= chunk_size:
        return [text]

    chunks = []
    start = 0
    while start < len(text):
        end = start + chunk_size

        # Prefer paragraph, then sentence boundaries
        if end < len(text):
            para_break = text.rfind("\n\n", start, end)
            if para_break > start:
                end = para_break + 2
            else:
                sentence_break = max(
                    text.rfind(". ", start, end),
                    text.rfind("! ", start, end),
                    text.rfind("? ", start, end),
                )
                if sentence_break > start:
                    end = sentence_break + 2

        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)

        if end >= len(text):
            break
        start = max(end - chunk_overlap, start + 1)

    return chunks


class TenantKnowledgeStore:
    """Reads and writes a tenant's knowledge chunks in the document store."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def list_chunks(self, tenant_id: str) -> List[KnowledgeChunk]:
        """All chunks of one tenant, in storage order."""
        docs = await self.store.query(KNOWLEDGE_CHUNKS, {"tenant_id": tenant_id})
        return [KnowledgeChunk.model_validate(doc) for doc in docs]

    async def insert_chunks(self, tenant_id: str, chunks: List[KnowledgeChunk]) -> int:
        """
        Insert (or replace) chunks in one batched write.

        Raises:
            ValueError: If a chunk belongs to another tenant
        """
        ops = []
        for chunk in chunks:
            if chunk.tenant_id != tenant_id:
                raise ValueError(f"Chunk {chunk.id} belongs to tenant {chunk.tenant_id}, not {tenant_id}")
            ops.append(WriteOp("set", KNOWLEDGE_CHUNKS, chunk.id, chunk.model_dump(mode="json"), tenant_id=tenant_id))
        if ops:
            await self.store.batch_write(ops)
        return len(ops)

    async def delete_chunks(self, tenant_id: str, kind: Optional[ChunkKind] = None) -> int:
        """Delete a tenant's chunks, optionally only those of one kind."""
        filters = {"tenant_id": tenant_id}
        if kind is not None:
            filters["kind"] = kind.value
        docs = await self.store.query(KNOWLEDGE_CHUNKS, filters)
        if docs:
            await self.store.batch_write([
                WriteOp("delete", KNOWLEDGE_CHUNKS, doc["id"], tenant_id=tenant_id) for doc in docs
            ])
        return len(docs)

    async def has_knowledge(self, tenant_id: str) -> bool:
        docs = await self.store.query(KNOWLEDGE_CHUNKS, {"tenant_id": tenant_id}, limit=1)
        return bool(docs)


class KnowledgeIndexer:
    """
    Builds a tenant's standard knowledge set from its live records.

    Re-indexing replaces the tenant's generated chunks; uploaded document
    chunks are kept.
    """

    def __init__(
        self,
        store: DocumentStore,
        knowledge_store: TenantKnowledgeStore,
        embeddings: EmbeddingGenerator,
        retrieval=None,
    ):
        self.store = store
        self.knowledge_store = knowledge_store
        self.embeddings = embeddings
        self.retrieval = retrieval

    async def build_chunks(self, tenant_id: str) -> List[KnowledgeChunk]:
        """Build (unembedded) schema, menu, table, api and intent-example chunks."""
        now = datetime.utcnow()
        chunks: List[KnowledgeChunk] = []

        def add(kind: ChunkKind, key: Any, text: str, fields: List[str], action: Optional[str] = None):
            chunks.append(KnowledgeChunk(
                id=f"{tenant_id}_{kind.value}_{_slug(key)}",
                tenant_id=tenant_id,
                kind=kind,
                text=text,
                related_fields=frozenset(fields),
                linked_action_name=action,
                created_at=now,
            ))

        for collection, fields in COLLECTION_SCHEMAS.items():
            described = "; ".join(f"{name}: {desc}" for name, desc in fields.items())
            add(ChunkKind.SCHEMA, collection, f"Collection {collection} has fields {described}", list(fields))

        for item in await self.store.query("menu_items", {"tenant_id": tenant_id}):
            if item.get("is_deleted"):
                continue
            add(
                ChunkKind.MENU,
                item.get("id"),
                f"Menu Item: {item.get('name')}, Price: {item.get('price')}, "
                f"Category: {item.get('category') or 'Uncategorized'}, "
                f"Description: {item.get('description') or 'No description'}, "
                f"Vegetarian: {'Yes' if item.get('is_veg', True) else 'No'}, "
                f"Available: {'Yes' if item.get('is_available', True) else 'No'}",
                ["name", "price", "category", "is_veg"],
                "get_menu",
            )

        for table in await self.store.query("tables", {"tenant_id": tenant_id}):
            add(
                ChunkKind.TABLE,
                table.get("id"),
                f"Table: {table.get('name')}, Floor: {table.get('floor') or 'Main'}, "
                f"Status: {table.get('status')}, Capacity: {table.get('capacity') or 'unknown'} people",
                ["name", "status", "capacity", "floor"],
                "get_tables",
            )

        for descriptor in list_descriptors():
            params = list(descriptor.required_params) + sorted(descriptor.optional_params)
            add(
                ChunkKind.API,
                descriptor.name.value,
                f"Action: {descriptor.name.value}, Description: {descriptor.description}, "
                f"Parameters: {', '.join(params) or 'none'}, "
                f"Required: {', '.join(descriptor.required_params) or 'none'}",
                params,
                descriptor.name.value,
            )

        for intent in INTENT_EXAMPLES:
            add(
                ChunkKind.INTENT_EXAMPLE,
                intent["name"],
                f"Intent: {intent['name']}, Examples: {', '.join(intent['examples'])}, "
                f"Required fields: {', '.join(intent['fields'])}",
                intent["fields"],
                intent["action"],
            )

        return chunks

    async def _embed(self, chunks: List[KnowledgeChunk]) -> List[KnowledgeChunk]:
        vectors = await self.embeddings.embed_batch([chunk.text for chunk in chunks])
        return [chunk.model_copy(update={"embedding": vector}) for chunk, vector in zip(chunks, vectors)]

    async def index_tenant(self, tenant_id: str) -> Dict[str, Any]:
        """
        Rebuild a tenant's generated knowledge.

        Embeddings are generated before anything is deleted, so a failed
        embedding run leaves the previous knowledge in place.

        Returns:
            Dict with chunk counts by kind
        """
        chunks = await self._embed(await self.build_chunks(tenant_id))

        for kind in (ChunkKind.SCHEMA, ChunkKind.MENU, ChunkKind.TABLE, ChunkKind.API, ChunkKind.INTENT_EXAMPLE):
            await self.knowledge_store.delete_chunks(tenant_id, kind)
        stored = await self.knowledge_store.insert_chunks(tenant_id, chunks)

        if self.retrieval is not None:
            await self.retrieval.refresh(tenant_id)

        by_kind: Dict[str, int] = {}
        for chunk in chunks:
            by_kind[chunk.kind.value] = by_kind.get(chunk.kind.value, 0) + 1
        logger.info(f"Indexed {stored} knowledge chunks for tenant {tenant_id}: {by_kind}")
        return {"tenant_id": tenant_id, "chunks": stored, "by_kind": by_kind}

    async def add_document_text(self, tenant_id: str, title: str, text: str) -> int:
        """
        Store already-extracted document text as document chunks.

        Args:
            tenant_id: Tenant ID
            title: Document title, used in chunk ids
            text: Plain text content

        Returns:
            Number of chunks stored
        """
        now = datetime.utcnow()
        pieces = [piece for piece in chunk_text(text.strip()) if piece]
        chunks = [
            KnowledgeChunk(
                id=f"{tenant_id}_{ChunkKind.DOCUMENT.value}_{_slug(title)}_{index}",
                tenant_id=tenant_id,
                kind=ChunkKind.DOCUMENT,
                text=f"{title}: {piece}",
                created_at=now,
            )
            for index, piece in enumerate(pieces)
        ]
        if not chunks:
            return 0
        stored = await self.knowledge_store.insert_chunks(tenant_id, await self._embed(chunks))
        if self.retrieval is not None:
            await self.retrieval.refresh(tenant_id)
        return stored

    async def clear_knowledge(self, tenant_id: str) -> int:
        """Delete every chunk of a tenant, including documents."""
        deleted = await self.knowledge_store.delete_chunks(tenant_id)
        if self.retrieval is not None:
            await self.retrieval.refresh(tenant_id)
        logger.info(f"Cleared {deleted} knowledge chunks for tenant {tenant_id}")
        return deleted

    async def has_knowledge(self, tenant_id: str) -> bool:
        return await self.knowledge_store.has_knowledge(tenant_id)
