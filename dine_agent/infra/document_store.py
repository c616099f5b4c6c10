"""Document store collaborator: get, equality query, batched write, atomic increment."""

import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from dine_agent.infra.database import get_db_session
from dine_agent.infra.error_handler import StorageUnavailableError
from dine_agent.infra.timeout import STORAGE_CALL_TIMEOUT

logger = logging.getLogger(__name__)


@dataclass
class WriteOp:
    """One operation in a batched write."""
    kind: str  # "set" (replace) | "update" (merge, creating if absent) | "delete"
    collection: str
    doc_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    tenant_id: Optional[str] = None

    def __post_init__(self):
        if self.kind not in ("set", "update", "delete"):
            raise ValueError(f"Unknown write kind: {self.kind}")


class DocumentStore(ABC):
    """
    Primitive operations the assistant needs from its backing store.

    Documents are JSON objects carrying their own ``id``. Counters live in a
    separate namespace and are only changed through ``increment``.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str, tenant_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Fetch one document by id."""

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Dict[str, Any],
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return documents whose fields equal every filter value, in storage order."""

    @abstractmethod
    async def batch_write(self, ops: List[WriteOp]) -> None:
        """Apply all operations atomically."""

    @abstractmethod
    async def increment(
        self,
        collection: str,
        doc_id: str,
        deltas: Dict[str, float],
        tenant_id: Optional[str] = None,
    ) -> Dict[str, float]:
        """Atomically add deltas to counter fields and return their new values."""

    @abstractmethod
    async def get_counters(self, collection: str, doc_id: str, tenant_id: Optional[str] = None) -> Dict[str, float]:
        """Read counter fields (missing counters are absent from the result)."""


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store for development and tests."""

    def __init__(self):
        self._docs: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._counters: Dict[str, Dict[str, Dict[str, float]]] = {}
        self._lock = asyncio.Lock()
        self.write_count = 0

    def seed(self, collection: str, docs: List[Dict[str, Any]]) -> None:
        """Insert documents synchronously (fixtures and scripts)."""
        bucket = self._docs.setdefault(collection, {})
        for doc in docs:
            bucket[doc["id"]] = copy.deepcopy(doc)

    async def get(self, collection: str, doc_id: str, tenant_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        doc = self._docs.get(collection, {}).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def query(
        self,
        collection: str,
        filters: Dict[str, Any],
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        results = []
        for doc in self._docs.get(collection, {}).values():
            if all(doc.get(key) == value for key, value in filters.items()):
                results.append(copy.deepcopy(doc))
                if limit is not None and len(results) >= limit:
                    break
        return results

    async def batch_write(self, ops: List[WriteOp]) -> None:
        async with self._lock:
            for op in ops:
                bucket = self._docs.setdefault(op.collection, {})
                if op.kind == "set":
                    bucket[op.doc_id] = {**copy.deepcopy(op.data), "id": op.doc_id}
                elif op.kind == "update":
                    existing = bucket.get(op.doc_id, {"id": op.doc_id})
                    existing.update(copy.deepcopy(op.data))
                    bucket[op.doc_id] = existing
                else:
                    bucket.pop(op.doc_id, None)
                self.write_count += 1

    async def increment(
        self,
        collection: str,
        doc_id: str,
        deltas: Dict[str, float],
        tenant_id: Optional[str] = None,
    ) -> Dict[str, float]:
        async with self._lock:
            counters = self._counters.setdefault(collection, {}).setdefault(doc_id, {})
            for name, delta in deltas.items():
                counters[name] = counters.get(name, 0) + delta
            return {name: counters[name] for name in deltas}

    async def get_counters(self, collection: str, doc_id: str, tenant_id: Optional[str] = None) -> Dict[str, float]:
        return dict(self._counters.get(collection, {}).get(doc_id, {}))


class SqlDocumentStore(DocumentStore):
    """
    PostgreSQL store over the ``documents`` (JSONB) and ``counters`` tables.

    SQLAlchemy calls are synchronous; each runs in a worker thread under a
    bounded timeout so the event loop never blocks on the database.
    """

    def __init__(self, timeout: float = STORAGE_CALL_TIMEOUT):
        self.timeout = timeout

    async def _run(self, operation: str, func: Callable[[], Any]) -> Any:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.error(f"Storage {operation} timed out after {self.timeout}s")
            raise StorageUnavailableError(f"Storage {operation} timed out") from e
        except SQLAlchemyError as e:
            logger.error(f"Storage {operation} failed: {e}")
            raise StorageUnavailableError(f"Storage {operation} failed") from e

    async def get(self, collection: str, doc_id: str, tenant_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        def _get():
            with get_db_session(tenant_id) as session:
                row = session.execute(
                    text("SELECT data FROM documents WHERE collection = :collection AND id = :id"),
                    {"collection": collection, "id": doc_id},
                ).fetchone()
                return dict(row.data) if row else None

        return await self._run("get", _get)

    async def query(
        self,
        collection: str,
        filters: Dict[str, Any],
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        sql = """
            SELECT data FROM documents
            WHERE collection = :collection
              AND data @> CAST(:filters AS jsonb)
            ORDER BY created_at, id
        """
        params: Dict[str, Any] = {"collection": collection, "filters": json.dumps(filters)}
        if limit is not None:
            sql += " LIMIT :limit"
            params["limit"] = limit

        def _query():
            with get_db_session(filters.get("tenant_id")) as session:
                rows = session.execute(text(sql), params).fetchall()
                return [dict(row.data) for row in rows]

        return await self._run("query", _query)

    async def batch_write(self, ops: List[WriteOp]) -> None:
        tenant_ids = {op.tenant_id for op in ops if op.tenant_id}
        if len(tenant_ids) > 1:
            raise ValueError("A batched write must stay within one tenant")
        tenant_id = next(iter(tenant_ids), None)

        def _write():
            # One session, one transaction: all operations commit or none do
            with get_db_session(tenant_id) as session:
                for op in ops:
                    if op.kind == "delete":
                        session.execute(
                            text("DELETE FROM documents WHERE collection = :collection AND id = :id"),
                            {"collection": op.collection, "id": op.doc_id},
                        )
                        continue
                    payload = json.dumps({**op.data, "id": op.doc_id}, default=str)
                    merge = "documents.data || EXCLUDED.data" if op.kind == "update" else "EXCLUDED.data"
                    session.execute(
                        text(f"""
                            INSERT INTO documents (collection, id, tenant_id, data)
                            VALUES (:collection, :id, :tenant_id, CAST(:data AS jsonb))
                            ON CONFLICT (collection, id) DO UPDATE
                            SET data = {merge}, updated_at = NOW()
                        """),
                        {
                            "collection": op.collection,
                            "id": op.doc_id,
                            "tenant_id": op.tenant_id,
                            "data": payload,
                        },
                    )

        await self._run("batch_write", _write)

    async def increment(
        self,
        collection: str,
        doc_id: str,
        deltas: Dict[str, float],
        tenant_id: Optional[str] = None,
    ) -> Dict[str, float]:
        def _increment():
            values = {}
            with get_db_session(tenant_id) as session:
                for name, delta in deltas.items():
                    # Single-statement read-modify-write; concurrent callers serialize on the row
                    row = session.execute(
                        text("""
                            INSERT INTO counters (collection, id, field, tenant_id, value)
                            VALUES (:collection, :id, :field, :tenant_id, :delta)
                            ON CONFLICT (collection, id, field) DO UPDATE
                            SET value = counters.value + EXCLUDED.value
                            RETURNING value
                        """),
                        {
                            "collection": collection,
                            "id": doc_id,
                            "field": name,
                            "tenant_id": tenant_id,
                            "delta": delta,
                        },
                    ).fetchone()
                    values[name] = float(row.value)
            return values

        return await self._run("increment", _increment)

    async def get_counters(self, collection: str, doc_id: str, tenant_id: Optional[str] = None) -> Dict[str, float]:
        def _get_counters():
            with get_db_session(tenant_id) as session:
                rows = session.execute(
                    text("SELECT field, value FROM counters WHERE collection = :collection AND id = :id"),
                    {"collection": collection, "id": doc_id},
                ).fetchall()
                return {row.field: float(row.value) for row in rows}

        return await self._run("get_counters", _get_counters)
