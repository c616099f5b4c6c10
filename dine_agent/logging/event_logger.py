"""Audit event logging."""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from dine_agent.infra.document_store import DocumentStore, WriteOp
from dine_agent.infra.error_handler import StorageUnavailableError

logger = logging.getLogger("dine_agent.audit")

AUDIT_EVENTS = "audit_events"


async def log_event(
    tenant_id: str,
    event_type: str,
    user_id: Optional[str] = None,
    action_name: Optional[str] = None,
    status: str = "success",
    reason: Optional[str] = None,
    latency_ms: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
    store: Optional[DocumentStore] = None,
) -> None:
    """
    Log an audit event and persist it when a store is given.

    Args:
        tenant_id: Tenant ID
        event_type: Event type (e.g. 'permission_check', 'action_executed', 'query_failed')
        user_id: Acting user
        action_name: Action involved, if any
        status: 'success' | 'failure'
        reason: Failure reason value, if any
        latency_ms: Latency in milliseconds
        payload: Additional details (must not contain customer PII)
        store: Document store for the audit_events collection
    """
    record = {
        "tenant_id": tenant_id,
        "user_id": user_id,
        "event_type": event_type,
        "action_name": action_name,
        "status": status,
        "reason": reason,
        "latency_ms": latency_ms,
        "payload": payload or {},
        "created_at": datetime.utcnow().isoformat(),
    }

    level = logging.WARNING if status == "failure" else logging.INFO
    logger.log(level, f"{event_type} {status}", extra={k: v for k, v in record.items() if k != "payload"})

    if store is None:
        return
    try:
        await store.batch_write([
            WriteOp("set", AUDIT_EVENTS, str(uuid.uuid4()), record, tenant_id=tenant_id)
        ])
    except StorageUnavailableError as e:
        logger.warning(f"Failed to persist audit event {event_type}: {e}")
