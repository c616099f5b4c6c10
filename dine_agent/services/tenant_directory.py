"""Tenant membership and settings lookups."""

import logging
from typing import Optional

from dine_agent.infra.document_store import DocumentStore
from dine_agent.models.tenant import TenantMembership, TenantSettings

logger = logging.getLogger(__name__)

MEMBERSHIPS = "memberships"
TENANTS = "tenants"


def membership_doc_id(user_id: str, tenant_id: str) -> str:
    return f"{user_id}_{tenant_id}"


class TenantDirectory:
    """Reads the user-to-restaurant relation and restaurant settings."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_role(self, user_id: str, tenant_id: str) -> Optional[TenantMembership]:
        """
        Get a user's membership in a restaurant.

        Returns:
            TenantMembership, or None if the user has no active membership
        """
        doc = await self.store.get(MEMBERSHIPS, membership_doc_id(user_id, tenant_id), tenant_id=tenant_id)
        if not doc or doc.get("tenant_id") != tenant_id or doc.get("user_id") != user_id:
            return None
        if doc.get("is_active") is False:
            logger.info(f"Inactive membership for user {user_id} in tenant {tenant_id}")
            return None

        return TenantMembership(
            user_id=user_id,
            tenant_id=tenant_id,
            role=str(doc.get("role", "employee")).lower(),
            permissions=frozenset(str(p).lower() for p in doc.get("permissions") or []),
            display_name=doc.get("display_name"),
        )

    async def get_settings(self, tenant_id: str) -> TenantSettings:
        """Get restaurant settings; defaults apply when none are stored."""
        doc = await self.store.get(TENANTS, tenant_id, tenant_id=tenant_id)
        if not doc:
            return TenantSettings(tenant_id=tenant_id)

        tax = doc.get("tax") or {}
        return TenantSettings(
            tenant_id=tenant_id,
            name=doc.get("name") or TenantSettings.name,
            tax_enabled=bool(tax.get("enabled", False)),
            tax_rate=float(tax.get("rate", 0) or 0),
            currency=doc.get("currency") or TenantSettings.currency,
        )
