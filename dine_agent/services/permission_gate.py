"""Role and permission checks for actions."""

import logging
from dataclasses import dataclass
from typing import Optional

from dine_agent.infra.document_store import DocumentStore
from dine_agent.infra.metrics import permission_denials_total
from dine_agent.logging.event_logger import log_event
from dine_agent.models.action import ActionName
from dine_agent.services.action_catalog import ACTION_CATALOG
from dine_agent.services.tenant_directory import TenantDirectory

logger = logging.getLogger(__name__)

NO_ACCESS_REASON = "You don't have access to this restaurant."


@dataclass(frozen=True)
class PermissionDecision:
    allowed: bool
    reason: Optional[str] = None
    no_membership: bool = False


class PermissionGate:
    """
    Decides whether a user may run an action in a restaurant.

    Owners and managers may run everything. Other roles need at least one of
    the action's required permissions in their explicit permission set.
    """

    def __init__(self, directory: TenantDirectory, audit_store: Optional[DocumentStore] = None):
        self.directory = directory
        self.audit_store = audit_store

    async def check(self, user_id: str, tenant_id: str, action_name: ActionName) -> PermissionDecision:
        membership = await self.directory.get_role(user_id, tenant_id)
        descriptor = ACTION_CATALOG[action_name]

        if membership is None:
            decision = PermissionDecision(allowed=False, reason=NO_ACCESS_REASON, no_membership=True)
        elif membership.bypasses_permission_checks:
            decision = PermissionDecision(allowed=True)
        elif descriptor.required_permissions & membership.permissions:
            decision = PermissionDecision(allowed=True)
        else:
            required = " or ".join(sorted(descriptor.required_permissions))
            purpose = descriptor.description[:1].lower() + descriptor.description[1:]
            decision = PermissionDecision(
                allowed=False,
                reason=f"You don't have permission to {purpose}. Required: {required}.",
            )

        if decision.allowed:
            logger.debug(f"Permission granted: user={user_id} tenant={tenant_id} action={action_name.value}")
        else:
            permission_denials_total.labels(action=action_name.value).inc()
            await log_event(
                tenant_id=tenant_id,
                event_type="permission_denied",
                user_id=user_id,
                action_name=action_name.value,
                status="failure",
                reason="no_membership" if decision.no_membership else "insufficient_permission",
                store=self.audit_store,
            )
        return decision
