"""Tenant membership and settings models."""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional


BYPASS_ROLES = frozenset({"owner", "manager"})


@dataclass(frozen=True)
class TenantMembership:
    """A user's role and explicit permissions within one restaurant."""
    user_id: str
    tenant_id: str
    role: str  # "owner" | "manager" | "employee" | "waiter" | "cashier" ...
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    display_name: Optional[str] = None

    @property
    def bypasses_permission_checks(self) -> bool:
        return self.role in BYPASS_ROLES


@dataclass(frozen=True)
class TenantSettings:
    """Restaurant configuration the executor depends on."""
    tenant_id: str
    name: str = "your restaurant"
    tax_enabled: bool = False
    tax_rate: float = 0.0  # percent, e.g. 5.0
    currency: str = "INR"
