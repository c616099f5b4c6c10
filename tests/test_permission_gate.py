"""Tests for tenant membership lookups and permission checks."""

import pytest

from conftest import OTHER_TENANT, TENANT
from dine_agent.logging.event_logger import AUDIT_EVENTS
from dine_agent.models.action import ActionName
from dine_agent.services.permission_gate import NO_ACCESS_REASON, PermissionGate


class TestTenantDirectory:
    """Membership and settings reads."""

    @pytest.mark.asyncio
    async def test_role_is_lowercased(self, directory):
        membership = await directory.get_role("u_manager", TENANT)
        assert membership.role == "manager"
        assert membership.bypasses_permission_checks

    @pytest.mark.asyncio
    async def test_membership_is_per_tenant(self, directory):
        assert await directory.get_role("u_other", TENANT) is None
        assert await directory.get_role("u_other", OTHER_TENANT) is not None

    @pytest.mark.asyncio
    async def test_inactive_membership(self, directory):
        assert await directory.get_role("u_former", TENANT) is None

    @pytest.mark.asyncio
    async def test_settings(self, directory):
        settings = await directory.get_settings(TENANT)
        assert settings.name == "Spice Garden"
        assert settings.tax_enabled is True
        assert settings.tax_rate == 5.0

    @pytest.mark.asyncio
    async def test_missing_settings_use_defaults(self, directory):
        settings = await directory.get_settings("rest_unknown")
        assert settings.tax_enabled is False
        assert settings.currency == "INR"


class TestPermissionGate:
    """Role bypass and explicit permission checks."""

    @pytest.fixture
    def gate(self, directory, store):
        return PermissionGate(directory, audit_store=store)

    @pytest.mark.asyncio
    async def test_owner_may_do_everything(self, gate):
        for action in ActionName:
            decision = await gate.check("u_owner", TENANT, action)
            assert decision.allowed, action

    @pytest.mark.asyncio
    async def test_any_listed_permission_is_enough(self, gate):
        # get_menu accepts either "menu" or "orders"
        assert (await gate.check("u_waiter", TENANT, ActionName.GET_MENU)).allowed

    @pytest.mark.asyncio
    async def test_missing_permission_is_denied(self, gate, store):
        decision = await gate.check("u_waiter", TENANT, ActionName.ADD_MENU_ITEM)
        assert not decision.allowed
        assert "add items to the menu" in decision.reason
        assert "menu" in decision.reason

        events = await store.query(AUDIT_EVENTS, {"tenant_id": TENANT, "event_type": "permission_denied"})
        assert len(events) == 1
        assert events[0]["reason"] == "insufficient_permission"

    @pytest.mark.asyncio
    async def test_no_membership(self, gate):
        decision = await gate.check("u_other", TENANT, ActionName.GET_TABLES)
        assert not decision.allowed
        assert decision.no_membership
        assert decision.reason == NO_ACCESS_REASON

    @pytest.mark.asyncio
    async def test_cashier_sees_sales_only(self, gate):
        assert (await gate.check("u_cashier", TENANT, ActionName.GET_SALES_SUMMARY)).allowed
        assert not (await gate.check("u_cashier", TENANT, ActionName.GET_TABLES)).allowed
