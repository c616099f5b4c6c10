"""Tests for action execution against the document store."""

import pytest

from conftest import TENANT, TODAY
from dine_agent.infra.error_handler import FailureReason
from dine_agent.models.action import ActionName
from dine_agent.services.action_executor import COUNTERS, ORDERS


async def _orders(store):
    return await store.query(ORDERS, {"tenant_id": TENANT})


class TestTables:
    """Table listing, status changes and reservations."""

    @pytest.mark.asyncio
    async def test_get_tables_stats(self, executor):
        result = await executor.execute(ActionName.GET_TABLES, {}, TENANT, "u_owner")
        assert result.success
        stats = result.data["stats"]
        assert stats["total"] == 12
        assert stats["available"] == 5
        assert stats["occupied"] == 7
        assert result.data["by_floor"]["Ground"]["available"] == 5
        assert result.data["by_floor"]["Terrace"]["occupied"] == 6

    @pytest.mark.asyncio
    async def test_get_tables_never_returns_other_tenants(self, executor):
        result = await executor.execute(ActionName.GET_TABLES, {}, TENANT, "u_owner")
        assert all(t["id"] != "x1" for t in result.data["tables"])

    @pytest.mark.asyncio
    async def test_status_synonym_filter(self, executor):
        result = await executor.execute(ActionName.GET_TABLES, {"status": "serving"}, TENANT, "u_owner")
        assert result.data["status_filter"] == "occupied"
        assert result.data["count"] == 7
        assert result.data["stats"]["total"] == 12

    @pytest.mark.asyncio
    async def test_unknown_status_is_invalid(self, executor):
        result = await executor.execute(ActionName.GET_TABLES, {"status": "flying"}, TENANT, "u_owner")
        assert not result.success
        assert result.reason == FailureReason.INVALID_STATE

    @pytest.mark.asyncio
    async def test_update_status(self, executor, store):
        result = await executor.execute(
            ActionName.UPDATE_TABLE_STATUS, {"table": "table 3", "status": "cleaning"}, TENANT, "u_waiter"
        )
        assert result.success
        assert result.data["changed"] is True
        assert result.data["previous_status"] == "available"
        table = await store.get("tables", "t3")
        assert table["status"] == "cleaning"
        assert table["updated_by"] == "u_waiter"

    @pytest.mark.asyncio
    async def test_same_status_writes_nothing(self, executor, store):
        result = await executor.execute(
            ActionName.UPDATE_TABLE_STATUS, {"table": "2", "status": "free"}, TENANT, "u_waiter"
        )
        assert result.success
        assert result.data["changed"] is False
        assert "updated_at" not in await store.get("tables", "t2")

    @pytest.mark.asyncio
    async def test_available_clears_current_order(self, executor, store):
        await executor.execute(ActionName.UPDATE_TABLE_STATUS, {"table": "6", "status": "available"}, TENANT, "u_owner")
        table = await store.get("tables", "t6")
        assert table["status"] == "available"
        assert table["current_order_id"] is None

    @pytest.mark.asyncio
    async def test_unknown_table(self, executor):
        result = await executor.execute(
            ActionName.UPDATE_TABLE_STATUS, {"table": "99", "status": "cleaning"}, TENANT, "u_owner"
        )
        assert result.reason == FailureReason.NOT_FOUND

    @pytest.mark.asyncio
    async def test_reserve_requires_available_table(self, executor, store):
        result = await executor.execute(ActionName.RESERVE_TABLE, {"table": "7"}, TENANT, "u_owner")
        assert result.reason == FailureReason.INVALID_STATE
        assert (await store.get("tables", "t7"))["status"] == "occupied"

    @pytest.mark.asyncio
    async def test_reserve(self, executor, store):
        result = await executor.execute(
            ActionName.RESERVE_TABLE,
            {"table": "4", "guests": "3", "customer_phone": "+91 98765 43210", "reservation_time": "19:30"},
            TENANT,
            "u_owner",
        )
        assert result.success
        table = await store.get("tables", "t4")
        assert table["status"] == "reserved"
        assert table["reservation"]["guests"] == 3
        assert table["reservation"]["customer_phone"] == "9876543210"


class TestPlaceOrder:
    """Order placement with tax, variants, table and customer side effects."""

    @pytest.mark.asyncio
    async def test_tax_is_applied(self, executor, store):
        result = await executor.execute(
            ActionName.PLACE_ORDER,
            {"items": [{"name": "Chicken Biryani", "quantity": 2}], "table_number": "1"},
            TENANT,
            "u_waiter",
        )
        assert result.success
        assert result.data["subtotal"] == 200.0
        assert result.data["tax_amount"] == 10.0
        assert result.data["final_amount"] == 210.0
        assert result.data["order_number"].startswith("ORD-")
        assert result.data["daily_order_id"] == 1

        table = await store.get("tables", "t1")
        assert table["status"] == "occupied"
        assert table["current_order_id"] == result.data["order_id"]

        order = await store.get(ORDERS, result.data["order_id"])
        assert order["status"] == "confirmed"
        assert order["payment_status"] == "pending"
        assert order["order_date"] == TODAY

    @pytest.mark.asyncio
    async def test_daily_order_ids_increase(self, executor):
        first = await executor.execute(ActionName.PLACE_ORDER, {"items": ["Veg Biryani"]}, TENANT, "u_waiter")
        second = await executor.execute(ActionName.PLACE_ORDER, {"items": ["Veg Biryani"]}, TENANT, "u_waiter")
        assert second.data["daily_order_id"] == first.data["daily_order_id"] + 1
        assert first.data["order_number"] != second.data["order_number"]

    @pytest.mark.asyncio
    async def test_variant_and_customization_prices(self, executor):
        result = await executor.execute(
            ActionName.PLACE_ORDER,
            {"items": [{"name": "paneer tikka", "variant": "large", "customizations": ["Extra Cheese"]}]},
            TENANT,
            "u_waiter",
        )
        assert result.success
        assert result.data["items"][0]["unit_price"] == 330.0
        assert result.data["tax_amount"] == 16.5
        assert result.data["final_amount"] == 346.5

    @pytest.mark.asyncio
    async def test_unknown_variant_writes_nothing(self, executor, store):
        result = await executor.execute(
            ActionName.PLACE_ORDER, {"items": [{"name": "Paneer Tikka", "variant": "Jumbo"}]}, TENANT, "u_waiter"
        )
        assert result.reason == FailureReason.NOT_FOUND
        assert len(await _orders(store)) == 4

    @pytest.mark.asyncio
    async def test_unavailable_item(self, executor):
        result = await executor.execute(ActionName.PLACE_ORDER, {"items": ["Masala Dosa"]}, TENANT, "u_waiter")
        assert result.reason == FailureReason.INVALID_STATE
        assert "unavailable" in result.error

    @pytest.mark.asyncio
    async def test_occupied_table_rejects_order(self, executor, store):
        result = await executor.execute(
            ActionName.PLACE_ORDER, {"items": ["Veg Biryani"], "table_number": "8"}, TENANT, "u_waiter"
        )
        assert result.reason == FailureReason.INVALID_STATE
        assert len(await _orders(store)) == 4
        assert await store.get_counters(COUNTERS, f"daily_order:{TENANT}:{TODAY}", TENANT) == {}

    @pytest.mark.asyncio
    async def test_existing_customer_is_updated(self, executor, store):
        result = await executor.execute(
            ActionName.PLACE_ORDER,
            {"items": ["Veg Biryani"], "customer_phone": "+91 98765 43210"},
            TENANT,
            "u_waiter",
        )
        customer = await store.get("customers", "c1")
        assert customer["order_count"] == 3
        assert customer["total_spent"] == 789.0
        assert customer["order_history"][-1]["order_id"] == result.data["order_id"]
        assert (await store.get(ORDERS, result.data["order_id"]))["customer_id"] == "c1"

    @pytest.mark.asyncio
    async def test_new_customer_is_created(self, executor, store):
        await executor.execute(
            ActionName.PLACE_ORDER,
            {"items": ["Veg Biryani"], "customer_phone": "9999988888", "customer_name": "Meera"},
            TENANT,
            "u_waiter",
        )
        found = await store.query("customers", {"tenant_id": TENANT, "phone": "9999988888"})
        assert len(found) == 1
        assert found[0]["order_count"] == 1


class TestOrders:
    """Order listing and cancellation."""

    @pytest.mark.asyncio
    async def test_get_orders_newest_first(self, executor):
        result = await executor.execute(ActionName.GET_ORDERS, {}, TENANT, "u_owner")
        assert [o["id"] for o in result.data["orders"]] == ["o3", "o2", "o1", "o4"]
        assert result.data["status_counts"] == {"completed": 2, "cancelled": 1, "confirmed": 1}

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, executor):
        result = await executor.execute(ActionName.GET_ORDERS, {"limit": 0}, TENANT, "u_owner")
        assert result.data["returned"] == 1
        assert result.data["count"] == 4

    @pytest.mark.asyncio
    async def test_get_order_by_daily_number(self, executor):
        result = await executor.execute(ActionName.GET_ORDER_BY_ID, {"order_id": "#3"}, TENANT, "u_owner")
        assert result.data["order"]["id"] == "o3"

    @pytest.mark.asyncio
    async def test_cancel(self, executor, store):
        result = await executor.execute(
            ActionName.CANCEL_ORDER, {"order_id": "ORD-3000-CCCC", "reason": "Guest left"}, TENANT, "u_owner"
        )
        assert result.success
        order = await store.get(ORDERS, "o3")
        assert order["status"] == "cancelled"
        assert order["cancel_reason"] == "Guest left"
        assert order["cancelled_by"] == "u_owner"

    @pytest.mark.asyncio
    async def test_completed_order_cannot_be_cancelled(self, executor, store):
        result = await executor.execute(ActionName.CANCEL_ORDER, {"order_id": "ORD-1000-AAAA"}, TENANT, "u_owner")
        assert result.reason == FailureReason.INVALID_STATE
        assert (await store.get(ORDERS, "o1"))["status"] == "completed"


class TestMenu:
    """Menu listing, search and edits."""

    @pytest.mark.asyncio
    async def test_get_menu_counts(self, executor):
        result = await executor.execute(ActionName.GET_MENU, {}, TENANT, "u_owner")
        assert result.data["count"] == 4
        assert result.data["veg_count"] == 3
        assert result.data["non_veg_count"] == 1
        assert result.data["available_count"] == 3
        assert result.data["by_category"]["Main Course"] == 2

    @pytest.mark.asyncio
    async def test_veg_filter(self, executor):
        result = await executor.execute(ActionName.GET_MENU, {"is_veg": "non-veg"}, TENANT, "u_owner")
        assert [i["name"] for i in result.data["items"]] == ["Chicken Biryani"]

    @pytest.mark.asyncio
    async def test_search_ranks_name_matches_first(self, executor):
        result = await executor.execute(ActionName.SEARCH_MENU_ITEMS, {"search_term": "cheese"}, TENANT, "u_owner")
        assert [i["name"] for i in result.data["items"]] == ["Paneer Tikka"]

        result = await executor.execute(ActionName.SEARCH_MENU_ITEMS, {"search_term": "veg biryani"}, TENANT, "u_owner")
        assert result.data["items"][0]["name"] == "Veg Biryani"

    @pytest.mark.asyncio
    async def test_add_duplicate_is_rejected(self, executor):
        result = await executor.execute(
            ActionName.ADD_MENU_ITEM, {"name": "paneer tikka", "price": 200, "category": "Starters"}, TENANT, "u_owner"
        )
        assert result.reason == FailureReason.INVALID_STATE

    @pytest.mark.asyncio
    async def test_add_rejects_negative_price(self, executor):
        result = await executor.execute(
            ActionName.ADD_MENU_ITEM, {"name": "Lassi", "price": -5, "category": "Drinks"}, TENANT, "u_owner"
        )
        assert result.reason == FailureReason.INVALID_STATE

    @pytest.mark.asyncio
    async def test_add_and_update(self, executor):
        added = await executor.execute(
            ActionName.ADD_MENU_ITEM, {"name": "Lassi", "price": "60", "category": "Drinks"}, TENANT, "u_owner"
        )
        assert added.data["item"]["price"] == 60.0
        assert added.data["item"]["is_veg"] is True

        updated = await executor.execute(
            ActionName.UPDATE_MENU_ITEM, {"menu_item": "Lassi", "price": 70, "is_available": "no"}, TENANT, "u_owner"
        )
        assert updated.data["changes"] == ["is_available", "price"]
        assert updated.data["item"]["price"] == 70.0

    @pytest.mark.asyncio
    async def test_update_without_changes(self, executor):
        result = await executor.execute(ActionName.UPDATE_MENU_ITEM, {"menu_item": "Veg Biryani"}, TENANT, "u_owner")
        assert result.reason == FailureReason.INVALID_STATE

    @pytest.mark.asyncio
    async def test_delete_needs_exact_name(self, executor, store):
        result = await executor.execute(ActionName.DELETE_MENU_ITEM, {"menu_item": "paneer"}, TENANT, "u_owner")
        assert result.reason == FailureReason.NOT_FOUND

        result = await executor.execute(ActionName.DELETE_MENU_ITEM, {"menu_item": "Paneer Tikka"}, TENANT, "u_owner")
        assert result.success
        assert (await store.get("menu_items", "m1"))["is_deleted"] is True

        menu = await executor.execute(ActionName.GET_MENU, {}, TENANT, "u_owner")
        assert menu.data["count"] == 3


class TestSalesAndCustomers:
    """Sales summary and customer records."""

    @pytest.mark.asyncio
    async def test_sales_summary_excludes_cancelled(self, executor):
        result = await executor.execute(ActionName.GET_SALES_SUMMARY, {}, TENANT, "u_cashier")
        assert result.data["date"] == TODAY
        assert result.data["total_revenue"] == 420.0
        assert result.data["total_orders"] == 2
        assert result.data["average_order_value"] == 210.0
        assert result.data["cancelled_orders"] == 1
        assert result.data["top_items"][0] == {"name": "Veg Biryani", "quantity": 2}

    @pytest.mark.asyncio
    async def test_sales_for_other_day(self, executor):
        result = await executor.execute(ActionName.GET_SALES_SUMMARY, {"date": "2026-10-18"}, TENANT, "u_cashier")
        assert result.data["total_revenue"] == 500.0

    @pytest.mark.asyncio
    async def test_bad_date(self, executor):
        result = await executor.execute(ActionName.GET_SALES_SUMMARY, {"date": "yesterday-ish"}, TENANT, "u_cashier")
        assert result.reason == FailureReason.INVALID_STATE

    @pytest.mark.asyncio
    async def test_customer_search(self, executor):
        result = await executor.execute(ActionName.GET_CUSTOMERS, {"search": "ravi"}, TENANT, "u_owner")
        assert result.data["count"] == 2

    @pytest.mark.asyncio
    async def test_get_customer_history(self, executor):
        result = await executor.execute(ActionName.GET_CUSTOMER, {"customer": "9876543210"}, TENANT, "u_owner")
        assert result.data["customer"]["name"] == "Asha Rao"
        assert result.data["recent_orders"][0]["order_id"] == "o1"

    @pytest.mark.asyncio
    async def test_add_customer_upserts_by_phone(self, executor):
        created = await executor.execute(
            ActionName.ADD_CUSTOMER, {"phone": "98111 22333", "name": "Nina"}, TENANT, "u_owner"
        )
        assert created.data["created"] is True

        again = await executor.execute(
            ActionName.ADD_CUSTOMER, {"phone": "+91 9811122333", "email": "nina@example.com"}, TENANT, "u_owner"
        )
        assert again.data["created"] is False
        assert again.data["customer"]["email"] == "nina@example.com"

    @pytest.mark.asyncio
    async def test_short_phone_is_rejected(self, executor):
        result = await executor.execute(ActionName.ADD_CUSTOMER, {"phone": "12345"}, TENANT, "u_owner")
        assert result.reason == FailureReason.INVALID_STATE
