"""Tests for table, menu, order and customer resolution."""

import pytest

from dine_agent.infra.error_handler import FailureReason
from dine_agent.services.entity_resolution import (
    ActionFailure,
    menu_match_score,
    normalize_phone,
    resolve_customer,
    resolve_menu_item,
    resolve_order,
    resolve_table,
)


TABLES = [
    {"id": "t1", "name": "1", "floor": "Ground", "status": "available"},
    {"id": "t10", "name": "10", "floor": "Ground", "status": "occupied"},
    {"id": "t1b", "name": "1", "floor": "Terrace", "status": "available"},
    {"id": "t5", "name": "T5", "floor": "Ground", "status": "cleaning"},
]


class TestResolveTable:
    """Table lookup by name or id."""

    def test_table_prefix_is_ignored(self):
        table = resolve_table(TABLES, "table no. 10")
        assert table["id"] == "t10"

    def test_lookup_by_id(self):
        assert resolve_table(TABLES, "t1b")["floor"] == "Terrace"

    def test_name_on_two_floors_is_ambiguous(self):
        with pytest.raises(ActionFailure) as exc:
            resolve_table(TABLES, "1")
        assert exc.value.reason == FailureReason.INVALID_STATE
        assert "Ground" in exc.value.message and "Terrace" in exc.value.message

    def test_floor_disambiguates(self):
        assert resolve_table(TABLES, "1", floor="terrace")["id"] == "t1b"

    def test_partial_names_never_match(self):
        with pytest.raises(ActionFailure) as exc:
            resolve_table(TABLES, "0")
        assert exc.value.reason == FailureReason.NOT_FOUND

    def test_empty_identifier(self):
        with pytest.raises(ActionFailure) as exc:
            resolve_table(TABLES, "table")
        assert exc.value.reason == FailureReason.NOT_FOUND


class TestResolveMenuItem:
    """Menu lookup: id, exact name, then fuzzy score above the threshold."""

    ITEMS = [
        {"id": "m1", "name": "Paneer Tikka"},
        {"id": "m2", "name": "Veg Roll"},
        {"id": "m3", "name": "Egg Roll"},
        {"id": "m4", "name": "Paneer Butter Masala", "is_deleted": True},
    ]

    def test_exact_name_case_insensitive(self):
        assert resolve_menu_item(self.ITEMS, "  paneer TIKKA ")["id"] == "m1"

    def test_fuzzy_match(self):
        assert resolve_menu_item(self.ITEMS, "paneer")["id"] == "m1"

    def test_equal_scores_keep_storage_order(self):
        assert resolve_menu_item(self.ITEMS, "roll")["id"] == "m2"

    def test_low_score_is_not_found(self):
        with pytest.raises(ActionFailure) as exc:
            resolve_menu_item(self.ITEMS, "a")
        assert exc.value.reason == FailureReason.NOT_FOUND

    def test_deleted_items_are_ignored(self):
        with pytest.raises(ActionFailure):
            resolve_menu_item(self.ITEMS, "Paneer Butter Masala")

    def test_fuzzy_can_be_disabled(self):
        with pytest.raises(ActionFailure):
            resolve_menu_item(self.ITEMS, "paneer", allow_fuzzy=False)

    def test_match_score(self):
        assert menu_match_score("Paneer Tikka", "paneer tikka") == 1.0
        assert menu_match_score("paneer", "Paneer Tikka") == 0.5
        assert menu_match_score("dosa", "Paneer Tikka") == 0.0


class TestResolveOrder:
    """Order lookup by id, order number or today's daily number."""

    ORDERS = [
        {"id": "o1", "order_number": "ORD-1-AAAA", "daily_order_id": 1, "order_date": "2026-10-19"},
        {"id": "o2", "order_number": "ORD-2-BBBB", "daily_order_id": 2, "order_date": "2026-10-19"},
        {"id": "o9", "order_number": "ORD-9-ZZZZ", "daily_order_id": 2, "order_date": "2026-10-18"},
    ]

    def test_by_order_number(self):
        assert resolve_order(self.ORDERS, "ord-2-bbbb", "2026-10-19")["id"] == "o2"

    def test_daily_number_is_scoped_to_today(self):
        assert resolve_order(self.ORDERS, "order #2", "2026-10-19")["id"] == "o2"
        assert resolve_order(self.ORDERS, "2", "2026-10-18")["id"] == "o9"

    def test_unknown_order(self):
        with pytest.raises(ActionFailure) as exc:
            resolve_order(self.ORDERS, "ORD-404", "2026-10-19")
        assert exc.value.reason == FailureReason.NOT_FOUND


class TestResolveCustomer:
    """Customer lookup by id, phone, email or exact name."""

    CUSTOMERS = [
        {"id": "c1", "name": "Asha Rao", "phone": "9876543210", "email": "asha@example.com"},
        {"id": "c2", "name": "Ravi Kumar", "phone": "9123456780"},
        {"id": "c3", "name": "Ravi Kumar", "phone": "9000000001"},
    ]

    def test_by_phone_with_country_code(self):
        assert resolve_customer(self.CUSTOMERS, "+91 98765-43210")["id"] == "c1"

    def test_by_email(self):
        assert resolve_customer(self.CUSTOMERS, "ASHA@example.com")["id"] == "c1"

    def test_duplicate_names_are_ambiguous(self):
        with pytest.raises(ActionFailure) as exc:
            resolve_customer(self.CUSTOMERS, "ravi kumar")
        assert exc.value.reason == FailureReason.INVALID_STATE

    def test_normalize_phone(self):
        assert normalize_phone("+91 98765 43210") == "9876543210"
        assert normalize_phone("09876543210") == "9876543210"
        assert normalize_phone(None) == ""
