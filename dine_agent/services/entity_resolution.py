"""Resolve operator-supplied names and numbers to stored records."""

import re
from typing import Any, Dict, List, Optional

from dine_agent.infra.error_handler import FailureReason

# Fuzzy menu matches scoring at or below this are rejected
MENU_MATCH_THRESHOLD = 0.3

_TABLE_PREFIX = re.compile(r"^(table|tbl)\s*(no\.?|number|#)?\s*")
_ORDER_PREFIX = re.compile(r"^(order)\s*(no\.?|number|#)?\s*|^#\s*")


class ActionFailure(Exception):
    """A recoverable failure (not found, invalid state) raised inside an action."""

    def __init__(self, reason: FailureReason, message: str):
        self.reason = reason
        self.message = message
        super().__init__(message)


def normalize_name(value: Any) -> str:
    """Case-fold and collapse whitespace."""
    return " ".join(str(value or "").casefold().split())


def normalize_phone(phone: Any) -> str:
    """Digits only, without a leading 91 country code or trunk 0."""
    digits = re.sub(r"\D", "", str(phone or ""))
    if len(digits) == 12 and digits.startswith("91"):
        return digits[2:]
    if len(digits) == 11 and digits.startswith("0"):
        return digits[1:]
    return digits


def _table_key(value: Any) -> str:
    return _TABLE_PREFIX.sub("", normalize_name(value)).strip()


def resolve_table(tables: List[Dict[str, Any]], identifier: Any, floor: Optional[str] = None) -> Dict[str, Any]:
    """
    Find exactly one table by id or name. Never matches partially.

    Raises:
        ActionFailure: NOT_FOUND when nothing matches, INVALID_STATE when the
            identifier matches more than one table
    """
    key = _table_key(identifier)
    if not key:
        raise ActionFailure(FailureReason.NOT_FOUND, "Please tell me which table you mean.")

    by_id = [t for t in tables if str(t.get("id")) == str(identifier).strip()]
    if len(by_id) == 1:
        return by_id[0]

    matches = [t for t in tables if _table_key(t.get("name")) == key]
    if floor:
        floor_key = normalize_name(floor)
        matches = [t for t in matches if normalize_name(t.get("floor")) == floor_key]

    if not matches:
        raise ActionFailure(FailureReason.NOT_FOUND, f"I couldn't find table {identifier}.")
    if len(matches) > 1:
        floors = ", ".join(sorted({str(t.get("floor") or "unknown") for t in matches}))
        raise ActionFailure(
            FailureReason.INVALID_STATE,
            f"More than one table is called {identifier} (floors: {floors}). Which floor do you mean?",
        )
    return matches[0]


def menu_match_score(query: Any, item_name: Any) -> float:
    """
    Similarity of a spoken item name to a menu item name.

    1.0 for an exact (case-insensitive) match; when one name contains the
    other, the ratio of the shorter length to the longer; otherwise 0.
    """
    q = normalize_name(query)
    name = normalize_name(item_name)
    if not q or not name:
        return 0.0
    if q == name:
        return 1.0
    if q in name or name in q:
        return min(len(q), len(name)) / max(len(q), len(name))
    return 0.0


def resolve_menu_item(items: List[Dict[str, Any]], identifier: Any, allow_fuzzy: bool = True) -> Dict[str, Any]:
    """
    Find a menu item by id, exact name, then best fuzzy score.

    Deleted items are ignored. Among equal fuzzy scores the first item in
    storage order wins.

    Args:
        items: Menu item documents
        identifier: Item id or spoken name
        allow_fuzzy: Fall back to partial name matching

    Raises:
        ActionFailure: NOT_FOUND when no item scores above MENU_MATCH_THRESHOLD
    """
    live = [item for item in items if not item.get("is_deleted")]
    ident = str(identifier or "").strip()

    for item in live:
        if str(item.get("id")) == ident:
            return item

    key = normalize_name(ident)
    for item in live:
        if normalize_name(item.get("name")) == key:
            return item

    best: Optional[Dict[str, Any]] = None
    best_score = MENU_MATCH_THRESHOLD
    for item in live if allow_fuzzy else []:
        score = menu_match_score(key, item.get("name"))
        if score > best_score:
            best, best_score = item, score

    if best is None:
        raise ActionFailure(FailureReason.NOT_FOUND, f"I couldn't find '{identifier}' on the menu.")
    return best


def resolve_order(orders: List[Dict[str, Any]], identifier: Any, today: str) -> Dict[str, Any]:
    """
    Find exactly one order by id, order number, or today's daily order number.

    Raises:
        ActionFailure: NOT_FOUND or INVALID_STATE (ambiguous)
    """
    ident = str(identifier or "").strip()
    key = normalize_name(ident)

    matches = [o for o in orders if str(o.get("id")) == ident or normalize_name(o.get("order_number")) == key]
    if not matches:
        daily = _ORDER_PREFIX.sub("", key).strip()
        if daily.isdigit():
            matches = [
                o for o in orders
                if str(o.get("daily_order_id")) == str(int(daily)) and str(o.get("order_date")) == today
            ]

    if not matches:
        raise ActionFailure(FailureReason.NOT_FOUND, f"I couldn't find order {identifier}.")
    if len(matches) > 1:
        raise ActionFailure(
            FailureReason.INVALID_STATE,
            f"More than one order matches {identifier}. Please give the full order number.",
        )
    return matches[0]


def resolve_customer(customers: List[Dict[str, Any]], identifier: Any) -> Dict[str, Any]:
    """
    Find exactly one customer by id, phone, email or exact name.

    Raises:
        ActionFailure: NOT_FOUND or INVALID_STATE (ambiguous name)
    """
    ident = str(identifier or "").strip()
    key = normalize_name(ident)
    phone = normalize_phone(ident)

    for customer in customers:
        if str(customer.get("id")) == ident:
            return customer
    if len(phone) >= 7:
        for customer in customers:
            if normalize_phone(customer.get("phone")) == phone:
                return customer
    if "@" in key:
        for customer in customers:
            if normalize_name(customer.get("email")) == key:
                return customer

    matches = [c for c in customers if normalize_name(c.get("name")) == key]
    if not matches:
        raise ActionFailure(FailureReason.NOT_FOUND, f"I couldn't find a customer matching '{identifier}'.")
    if len(matches) > 1:
        raise ActionFailure(
            FailureReason.INVALID_STATE,
            f"{len(matches)} customers are called '{identifier}'. Please give a phone number instead.",
        )
    return matches[0]
