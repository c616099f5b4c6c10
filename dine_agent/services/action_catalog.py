"""Static catalog of actions exposed to the intent resolver."""

from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from dine_agent.models.action import ActionDescriptor, ActionName


TABLE_STATUSES = ("available", "occupied", "reserved", "cleaning", "out-of-service")
ORDER_STATUSES = ("pending", "confirmed", "preparing", "ready", "completed", "cancelled")

# Operator vocabulary mapped onto stored table statuses
TABLE_STATUS_SYNONYMS = {
    "serving": "occupied",
    "served": "occupied",
    "busy": "occupied",
    "in use": "occupied",
    "free": "available",
    "empty": "available",
    "vacant": "available",
    "open": "available",
    "out of service": "out-of-service",
    "out_of_service": "out-of-service",
    "oos": "out-of-service",
    "booked": "reserved",
    "dirty": "cleaning",
}


def normalize_table_status(value: Optional[str]) -> Optional[str]:
    """Map a spoken status onto a stored table status, or None if unknown."""
    if not value:
        return None
    key = " ".join(str(value).strip().lower().split())
    if key in TABLE_STATUSES:
        return key
    return TABLE_STATUS_SYNONYMS.get(key)


def _schema(properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {"type": "object", "properties": properties, "required": required}


_TABLE_REF = {"type": "string", "description": "Table name or number as the operator says it, e.g. '3' or 'T3'"}
_FLOOR = {"type": "string", "description": "Floor or section name, used to tell same-named tables apart"}
_ORDER_REF = {"type": "string", "description": "Order id, order number (ORD-...) or today's daily order number"}
_MENU_REF = {"type": "string", "description": "Menu item id or name"}

_DESCRIPTORS = [
    ActionDescriptor(
        name=ActionName.GET_TABLES,
        description="List restaurant tables with counts by status and by floor",
        optional_params=frozenset({"status", "floor"}),
        required_permissions=frozenset({"tables"}),
        parameters_schema=_schema({
            "status": {"type": "string", "enum": list(TABLE_STATUSES), "description": "Only tables in this status"},
            "floor": _FLOOR,
        }, []),
        domain="tables",
    ),
    ActionDescriptor(
        name=ActionName.UPDATE_TABLE_STATUS,
        description="change the status of a table",
        required_params=("table", "status"),
        optional_params=frozenset({"floor"}),
        required_permissions=frozenset({"tables"}),
        parameters_schema=_schema({
            "table": _TABLE_REF,
            "status": {"type": "string", "enum": list(TABLE_STATUSES)},
            "floor": _FLOOR,
        }, ["table", "status"]),
        read_only=False,
        domain="tables",
    ),
    ActionDescriptor(
        name=ActionName.RESERVE_TABLE,
        description="reserve an available table",
        required_params=("table",),
        optional_params=frozenset({"floor", "guests", "customer_name", "customer_phone", "reservation_time"}),
        required_permissions=frozenset({"tables"}),
        parameters_schema=_schema({
            "table": _TABLE_REF,
            "floor": _FLOOR,
            "guests": {"type": "integer", "minimum": 1},
            "customer_name": {"type": "string"},
            "customer_phone": {"type": "string"},
            "reservation_time": {"type": "string", "description": "Time of the reservation, e.g. '19:30'"},
        }, ["table"]),
        read_only=False,
        domain="tables",
    ),
    ActionDescriptor(
        name=ActionName.GET_ORDERS,
        description="List recent orders, optionally filtered by status",
        optional_params=frozenset({"status", "limit"}),
        required_permissions=frozenset({"orders"}),
        parameters_schema=_schema({
            "status": {"type": "string", "enum": list(ORDER_STATUSES)},
            "limit": {"type": "integer", "minimum": 1, "maximum": 100, "default": 10},
        }, []),
        domain="orders",
    ),
    ActionDescriptor(
        name=ActionName.GET_ORDER_BY_ID,
        description="view a specific order",
        required_params=("order_id",),
        required_permissions=frozenset({"orders"}),
        parameters_schema=_schema({"order_id": _ORDER_REF}, ["order_id"]),
        domain="orders",
    ),
    ActionDescriptor(
        name=ActionName.CANCEL_ORDER,
        description="cancel an order",
        required_params=("order_id",),
        optional_params=frozenset({"reason"}),
        required_permissions=frozenset({"orders"}),
        parameters_schema=_schema({
            "order_id": _ORDER_REF,
            "reason": {"type": "string"},
        }, ["order_id"]),
        read_only=False,
        domain="orders",
    ),
    ActionDescriptor(
        name=ActionName.PLACE_ORDER,
        description="place a new order",
        required_params=("items",),
        optional_params=frozenset({
            "table_number", "order_type", "customer_name", "customer_phone", "payment_method", "notes",
        }),
        required_permissions=frozenset({"orders"}),
        parameters_schema=_schema({
            "items": {
                "type": "array",
                "description": "Items to order",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "Menu item name or id"},
                        "quantity": {"type": "integer", "minimum": 1, "default": 1},
                        "variant": {"type": "string", "description": "Selected variant, e.g. 'Large'"},
                        "customizations": {"type": "array", "items": {"type": "string"}},
                    },
                    "required": ["name"],
                },
            },
            "table_number": _TABLE_REF,
            "order_type": {"type": "string", "enum": ["dine-in", "takeaway", "delivery"]},
            "customer_name": {"type": "string"},
            "customer_phone": {"type": "string"},
            "payment_method": {"type": "string", "enum": ["cash", "card", "upi"]},
            "notes": {"type": "string"},
        }, ["items"]),
        read_only=False,
        domain="orders",
    ),
    ActionDescriptor(
        name=ActionName.GET_MENU,
        description="Show menu items with category and vegetarian/non-vegetarian counts",
        optional_params=frozenset({"category", "search", "is_veg"}),
        required_permissions=frozenset({"menu", "orders"}),
        parameters_schema=_schema({
            "category": {"type": "string"},
            "search": {"type": "string"},
            "is_veg": {"type": "boolean"},
        }, []),
        domain="menu",
    ),
    ActionDescriptor(
        name=ActionName.SEARCH_MENU_ITEMS,
        description="search the menu",
        required_params=("search_term",),
        optional_params=frozenset({"category", "is_veg"}),
        required_permissions=frozenset({"menu", "orders"}),
        parameters_schema=_schema({
            "search_term": {"type": "string"},
            "category": {"type": "string"},
            "is_veg": {"type": "boolean"},
        }, ["search_term"]),
        domain="menu",
    ),
    ActionDescriptor(
        name=ActionName.ADD_MENU_ITEM,
        description="add items to the menu",
        required_params=("name", "price", "category"),
        optional_params=frozenset({"description", "is_veg", "spice_level", "short_code"}),
        required_permissions=frozenset({"menu"}),
        parameters_schema=_schema({
            "name": {"type": "string"},
            "price": {"type": "number", "minimum": 0},
            "category": {"type": "string"},
            "description": {"type": "string"},
            "is_veg": {"type": "boolean", "default": True},
            "spice_level": {"type": "string", "enum": ["mild", "medium", "hot"]},
            "short_code": {"type": "string"},
        }, ["name", "price", "category"]),
        read_only=False,
        domain="menu",
    ),
    ActionDescriptor(
        name=ActionName.UPDATE_MENU_ITEM,
        description="update menu items",
        required_params=("menu_item",),
        optional_params=frozenset({"name", "price", "category", "description", "is_veg", "is_available"}),
        required_permissions=frozenset({"menu"}),
        parameters_schema=_schema({
            "menu_item": _MENU_REF,
            "name": {"type": "string", "description": "New name"},
            "price": {"type": "number", "minimum": 0},
            "category": {"type": "string"},
            "description": {"type": "string"},
            "is_veg": {"type": "boolean"},
            "is_available": {"type": "boolean"},
        }, ["menu_item"]),
        read_only=False,
        domain="menu",
    ),
    ActionDescriptor(
        name=ActionName.DELETE_MENU_ITEM,
        description="remove items from the menu",
        required_params=("menu_item",),
        required_permissions=frozenset({"menu"}),
        parameters_schema=_schema({"menu_item": _MENU_REF}, ["menu_item"]),
        read_only=False,
        domain="menu",
    ),
    ActionDescriptor(
        name=ActionName.GET_SALES_SUMMARY,
        description="Revenue, order count and average order value for a day",
        optional_params=frozenset({"date"}),
        required_permissions=frozenset({"analytics"}),
        parameters_schema=_schema({
            "date": {"type": "string", "description": "Day as YYYY-MM-DD; defaults to today"},
        }, []),
        domain="sales",
    ),
    ActionDescriptor(
        name=ActionName.GET_CUSTOMERS,
        description="List customers, optionally matching a name, phone or email",
        optional_params=frozenset({"search", "limit"}),
        required_permissions=frozenset({"customers"}),
        parameters_schema=_schema({
            "search": {"type": "string"},
            "limit": {"type": "integer", "minimum": 1, "maximum": 100, "default": 20},
        }, []),
        domain="customers",
    ),
    ActionDescriptor(
        name=ActionName.GET_CUSTOMER,
        description="view a customer's details and order history",
        required_params=("customer",),
        required_permissions=frozenset({"customers"}),
        parameters_schema=_schema({
            "customer": {"type": "string", "description": "Customer id, phone number, email or exact name"},
        }, ["customer"]),
        domain="customers",
    ),
    ActionDescriptor(
        name=ActionName.ADD_CUSTOMER,
        description="add or update a customer",
        required_params=("phone",),
        optional_params=frozenset({"name", "email", "city"}),
        required_permissions=frozenset({"customers"}),
        parameters_schema=_schema({
            "phone": {"type": "string"},
            "name": {"type": "string"},
            "email": {"type": "string"},
            "city": {"type": "string"},
        }, ["phone"]),
        read_only=False,
        domain="customers",
    ),
]

ACTION_CATALOG: Mapping[ActionName, ActionDescriptor] = MappingProxyType(
    {descriptor.name: descriptor for descriptor in _DESCRIPTORS}
)


def get_descriptor(name: str) -> Optional[ActionDescriptor]:
    """Look up a descriptor by action name; None for names outside the catalog."""
    try:
        return ACTION_CATALOG[ActionName(name)]
    except ValueError:
        return None


def list_descriptors() -> List[ActionDescriptor]:
    return list(ACTION_CATALOG.values())
