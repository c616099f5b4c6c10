"""Executes resolved actions against the restaurant's operational records."""

import logging
import secrets
import string
import time
import uuid
from collections import Counter, OrderedDict
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Awaitable, Callable, Dict, List, Optional

from dine_agent.infra.document_store import DocumentStore, WriteOp
from dine_agent.infra.error_handler import FailureReason
from dine_agent.infra.metrics import action_duration, actions_executed_total
from dine_agent.models.action import ActionName, ActionResult
from dine_agent.services.action_catalog import ORDER_STATUSES, TABLE_STATUSES, normalize_table_status
from dine_agent.services.entity_resolution import (
    ActionFailure,
    normalize_name,
    normalize_phone,
    resolve_customer,
    resolve_menu_item,
    resolve_order,
    resolve_table,
)
from dine_agent.services.tenant_directory import TenantDirectory

logger = logging.getLogger(__name__)

# Collections
TABLES = "tables"
ORDERS = "orders"
MENU_ITEMS = "menu_items"
CUSTOMERS = "customers"
COUNTERS = "counters"

CENT = Decimal("0.01")
_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits

Handler = Callable[[str, str, Dict[str, Any]], Awaitable[ActionResult]]


def _money(value: Decimal) -> float:
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


def _to_decimal(value: Any, what: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ActionFailure(FailureReason.INVALID_STATE, f"'{value}' is not a valid {what}.")
    if not amount.is_finite() or amount < 0:
        raise ActionFailure(FailureReason.INVALID_STATE, f"'{value}' is not a valid {what}.")
    return amount


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_bool(value: Any) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "yes", "veg", "vegetarian", "1"):
        return True
    if text in ("false", "no", "non-veg", "nonveg", "non-vegetarian", "0"):
        return False
    return None


def _required(args: Dict[str, Any], name: str) -> Any:
    value = args.get(name)
    if value is None or value == "" or value == []:
        raise ActionFailure(FailureReason.INVALID_STATE, f"No {name.replace('_', ' ')} was given.")
    return value


def _stat_key(status: str) -> str:
    return status.replace("-", "_")


def _table_summary(table: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": table.get("id"),
        "name": table.get("name"),
        "floor": table.get("floor"),
        "capacity": table.get("capacity"),
        "status": table.get("status"),
        "current_order_id": table.get("current_order_id"),
    }


def _order_summary(order: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": order.get("id"),
        "order_number": order.get("order_number"),
        "daily_order_id": order.get("daily_order_id"),
        "table_number": order.get("table_number"),
        "status": order.get("status"),
        "final_amount": order.get("final_amount", order.get("total_amount")),
        "item_count": sum(_as_int(i.get("quantity"), 1) for i in order.get("items") or []),
        "customer_name": order.get("customer_name"),
        "created_at": order.get("created_at"),
    }


def _menu_summary(item: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": item.get("id"),
        "name": item.get("name"),
        "price": item.get("price"),
        "category": item.get("category"),
        "is_veg": item.get("is_veg"),
        "is_available": item.get("is_available", True),
    }


def _customer_summary(customer: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": customer.get("id"),
        "name": customer.get("name"),
        "phone": customer.get("phone"),
        "email": customer.get("email"),
        "order_count": customer.get("order_count", 0),
        "total_spent": customer.get("total_spent", 0),
    }


class ActionExecutor:
    """
    Runs one action per call: validate, look up dependencies, read or mutate.

    Every lookup an action needs completes before its first write, so a
    failed validation or lookup leaves no partial changes behind. "Not found"
    and "invalid state" come back as failed ActionResults; storage errors
    propagate as StorageUnavailableError.
    """

    def __init__(
        self,
        store: DocumentStore,
        directory: TenantDirectory,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.directory = directory
        self._clock = clock or datetime.utcnow
        self._handlers: Dict[ActionName, Handler] = {
            ActionName.GET_TABLES: self._get_tables,
            ActionName.UPDATE_TABLE_STATUS: self._update_table_status,
            ActionName.RESERVE_TABLE: self._reserve_table,
            ActionName.GET_ORDERS: self._get_orders,
            ActionName.GET_ORDER_BY_ID: self._get_order_by_id,
            ActionName.CANCEL_ORDER: self._cancel_order,
            ActionName.PLACE_ORDER: self._place_order,
            ActionName.GET_MENU: self._get_menu,
            ActionName.SEARCH_MENU_ITEMS: self._search_menu_items,
            ActionName.ADD_MENU_ITEM: self._add_menu_item,
            ActionName.UPDATE_MENU_ITEM: self._update_menu_item,
            ActionName.DELETE_MENU_ITEM: self._delete_menu_item,
            ActionName.GET_SALES_SUMMARY: self._get_sales_summary,
            ActionName.GET_CUSTOMERS: self._get_customers,
            ActionName.GET_CUSTOMER: self._get_customer,
            ActionName.ADD_CUSTOMER: self._add_customer,
        }
        unhandled = set(ActionName) - set(self._handlers)
        if unhandled:
            raise RuntimeError(f"No handler for actions: {sorted(a.value for a in unhandled)}")

    def _today(self) -> str:
        return self._clock().date().isoformat()

    async def execute(
        self,
        action_name: ActionName,
        arguments: Dict[str, Any],
        tenant_id: str,
        user_id: str,
    ) -> ActionResult:
        """
        Execute one action exactly once.

        Args:
            action_name: Catalog action
            arguments: Argument mapping (already checked for required params)
            tenant_id: Restaurant the action applies to
            user_id: Acting user, recorded on writes

        Returns:
            ActionResult

        Raises:
            StorageUnavailableError: If the document store fails
        """
        handler = self._handlers[action_name]
        start = time.time()
        try:
            result = await handler(tenant_id, user_id, dict(arguments or {}))
        except ActionFailure as e:
            result = ActionResult.fail(e.reason, e.message)
        finally:
            action_duration.labels(action=action_name.value).observe(time.time() - start)

        actions_executed_total.labels(
            action=action_name.value,
            status="success" if result.success else (result.reason.value if result.reason else "failure"),
        ).inc()
        logger.info(
            f"Action {action_name.value} for tenant {tenant_id}: "
            f"{'success' if result.success else 'failed (' + str(result.error) + ')'}"
        )
        return result

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    async def _load_tables(self, tenant_id: str) -> List[Dict[str, Any]]:
        return await self.store.query(TABLES, {"tenant_id": tenant_id})

    async def _get_tables(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        status_filter = None
        if args.get("status"):
            status_filter = normalize_table_status(args["status"])
            if status_filter is None:
                raise ActionFailure(
                    FailureReason.INVALID_STATE,
                    f"'{args['status']}' is not a table status. Use one of: {', '.join(TABLE_STATUSES)}.",
                )

        tables = await self._load_tables(tenant_id)
        floor = args.get("floor")
        if floor:
            tables = [t for t in tables if normalize_name(t.get("floor")) == normalize_name(floor)]

        stats = {"total": len(tables)}
        stats.update({_stat_key(s): 0 for s in TABLE_STATUSES})
        by_floor: Dict[str, Dict[str, int]] = OrderedDict()
        for table in tables:
            status = table.get("status")
            floor_name = str(table.get("floor") or "Main")
            floor_stats = by_floor.setdefault(floor_name, {"total": 0, **{_stat_key(s): 0 for s in TABLE_STATUSES}})
            floor_stats["total"] += 1
            if status in TABLE_STATUSES:
                stats[_stat_key(status)] += 1
                floor_stats[_stat_key(status)] += 1

        listed = [t for t in tables if status_filter is None or t.get("status") == status_filter]
        return ActionResult.ok({
            "tables": [_table_summary(t) for t in listed],
            "count": len(listed),
            "stats": stats,
            "by_floor": dict(by_floor),
            "status_filter": status_filter,
            "floor_filter": floor,
        })

    async def _update_table_status(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        requested = _required(args, "status")
        status = normalize_table_status(requested)
        if status is None:
            raise ActionFailure(
                FailureReason.INVALID_STATE,
                f"'{requested}' is not a table status. Use one of: {', '.join(TABLE_STATUSES)}.",
            )

        table = resolve_table(await self._load_tables(tenant_id), _required(args, "table"), args.get("floor"))
        previous = table.get("status")
        if previous == status:
            return ActionResult.ok({
                "table": _table_summary(table),
                "previous_status": previous,
                "status": status,
                "changed": False,
            })

        update: Dict[str, Any] = {
            "status": status,
            "updated_at": self._clock().isoformat(),
            "updated_by": user_id,
        }
        if status == "available":
            update["current_order_id"] = None
            update["reservation"] = None

        await self.store.batch_write([WriteOp("update", TABLES, table["id"], update, tenant_id=tenant_id)])
        return ActionResult.ok({
            "table": {**_table_summary(table), "status": status},
            "previous_status": previous,
            "status": status,
            "changed": True,
        })

    async def _reserve_table(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        table = resolve_table(await self._load_tables(tenant_id), _required(args, "table"), args.get("floor"))
        if table.get("status") != "available":
            raise ActionFailure(
                FailureReason.INVALID_STATE,
                f"Table {table.get('name')} is {table.get('status')}, so it can't be reserved.",
            )

        reservation = {
            "guests": _as_int(args.get("guests"), 0) or None,
            "customer_name": args.get("customer_name"),
            "customer_phone": normalize_phone(args["customer_phone"]) if args.get("customer_phone") else None,
            "reservation_time": args.get("reservation_time"),
            "reserved_at": self._clock().isoformat(),
            "reserved_by": user_id,
        }
        await self.store.batch_write([
            WriteOp(
                "update",
                TABLES,
                table["id"],
                {"status": "reserved", "reservation": reservation, "updated_at": reservation["reserved_at"]},
                tenant_id=tenant_id,
            )
        ])
        return ActionResult.ok({
            "table": {**_table_summary(table), "status": "reserved"},
            "reservation": reservation,
        })

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    async def _load_orders(self, tenant_id: str) -> List[Dict[str, Any]]:
        return await self.store.query(ORDERS, {"tenant_id": tenant_id})

    async def _get_orders(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        status_filter = args.get("status")
        if status_filter:
            status_filter = normalize_name(status_filter)
            if status_filter not in ORDER_STATUSES:
                raise ActionFailure(
                    FailureReason.INVALID_STATE,
                    f"'{args['status']}' is not an order status. Use one of: {', '.join(ORDER_STATUSES)}.",
                )
        limit = min(max(_as_int(args.get("limit"), 10), 1), 100)

        orders = sorted(await self._load_orders(tenant_id), key=lambda o: str(o.get("created_at") or ""), reverse=True)
        status_counts = dict(Counter(str(o.get("status")) for o in orders))
        matching = [o for o in orders if not status_filter or o.get("status") == status_filter]

        return ActionResult.ok({
            "orders": [_order_summary(o) for o in matching[:limit]],
            "count": len(matching),
            "returned": min(len(matching), limit),
            "status_counts": status_counts,
            "status_filter": status_filter,
        })

    async def _get_order_by_id(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        order = resolve_order(await self._load_orders(tenant_id), _required(args, "order_id"), self._today())
        return ActionResult.ok({"order": order})

    async def _cancel_order(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        order = resolve_order(await self._load_orders(tenant_id), _required(args, "order_id"), self._today())
        status = order.get("status")
        if status in ("completed", "cancelled"):
            raise ActionFailure(
                FailureReason.INVALID_STATE,
                f"Order {order.get('order_number') or order.get('id')} is already {status} and can't be cancelled.",
            )

        now = self._clock().isoformat()
        update = {
            "status": "cancelled",
            "cancelled_at": now,
            "cancelled_by": user_id,
            "cancel_reason": args.get("reason") or "Cancelled by staff",
            "updated_at": now,
        }
        await self.store.batch_write([WriteOp("update", ORDERS, order["id"], update, tenant_id=tenant_id)])
        return ActionResult.ok({
            "order": {**_order_summary(order), "status": "cancelled"},
            "previous_status": status,
        })

    async def _place_order(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        requested = _required(args, "items")
        if isinstance(requested, (str, dict)):
            requested = [requested]
        if not isinstance(requested, list):
            raise ActionFailure(FailureReason.INVALID_STATE, "I couldn't read the list of items to order.")

        # Validation and lookups; nothing is written until all of these pass
        settings = await self.directory.get_settings(tenant_id)
        menu = await self.store.query(MENU_ITEMS, {"tenant_id": tenant_id})

        lines = []
        subtotal = Decimal("0")
        for raw in requested:
            if isinstance(raw, str):
                raw = {"name": raw}
            reference = raw.get("id") or raw.get("menu_item_id") or raw.get("name")
            if not reference:
                raise ActionFailure(FailureReason.INVALID_STATE, "One of the items has no name.")
            item = resolve_menu_item(menu, reference)
            if item.get("is_available") is False:
                raise ActionFailure(FailureReason.INVALID_STATE, f"{item.get('name')} is currently unavailable.")

            unit_price = _to_decimal(item.get("price", 0), "price")
            variant_name = raw.get("variant")
            if variant_name:
                variant = next(
                    (v for v in item.get("variants") or [] if normalize_name(v.get("name")) == normalize_name(variant_name)),
                    None,
                )
                if variant is None:
                    raise ActionFailure(FailureReason.NOT_FOUND, f"{item.get('name')} doesn't come in '{variant_name}'.")
                unit_price += Decimal(str(variant.get("price_delta", 0)))

            selected_customizations = []
            for wanted in raw.get("customizations") or []:
                option = next(
                    (c for c in item.get("customizations") or [] if normalize_name(c.get("name")) == normalize_name(wanted)),
                    None,
                )
                if option is None:
                    raise ActionFailure(FailureReason.NOT_FOUND, f"'{wanted}' isn't an option for {item.get('name')}.")
                unit_price += Decimal(str(option.get("price", 0)))
                selected_customizations.append(option.get("name"))

            quantity = max(1, _as_int(raw.get("quantity"), 1))
            line_total = unit_price * quantity
            subtotal += line_total
            lines.append({
                "menu_item_id": item.get("id"),
                "name": item.get("name"),
                "quantity": quantity,
                "variant": variant_name,
                "customizations": selected_customizations,
                "unit_price": _money(unit_price),
                "total": _money(line_total),
                "is_veg": item.get("is_veg"),
            })

        tax_rate = Decimal(str(settings.tax_rate)) if settings.tax_enabled else Decimal("0")
        tax_amount = (subtotal * tax_rate / Decimal(100)).quantize(CENT, rounding=ROUND_HALF_UP)
        final_amount = subtotal.quantize(CENT, rounding=ROUND_HALF_UP) + tax_amount

        table = None
        if args.get("table_number"):
            table = resolve_table(await self._load_tables(tenant_id), args["table_number"], args.get("floor"))
            if table.get("status") != "available":
                raise ActionFailure(
                    FailureReason.INVALID_STATE,
                    f"Table {table.get('name')} is {table.get('status')}. "
                    f"Orders can only be placed on an available table.",
                )

        phone = normalize_phone(args.get("customer_phone")) if args.get("customer_phone") else None
        existing_customer = None
        if phone:
            found = await self.store.query(CUSTOMERS, {"tenant_id": tenant_id, "phone": phone}, limit=1)
            existing_customer = found[0] if found else None

        # Writes: the counter increment is atomic, then one batch for the rest
        now = self._clock()
        today = now.date().isoformat()
        counters = await self.store.increment(
            COUNTERS, f"daily_order:{tenant_id}:{today}", {"last_order_id": 1}, tenant_id=tenant_id
        )
        daily_order_id = int(counters["last_order_id"])
        suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(4))
        order_number = f"ORD-{int(now.timestamp() * 1000)}-{suffix}"
        order_id = uuid.uuid4().hex

        order = {
            "id": order_id,
            "tenant_id": tenant_id,
            "order_number": order_number,
            "daily_order_id": daily_order_id,
            "order_date": today,
            "items": lines,
            "subtotal": _money(subtotal),
            "tax_rate": float(tax_rate),
            "tax_amount": _money(tax_amount),
            "total_amount": _money(subtotal),
            "final_amount": _money(final_amount),
            "status": "confirmed",
            "payment_status": "pending",
            "payment_method": args.get("payment_method") or "cash",
            "order_type": args.get("order_type") or ("dine-in" if table else "takeaway"),
            "table_id": table.get("id") if table else None,
            "table_number": table.get("name") if table else None,
            "customer_name": args.get("customer_name"),
            "customer_phone": phone,
            "notes": args.get("notes"),
            "created_at": now.isoformat(),
            "created_by": user_id,
            "source": "assistant",
        }
        ops = [WriteOp("set", ORDERS, order_id, order, tenant_id=tenant_id)]

        if table:
            ops.append(WriteOp(
                "update",
                TABLES,
                table["id"],
                {"status": "occupied", "current_order_id": order_id, "updated_at": now.isoformat()},
                tenant_id=tenant_id,
            ))

        if phone:
            history_entry = {
                "order_id": order_id,
                "order_number": order_number,
                "amount": _money(final_amount),
                "date": now.isoformat(),
            }
            if existing_customer:
                customer_id = existing_customer["id"]
                order["customer_id"] = customer_id
                ops.append(WriteOp("update", CUSTOMERS, customer_id, {
                    "name": args.get("customer_name") or existing_customer.get("name"),
                    "order_count": _as_int(existing_customer.get("order_count"), 0) + 1,
                    "total_spent": _money(Decimal(str(existing_customer.get("total_spent") or 0)) + final_amount),
                    "order_history": (existing_customer.get("order_history") or []) + [history_entry],
                    "last_order_at": now.isoformat(),
                }, tenant_id=tenant_id))
            else:
                customer_id = uuid.uuid4().hex
                order["customer_id"] = customer_id
                ops.append(WriteOp("set", CUSTOMERS, customer_id, {
                    "id": customer_id,
                    "tenant_id": tenant_id,
                    "name": args.get("customer_name"),
                    "phone": phone,
                    "order_count": 1,
                    "total_spent": _money(final_amount),
                    "order_history": [history_entry],
                    "last_order_at": now.isoformat(),
                    "created_at": now.isoformat(),
                }, tenant_id=tenant_id))

        await self.store.batch_write(ops)

        return ActionResult.ok({
            "order": _order_summary(order),
            "order_id": order_id,
            "order_number": order_number,
            "daily_order_id": daily_order_id,
            "items": lines,
            "subtotal": order["subtotal"],
            "tax_amount": order["tax_amount"],
            "final_amount": order["final_amount"],
            "currency": settings.currency,
            "table": order["table_number"],
        })

    # ------------------------------------------------------------------
    # Menu
    # ------------------------------------------------------------------

    async def _load_menu(self, tenant_id: str) -> List[Dict[str, Any]]:
        items = await self.store.query(MENU_ITEMS, {"tenant_id": tenant_id})
        return [item for item in items if not item.get("is_deleted")]

    async def _get_menu(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        items = await self._load_menu(tenant_id)
        if args.get("category"):
            category = normalize_name(args["category"])
            items = [i for i in items if normalize_name(i.get("category")) == category]
        if args.get("search"):
            term = normalize_name(args["search"])
            items = [
                i for i in items
                if term in normalize_name(i.get("name")) or term in normalize_name(i.get("description"))
            ]
        is_veg = _as_bool(args.get("is_veg"))
        if is_veg is not None:
            items = [i for i in items if bool(i.get("is_veg", True)) == is_veg]

        by_category: Dict[str, int] = OrderedDict()
        for item in items:
            category_name = str(item.get("category") or "Uncategorized")
            by_category[category_name] = by_category.get(category_name, 0) + 1
        veg_count = sum(1 for i in items if i.get("is_veg", True))

        return ActionResult.ok({
            "items": [_menu_summary(i) for i in items],
            "count": len(items),
            "veg_count": veg_count,
            "non_veg_count": len(items) - veg_count,
            "available_count": sum(1 for i in items if i.get("is_available", True)),
            "by_category": dict(by_category),
        })

    async def _search_menu_items(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        term = normalize_name(_required(args, "search_term"))
        items = await self._load_menu(tenant_id)
        if args.get("category"):
            category = normalize_name(args["category"])
            items = [i for i in items if normalize_name(i.get("category")) == category]
        is_veg = _as_bool(args.get("is_veg"))
        if is_veg is not None:
            items = [i for i in items if bool(i.get("is_veg", True)) == is_veg]

        scored = []
        for item in items:
            name = normalize_name(item.get("name"))
            if term == name:
                score = 1.0
            elif term in name:
                score = 0.8
            elif term in normalize_name(item.get("description")) or term in normalize_name(item.get("category")):
                score = 0.5
            else:
                continue
            scored.append((score, item))
        scored.sort(key=lambda pair: pair[0], reverse=True)

        return ActionResult.ok({
            "items": [_menu_summary(item) for _, item in scored],
            "count": len(scored),
            "search_term": args.get("search_term"),
        })

    async def _add_menu_item(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        name = str(_required(args, "name")).strip()
        price = _to_decimal(_required(args, "price"), "price")
        category = str(_required(args, "category")).strip()

        existing = await self._load_menu(tenant_id)
        if any(normalize_name(i.get("name")) == normalize_name(name) for i in existing):
            raise ActionFailure(FailureReason.INVALID_STATE, f"{name} is already on the menu.")

        now = self._clock().isoformat()
        item_id = uuid.uuid4().hex
        is_veg = _as_bool(args.get("is_veg"))
        item = {
            "id": item_id,
            "tenant_id": tenant_id,
            "name": name,
            "price": _money(price),
            "category": category,
            "description": args.get("description") or "",
            "is_veg": True if is_veg is None else is_veg,
            "spice_level": args.get("spice_level") or "mild",
            "short_code": args.get("short_code") or "",
            "is_available": True,
            "is_deleted": False,
            "created_at": now,
            "created_by": user_id,
        }
        await self.store.batch_write([WriteOp("set", MENU_ITEMS, item_id, item, tenant_id=tenant_id)])
        return ActionResult.ok({"item": _menu_summary(item)})

    async def _update_menu_item(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        items = await self._load_menu(tenant_id)
        item = resolve_menu_item(items, _required(args, "menu_item"))

        changes: Dict[str, Any] = {}
        if args.get("name"):
            new_name = str(args["name"]).strip()
            clash = any(
                normalize_name(i.get("name")) == normalize_name(new_name) and i.get("id") != item.get("id")
                for i in items
            )
            if clash:
                raise ActionFailure(FailureReason.INVALID_STATE, f"Another item is already called {new_name}.")
            changes["name"] = new_name
        if args.get("price") is not None:
            changes["price"] = _money(_to_decimal(args["price"], "price"))
        if args.get("category"):
            changes["category"] = str(args["category"]).strip()
        if args.get("description") is not None:
            changes["description"] = args["description"]
        for flag in ("is_veg", "is_available"):
            value = _as_bool(args.get(flag))
            if value is not None:
                changes[flag] = value

        if not changes:
            raise ActionFailure(FailureReason.INVALID_STATE, f"Tell me what to change about {item.get('name')}.")

        update = {**changes, "updated_at": self._clock().isoformat(), "updated_by": user_id}
        await self.store.batch_write([WriteOp("update", MENU_ITEMS, item["id"], update, tenant_id=tenant_id)])
        return ActionResult.ok({
            "item": _menu_summary({**item, **changes}),
            "previous_name": item.get("name"),
            "changes": sorted(changes),
        })

    async def _delete_menu_item(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        item = resolve_menu_item(await self._load_menu(tenant_id), _required(args, "menu_item"), allow_fuzzy=False)
        now = self._clock().isoformat()
        await self.store.batch_write([
            WriteOp(
                "update",
                MENU_ITEMS,
                item["id"],
                {"is_deleted": True, "is_available": False, "deleted_at": now, "deleted_by": user_id},
                tenant_id=tenant_id,
            )
        ])
        return ActionResult.ok({"item": _menu_summary(item), "deleted": True})

    # ------------------------------------------------------------------
    # Sales
    # ------------------------------------------------------------------

    async def _get_sales_summary(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        day = args.get("date") or self._today()
        try:
            day = datetime.strptime(str(day).strip(), "%Y-%m-%d").date().isoformat()
        except ValueError:
            raise ActionFailure(FailureReason.INVALID_STATE, f"'{args.get('date')}' is not a date I understand (use YYYY-MM-DD).")

        orders = [
            o for o in await self._load_orders(tenant_id)
            if str(o.get("order_date") or str(o.get("created_at") or "")[:10]) == day
        ]
        status_breakdown = dict(Counter(str(o.get("status")) for o in orders))
        billable = [o for o in orders if o.get("status") != "cancelled"]

        revenue = Decimal("0")
        item_quantities: Counter = Counter()
        for order in billable:
            amount = order.get("final_amount")
            if amount is None:
                amount = order.get("total_amount", 0)
            revenue += Decimal(str(amount or 0))
            for line in order.get("items") or []:
                item_quantities[str(line.get("name"))] += _as_int(line.get("quantity"), 1)

        average = revenue / len(billable) if billable else Decimal("0")
        return ActionResult.ok({
            "date": day,
            "total_revenue": _money(revenue),
            "total_orders": len(billable),
            "average_order_value": _money(average),
            "cancelled_orders": len(orders) - len(billable),
            "status_breakdown": status_breakdown,
            "top_items": [{"name": name, "quantity": qty} for name, qty in item_quantities.most_common(5)],
        })

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def _get_customers(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        customers = await self.store.query(CUSTOMERS, {"tenant_id": tenant_id})
        if args.get("search"):
            term = normalize_name(args["search"])
            phone_term = normalize_phone(args["search"])
            customers = [
                c for c in customers
                if term in normalize_name(c.get("name"))
                or term in normalize_name(c.get("email"))
                or (phone_term and phone_term in normalize_phone(c.get("phone")))
            ]
        limit = min(max(_as_int(args.get("limit"), 20), 1), 100)
        return ActionResult.ok({
            "customers": [_customer_summary(c) for c in customers[:limit]],
            "count": len(customers),
        })

    async def _get_customer(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        customers = await self.store.query(CUSTOMERS, {"tenant_id": tenant_id})
        customer = resolve_customer(customers, _required(args, "customer"))
        history = customer.get("order_history") or []
        return ActionResult.ok({
            "customer": _customer_summary(customer),
            "recent_orders": history[-5:],
        })

    async def _add_customer(self, tenant_id: str, user_id: str, args: Dict[str, Any]) -> ActionResult:
        phone = normalize_phone(_required(args, "phone"))
        if len(phone) < 10:
            raise ActionFailure(FailureReason.INVALID_STATE, f"'{args['phone']}' doesn't look like a valid phone number.")

        found = await self.store.query(CUSTOMERS, {"tenant_id": tenant_id, "phone": phone}, limit=1)
        now = self._clock().isoformat()
        details = {key: args[key] for key in ("name", "email", "city") if args.get(key)}

        if found:
            customer = found[0]
            if details:
                await self.store.batch_write([
                    WriteOp("update", CUSTOMERS, customer["id"], {**details, "updated_at": now}, tenant_id=tenant_id)
                ])
            return ActionResult.ok({"customer": _customer_summary({**customer, **details}), "created": False})

        customer_id = uuid.uuid4().hex
        customer = {
            "id": customer_id,
            "tenant_id": tenant_id,
            "phone": phone,
            "name": details.get("name"),
            "email": details.get("email"),
            "city": details.get("city"),
            "order_count": 0,
            "total_spent": 0,
            "order_history": [],
            "created_at": now,
            "created_by": user_id,
        }
        await self.store.batch_write([WriteOp("set", CUSTOMERS, customer_id, customer, tenant_id=tenant_id)])
        return ActionResult.ok({"customer": _customer_summary(customer), "created": True})
