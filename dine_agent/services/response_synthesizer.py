"""Turns structured action results into replies."""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from dine_agent.adapters.llm_client import LLMClient
from dine_agent.infra.config import config
from dine_agent.infra.error_handler import FailureReason, UpstreamUnavailableError, retry_with_backoff
from dine_agent.models.action import ActionName, ActionResult
from dine_agent.models.usage import TokenUsage
from dine_agent.services.action_catalog import (
    ACTION_CATALOG,
    ORDER_STATUSES,
    TABLE_STATUSES,
    TABLE_STATUS_SYNONYMS,
)

logger = logging.getLogger(__name__)

MASKED = "***"
MASKED_PHONE = "***-***-****"
MASKED_EMAIL = "***@***.***"

# Keys whose nested "name"/"id" fields identify a person
_PERSON_CONTAINERS = ("customer", "user", "guest", "reservation")
_SECRET_KEYS = ("password", "token", "secret")
_PERSON_ID_KEYS = {
    "customer_id", "user_id", "created_by", "updated_by", "cancelled_by", "reserved_by", "deleted_by",
}

CURRENCY_SYMBOLS = {"INR": "₹", "USD": "$", "EUR": "€", "GBP": "£"}

EXTRACTION_PROMPT = """You answer a follow-up question using ONLY the JSON data from the previous answer.
Reply in one or two short sentences. If the data does not contain the answer, say so.
Personal details are masked as *** and must stay masked."""


def mask_pii(data: Any, _person: bool = False) -> Any:
    """
    Copy of data with personal fields masked.

    Phones, emails, addresses, secrets and customer/user names and ids are
    replaced; business fields (table names, prices, counts) are kept.
    """
    if isinstance(data, list):
        return [mask_pii(item, _person) for item in data]
    if not isinstance(data, dict):
        return data

    masked = {}
    for key, value in data.items():
        k = str(key).lower()
        person_context = _person or any(word in k for word in _PERSON_CONTAINERS)

        if value is None:
            masked[key] = None
        elif "phone" in k or "mobile" in k:
            masked[key] = MASKED_PHONE
        elif "email" in k:
            masked[key] = MASKED_EMAIL
        elif "address" in k or any(word in k for word in _SECRET_KEYS):
            masked[key] = MASKED
        elif k in _PERSON_ID_KEYS:
            masked[key] = MASKED
        elif k.endswith("name") and person_context and not isinstance(value, (dict, list)):
            masked[key] = MASKED
        elif k == "id" and _person:
            masked[key] = MASKED
        else:
            masked[key] = mask_pii(value, person_context)
    return masked


def format_money(amount: Any, currency: str = "INR") -> str:
    symbol = CURRENCY_SYMBOLS.get(currency)
    value = f"{float(amount or 0):,.2f}"
    return f"{symbol}{value}" if symbol else f"{currency} {value}"


def _readable(param: str) -> str:
    return param.replace("_", " ")


def _join(parts: List[str]) -> str:
    if len(parts) <= 1:
        return "".join(parts)
    return ", ".join(parts[:-1]) + " and " + parts[-1]


def failure_message(
    reason: FailureReason,
    detail: Optional[str] = None,
    action_name: Optional[ActionName] = None,
    missing_params: Optional[List[str]] = None,
) -> str:
    """Polite, specific message for a failure reason."""
    if reason == FailureReason.MISSING_PARAMETERS:
        needed = _join([f"the {_readable(p)}" for p in missing_params or []]) or "a few more details"
        if action_name is not None:
            purpose = ACTION_CATALOG[action_name].description
            purpose = purpose[:1].lower() + purpose[1:]
            return f"To {purpose}, I need {needed}. Could you tell me?"
        return f"I need {needed} to do that. Could you tell me?"
    if reason in (FailureReason.PERMISSION_DENIED, FailureReason.NOT_FOUND, FailureReason.INVALID_STATE) and detail:
        return detail
    if reason == FailureReason.PERMISSION_DENIED:
        return "You don't have permission to do that."
    if reason == FailureReason.NOT_FOUND:
        return "I couldn't find what you're referring to."
    if reason == FailureReason.INVALID_STATE:
        return "That can't be done in the current state."
    if reason == FailureReason.QUOTA_EXCEEDED:
        return detail or "Your restaurant has used today's assistant quota. It resets tomorrow."
    if reason == FailureReason.UPSTREAM_UNAVAILABLE:
        return "I'm having trouble reaching my services right now. Please try again in a moment."
    return (
        "Sorry, I didn't understand that. You can ask me about tables, orders, "
        "the menu, sales or customers."
    )


def _mentions(text: str, phrase: str) -> bool:
    return re.search(rf"(?<![\w-]){re.escape(phrase)}(?![\w-])", text) is not None


def _status_in_query(text: str) -> Optional[str]:
    for status in TABLE_STATUSES:
        if _mentions(text, status) or _mentions(text, status.replace("-", " ")):
            return status
    for word, status in TABLE_STATUS_SYNONYMS.items():
        if _mentions(text, word):
            return status
    return None


def extract_figure(query: str, action_name: ActionName, data: Dict[str, Any]) -> Optional[str]:
    """
    Answer a follow-up from the previous result without a model call.

    Covers status counts, totals, veg splits and sales figures; returns None
    when the question needs more than a lookup.
    """
    text = " ".join(query.casefold().split())

    if action_name == ActionName.GET_TABLES and "stats" in data:
        stats = data["stats"]
        for floor_name, floor_stats in (data.get("by_floor") or {}).items():
            if _mentions(text, str(floor_name).casefold()):
                status = _status_in_query(text)
                if status:
                    return f"{floor_stats.get(status.replace('-', '_'), 0)} of {floor_stats['total']} tables on {floor_name} are {status}."
                return f"{floor_name} has {floor_stats['total']} tables."
        status = _status_in_query(text)
        if status:
            return f"{stats.get(status.replace('-', '_'), 0)} of {stats['total']} tables are {status}."
        if _mentions(text, "total") or _mentions(text, "all"):
            return f"You have {stats['total']} tables in total."
        return None

    if action_name == ActionName.GET_ORDERS and "status_counts" in data:
        counts = data["status_counts"]
        for status in ORDER_STATUSES:
            if _mentions(text, status):
                n = counts.get(status, 0)
                return f"{n} order{'s' if n != 1 else ''} {'are' if n != 1 else 'is'} {status}."
        if _mentions(text, "total") or _mentions(text, "all"):
            return f"You have {sum(counts.values())} orders in total."
        return None

    if action_name in (ActionName.GET_MENU, ActionName.SEARCH_MENU_ITEMS) and "count" in data:
        if "non_veg_count" in data and (_mentions(text, "non-veg") or _mentions(text, "non veg")
                                        or _mentions(text, "non-vegetarian")):
            return f"{data['non_veg_count']} non-vegetarian items."
        if "veg_count" in data and (_mentions(text, "veg") or _mentions(text, "vegetarian")):
            return f"{data['veg_count']} vegetarian items."
        for category, n in (data.get("by_category") or {}).items():
            if _mentions(text, str(category).casefold()):
                return f"{n} items in {category}."
        if _mentions(text, "total") or _mentions(text, "all"):
            return f"{data['count']} items in total."
        return None

    if action_name == ActionName.GET_SALES_SUMMARY and "total_revenue" in data:
        if _mentions(text, "average"):
            return f"The average order value was {format_money(data['average_order_value'])}."
        if _mentions(text, "cancelled") or _mentions(text, "canceled"):
            return f"{data['cancelled_orders']} orders were cancelled on {data['date']}."
        if _mentions(text, "orders"):
            return f"There were {data['total_orders']} orders on {data['date']}."
        if any(_mentions(text, w) for w in ("revenue", "sales", "total", "earned", "made")):
            return f"Revenue on {data['date']} was {format_money(data['total_revenue'])}."
        return None

    return None


def summarize(action_name: ActionName, result: ActionResult, currency: str = "INR") -> str:
    """Deterministic reply for a successful action result."""
    data = result.data

    def money(amount: Any) -> str:
        return format_money(amount, currency)

    if action_name == ActionName.GET_TABLES:
        stats = data["stats"]
        status = data.get("status_filter")
        if status:
            names = [str(t["name"]) for t in data["tables"][:10]]
            reply = f"You have {data['count']} {status} tables out of {stats['total']} total tables."
            if names:
                reply += f" Tables: {', '.join(names)}."
            return reply
        parts = [f"{stats[s.replace('-', '_')]} {s}" for s in TABLE_STATUSES if stats.get(s.replace("-", "_"))]
        return f"You have {stats['total']} tables" + (f": {_join(parts)}." if parts else ".")

    if action_name == ActionName.UPDATE_TABLE_STATUS:
        name = data["table"]["name"]
        if not data["changed"]:
            return f"Table {name} is already {data['status']}."
        return f"Table {name} is now {data['status']} (was {data['previous_status']})."

    if action_name == ActionName.RESERVE_TABLE:
        reservation = data.get("reservation") or {}
        reply = f"Table {data['table']['name']} is reserved"
        if reservation.get("guests"):
            reply += f" for {reservation['guests']} guests"
        if reservation.get("reservation_time"):
            reply += f" at {reservation['reservation_time']}"
        return reply + "."

    if action_name == ActionName.GET_ORDERS:
        status = data.get("status_filter")
        label = f"{status} " if status else ""
        reply = f"You have {data['count']} {label}orders."
        lines = [
            f"#{o.get('daily_order_id') or '-'} {o.get('order_number')} ({o.get('status')}, {money(o.get('final_amount'))})"
            for o in data["orders"][:5]
        ]
        if lines:
            reply += " Latest: " + "; ".join(lines) + "."
        return reply

    if action_name == ActionName.GET_ORDER_BY_ID:
        order = data["order"]
        items = ", ".join(f"{i.get('quantity', 1)} x {i.get('name')}" for i in order.get("items") or [])
        amount = order.get("final_amount", order.get("total_amount"))
        return (
            f"Order {order.get('order_number')} is {order.get('status')}"
            f"{' for table ' + str(order['table_number']) if order.get('table_number') else ''}: "
            f"{items or 'no items'}. Total {money(amount)}."
        )

    if action_name == ActionName.CANCEL_ORDER:
        return f"Order {data['order']['order_number']} has been cancelled."

    if action_name == ActionName.PLACE_ORDER:
        items = ", ".join(f"{line['quantity']} x {line['name']}" for line in data["items"])
        where = f" for table {data['table']}" if data.get("table") else ""
        return (
            f"Order {data['order_number']} (#{data['daily_order_id']} today) placed{where}: {items}. "
            f"Total {money(data['final_amount'])} (subtotal {money(data['subtotal'])}, tax {money(data['tax_amount'])})."
        )

    if action_name == ActionName.GET_MENU:
        categories = data.get("by_category") or {}
        reply = (
            f"The menu has {data['count']} items ({data['veg_count']} veg, {data['non_veg_count']} non-veg)"
        )
        if categories:
            reply += " across " + _join([f"{name} ({n})" for name, n in categories.items()])
        return reply + "."

    if action_name == ActionName.SEARCH_MENU_ITEMS:
        if not data["items"]:
            return f"No menu items match '{data['search_term']}'."
        found = ", ".join(f"{i['name']} ({money(i['price'])})" for i in data["items"][:10])
        return f"Found {data['count']} items matching '{data['search_term']}': {found}."

    if action_name == ActionName.ADD_MENU_ITEM:
        item = data["item"]
        return f"Added {item['name']} to {item['category']} at {money(item['price'])}."

    if action_name == ActionName.UPDATE_MENU_ITEM:
        return f"Updated {data['previous_name']}: {', '.join(data['changes'])}."

    if action_name == ActionName.DELETE_MENU_ITEM:
        return f"{data['item']['name']} has been removed from the menu."

    if action_name == ActionName.GET_SALES_SUMMARY:
        reply = (
            f"Sales for {data['date']}: {money(data['total_revenue'])} from {data['total_orders']} orders "
            f"(average {money(data['average_order_value'])})."
        )
        if data.get("cancelled_orders"):
            reply += f" {data['cancelled_orders']} cancelled."
        return reply

    if action_name == ActionName.GET_CUSTOMERS:
        names = [str(c.get("name") or c.get("phone")) for c in data["customers"][:10]]
        reply = f"You have {data['count']} customers"
        return reply + (f": {', '.join(names)}." if names else ".")

    if action_name == ActionName.GET_CUSTOMER:
        customer = data["customer"]
        return (
            f"{customer.get('name') or customer.get('phone')}: {customer.get('order_count', 0)} orders, "
            f"{money(customer.get('total_spent'))} spent."
        )

    if action_name == ActionName.ADD_CUSTOMER:
        customer = data["customer"]
        who = customer.get("name") or customer.get("phone")
        return f"Added customer {who}." if data["created"] else f"Updated customer {who}."

    return "Done."


class ResponseSynthesizer:
    """
    Builds replies; only follow-up extraction ever reaches the model, on masked data.

    Extraction reads free-form questions against arbitrary result data, so it
    runs on the heavy model and draws on that model's daily budget.
    """

    def __init__(self, llm_client: LLMClient, model: Optional[str] = None):
        self.llm_client = llm_client
        self.model = model or config.HEAVY_MODEL

    def synthesize(self, action_name: ActionName, result: ActionResult, currency: str = "INR") -> str:
        if not result.success:
            return failure_message(result.reason or FailureReason.INVALID_STATE, result.error, action_name)
        return summarize(action_name, result, currency)

    async def extract_with_model(
        self,
        query: str,
        action_name: ActionName,
        result: ActionResult,
    ) -> Tuple[Optional[str], Optional[TokenUsage]]:
        """
        Ask the model to pick the answer out of the previous result.

        The result data is PII-masked before it leaves the process.

        Returns:
            (reply text or None if the model failed, token usage)
        """
        payload = json.dumps(mask_pii(result.data), default=str)[:6000]
        messages = [
            {"role": "system", "content": EXTRACTION_PROMPT},
            {"role": "system", "content": f"Previous action: {action_name.value}\nData: {payload}"},
            {"role": "user", "content": query},
        ]
        try:
            response = await retry_with_backoff(
                lambda: self.llm_client.chat(messages, model=self.model, temperature=0.0, max_tokens=200),
                max_retries=1,
                initial_delay=0.5,
            )
        except UpstreamUnavailableError as e:
            logger.warning(f"Follow-up extraction failed: {e}")
            return None, None
        text = (response.content or "").strip()
        return (text or None), response.usage
