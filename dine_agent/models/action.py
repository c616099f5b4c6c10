"""Action catalog and intent/result models."""

from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from dine_agent.infra.error_handler import FailureReason
from dine_agent.models.usage import TokenUsage


class ActionName(str, Enum):
    """Closed set of actions the assistant can perform."""
    GET_TABLES = "get_tables"
    UPDATE_TABLE_STATUS = "update_table_status"
    RESERVE_TABLE = "reserve_table"
    GET_ORDERS = "get_orders"
    GET_ORDER_BY_ID = "get_order_by_id"
    CANCEL_ORDER = "cancel_order"
    PLACE_ORDER = "place_order"
    GET_MENU = "get_menu"
    SEARCH_MENU_ITEMS = "search_menu_items"
    ADD_MENU_ITEM = "add_menu_item"
    UPDATE_MENU_ITEM = "update_menu_item"
    DELETE_MENU_ITEM = "delete_menu_item"
    GET_SALES_SUMMARY = "get_sales_summary"
    GET_CUSTOMERS = "get_customers"
    GET_CUSTOMER = "get_customer"
    ADD_CUSTOMER = "add_customer"


class ActionDescriptor(BaseModel):
    """Static description of one action, shared read-only across requests."""
    model_config = ConfigDict(frozen=True)

    name: ActionName
    description: str
    required_params: Tuple[str, ...] = ()
    optional_params: FrozenSet[str] = Field(default_factory=frozenset)
    required_permissions: FrozenSet[str] = Field(default_factory=frozenset)
    parameters_schema: Dict[str, Any] = Field(default_factory=dict, description="JSON Schema for arguments")
    read_only: bool = True
    domain: str = Field(..., description="tables | orders | menu | sales | customers")


class ResolvedIntent(BaseModel):
    """An action selected for the current query."""
    action_name: ActionName
    arguments: Dict[str, Any] = Field(default_factory=dict)
    missing_params: List[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    usage: Optional[TokenUsage] = None


class DirectAnswer(BaseModel):
    """The model answered from context without selecting an action."""
    text: str
    usage: Optional[TokenUsage] = None


class UnrecognizedIntent(BaseModel):
    """The query could not be mapped to an action or answer."""
    reason: FailureReason = FailureReason.UNRECOGNIZED
    detail: str = ""
    usage: Optional[TokenUsage] = None


IntentOutcome = Union[ResolvedIntent, DirectAnswer, UnrecognizedIntent]


class ActionResult(BaseModel):
    """Structured outcome of an executed action."""
    success: bool
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    reason: Optional[FailureReason] = None

    @classmethod
    def ok(cls, data: Dict[str, Any]) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, reason: FailureReason, error: str, data: Optional[Dict[str, Any]] = None) -> "ActionResult":
        return cls(success=False, reason=reason, error=error, data=data or {})
