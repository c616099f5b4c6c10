"""Per-user conversation memory and follow-up detection."""

import asyncio
import logging
import re
from collections import deque
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from dine_agent.infra.config import config
from dine_agent.models.action import ActionName, ActionResult
from dine_agent.models.conversation import ConversationState, ConversationTurn, TurnRole
from dine_agent.services.action_catalog import ACTION_CATALOG

logger = logging.getLogger(__name__)

# Queries shorter than this may refer to the previous result
SHORT_QUERY_LENGTH = 20

FOLLOW_UP_KEYWORDS: Dict[str, Any] = {
    # Requests that change something are never answered from a previous result
    "mutation_verbs": {
        "mark", "set", "change", "update", "cancel", "delete", "remove", "add", "place",
        "reserve", "book", "create", "make", "clear", "rename",
    },
    "action_verbs": {"add", "place", "order"},
    "data_query_cues": {
        "how many", "count", "only", "total", "what about", "which", "and the", "how much",
        "available", "occupied", "reserved", "cleaning", "out of service", "out-of-service",
        "pending", "confirmed", "preparing", "ready", "served", "completed", "cancelled",
        "veg", "non-veg", "vegetarian",
    },
    "repeat_cues": {"check again", "refresh", "recheck", "again", "one more time", "same again"},
    "greetings": {"hi", "hello", "hey", "thanks", "thank you", "ok", "okay", "bye", "good morning", "good evening"},
    "domains": {
        "tables": {"table", "tables", "seat", "seats", "floor"},
        "orders": {"order", "orders"},
        "menu": {"menu", "item", "items", "dish", "dishes"},
        "sales": {"sales", "revenue", "earnings", "income"},
        "customers": {"customer", "customers", "guest", "guests"},
    },
}


class FollowUpKind(str, Enum):
    NONE = "none"  # Resolve the query normally
    EXTRACT = "extract"  # Answer from the previous structured result
    REPEAT = "repeat"  # Re-run the previous read action


def _normalize(text: str) -> str:
    return " ".join(text.casefold().split())


def _contains(text: str, phrase: str) -> bool:
    return re.search(rf"(?<![\w-]){re.escape(phrase)}(?![\w-])", text) is not None


def _contains_any(text: str, phrases: Set[str]) -> bool:
    return any(_contains(text, phrase) for phrase in phrases)


def named_domains(query: str) -> Set[str]:
    """Business domains a query mentions by keyword."""
    text = _normalize(query)
    return {domain for domain, words in FOLLOW_UP_KEYWORDS["domains"].items() if _contains_any(text, words)}


def is_repeat_request(query: str) -> bool:
    return _contains_any(_normalize(query), FOLLOW_UP_KEYWORDS["repeat_cues"])


def classify_follow_up(query: str, state: ConversationState) -> FollowUpKind:
    """
    Decide whether a query refers to the previous turn.

    A query with a mutation verb is always NONE, so it is resolved fresh.
    REPEAT when the query asks to re-run and the previous action only read
    data. EXTRACT when the previous action read data successfully, the query
    does not switch to another domain, and either (a) is short with no action
    verb, (b) contains a data-query cue, or (c) overlaps the previous domain.
    NONE otherwise.
    """
    text = _normalize(query)
    last_action = state.last_action_name
    last_descriptor = ACTION_CATALOG.get(last_action) if last_action is not None else None

    # Write results describe one record, never a snapshot to answer from
    if last_descriptor is None or not last_descriptor.read_only:
        return FollowUpKind.NONE
    if _contains_any(text, FOLLOW_UP_KEYWORDS["mutation_verbs"]):
        return FollowUpKind.NONE
    if is_repeat_request(text):
        return FollowUpKind.REPEAT

    if state.last_result is None or not state.last_result.success:
        return FollowUpKind.NONE
    if text in FOLLOW_UP_KEYWORDS["greetings"]:
        return FollowUpKind.NONE

    domains = named_domains(text)
    if domains and last_descriptor.domain not in domains:
        return FollowUpKind.NONE

    short_without_action = len(text) < SHORT_QUERY_LENGTH and not _contains_any(
        text, FOLLOW_UP_KEYWORDS["action_verbs"]
    )
    data_query = _contains_any(text, FOLLOW_UP_KEYWORDS["data_query_cues"])
    same_domain_read = last_descriptor.domain in domains

    if short_without_action or data_query or same_domain_read:
        return FollowUpKind.EXTRACT
    return FollowUpKind.NONE


class ConversationStateManager:
    """
    In-memory conversation state keyed by (user_id, tenant_id).

    Each key has its own lock so turns of one conversation are appended in
    arrival order while other conversations proceed independently.
    """

    def __init__(self, window: Optional[int] = None):
        self.window = window or config.CONVERSATION_WINDOW
        self._states: Dict[Tuple[str, str], ConversationState] = {}
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}

    def _lock(self, key: Tuple[str, str]) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks.setdefault(key, asyncio.Lock())
        return lock

    def _state(self, key: Tuple[str, str]) -> ConversationState:
        state = self._states.get(key)
        if state is None:
            state = ConversationState(turns=deque(maxlen=self.window))
            self._states[key] = state
        return state

    async def append_turn(self, user_id: str, tenant_id: str, role: TurnRole, content: str) -> None:
        key = (user_id, tenant_id)
        async with self._lock(key):
            self._state(key).turns.append(ConversationTurn(role=role, content=content))

    async def get_recent(self, user_id: str, tenant_id: str, n: int) -> List[ConversationTurn]:
        """Last n turns, oldest first."""
        key = (user_id, tenant_id)
        async with self._lock(key):
            turns = list(self._state(key).turns)
        return turns[-n:] if n > 0 else []

    async def get_last_result(self, user_id: str, tenant_id: str) -> Optional[ActionResult]:
        key = (user_id, tenant_id)
        async with self._lock(key):
            return self._state(key).last_result

    async def set_last_result(
        self,
        user_id: str,
        tenant_id: str,
        action_name: ActionName,
        arguments: Dict[str, Any],
        result: ActionResult,
    ) -> None:
        """Remember the latest executed action; concurrent requests are last-write-wins."""
        key = (user_id, tenant_id)
        async with self._lock(key):
            state = self._state(key)
            state.last_action_name = action_name
            state.last_arguments = dict(arguments)
            state.last_result = result

    async def get_state(self, user_id: str, tenant_id: str) -> ConversationState:
        """Snapshot of the conversation state; later changes don't affect it."""
        key = (user_id, tenant_id)
        async with self._lock(key):
            state = self._state(key)
            return ConversationState(
                turns=deque(state.turns, maxlen=self.window),
                last_result=state.last_result,
                last_action_name=state.last_action_name,
                last_arguments=dict(state.last_arguments),
            )

    async def clear(self, user_id: str, tenant_id: str) -> None:
        key = (user_id, tenant_id)
        async with self._lock(key):
            self._states.pop(key, None)
