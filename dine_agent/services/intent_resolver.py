"""Maps an operator query to one catalog action, a direct answer, or nothing."""

import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional

from dine_agent.adapters.llm_client import LLMClient, build_openai_tools
from dine_agent.infra.config import config
from dine_agent.infra.error_handler import FailureReason, UpstreamUnavailableError, retry_with_backoff
from dine_agent.models.action import (
    ActionDescriptor,
    DirectAnswer,
    IntentOutcome,
    ResolvedIntent,
    UnrecognizedIntent,
)
from dine_agent.models.conversation import ConversationState
from dine_agent.services.action_catalog import get_descriptor, list_descriptors
from dine_agent.services.prompt_builder import build_messages

logger = logging.getLogger(__name__)

TOOL_CALL_CONFIDENCE = 0.9
DIRECT_ANSWER_CONFIDENCE = 0.6
REPEAT_CONFIDENCE = 1.0


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return isinstance(value, (list, dict)) and len(value) == 0


def find_missing_params(descriptor: ActionDescriptor, arguments: Dict[str, Any]) -> List[str]:
    """Required parameters absent from arguments, in declaration order."""
    return [name for name in descriptor.required_params if _is_missing(arguments.get(name))]


def confidence_for(descriptor: ActionDescriptor, missing: List[str]) -> float:
    if not descriptor.required_params:
        return TOOL_CALL_CONFIDENCE
    return round(TOOL_CALL_CONFIDENCE * (1 - len(missing) / len(descriptor.required_params)), 3)


class IntentResolver:
    """
    Resolves intent with one function-calling request to the light model.

    The model may select at most one action; only the first tool call is
    used. Required-parameter completeness is computed here from the action
    descriptor, never taken from the model.
    """

    def __init__(self, llm_client: LLMClient, model: Optional[str] = None):
        self.llm_client = llm_client
        self.model = model or config.LIGHT_MODEL
        self._tools = build_openai_tools(list_descriptors())

    def repeat_intent(self, state: ConversationState) -> Optional[ResolvedIntent]:
        """Re-target the previous read action with its previous arguments; writes are never replayed."""
        if state.last_action_name is None:
            return None
        descriptor = get_descriptor(state.last_action_name.value)
        if not descriptor.read_only:
            return None
        arguments = dict(state.last_arguments)
        return ResolvedIntent(
            action_name=descriptor.name,
            arguments=arguments,
            missing_params=find_missing_params(descriptor, arguments),
            confidence=REPEAT_CONFIDENCE,
        )

    async def resolve(
        self,
        query: str,
        tenant_id: str,
        state: ConversationState,
        context: str = "",
        restaurant_name: str = "your restaurant",
        today: Optional[date] = None,
    ) -> IntentOutcome:
        """
        Resolve a query.

        Args:
            query: Sanitized query text
            tenant_id: Restaurant the query is addressed to
            state: Conversation state snapshot of the user in this restaurant
            context: Formatted retrieval context
            restaurant_name: Display name used in the prompt
            today: Current date used in the prompt

        Returns:
            ResolvedIntent, DirectAnswer or UnrecognizedIntent (never raises for
            model failures)
        """
        messages = build_messages(
            query,
            state=state,
            context=context,
            restaurant_name=restaurant_name,
            today=today,
        )

        try:
            response = await retry_with_backoff(
                lambda: self.llm_client.chat(messages, model=self.model, tools=self._tools),
                max_retries=1,
                initial_delay=0.5,
            )
        except UpstreamUnavailableError as e:
            logger.warning(f"Intent resolution failed for tenant {tenant_id}: {e}")
            return UnrecognizedIntent(reason=FailureReason.UPSTREAM_UNAVAILABLE, detail=str(e))

        usage = response.usage
        if response.tool_calls:
            if len(response.tool_calls) > 1:
                logger.info(f"Model selected {len(response.tool_calls)} actions; using the first")
            return self._parse_tool_call(response.tool_calls[0].name, response.tool_calls[0].arguments, usage)

        text = (response.content or "").strip()
        if not text:
            return UnrecognizedIntent(detail="Empty model reply", usage=usage)
        return DirectAnswer(text=text, usage=usage)

    def _parse_tool_call(self, name: str, raw_arguments: str, usage) -> IntentOutcome:
        descriptor = get_descriptor(name)
        if descriptor is None:
            logger.warning(f"Model selected unknown action '{name}'")
            return UnrecognizedIntent(detail=f"Unknown action '{name}'", usage=usage)

        try:
            arguments = json.loads(raw_arguments or "{}")
        except json.JSONDecodeError:
            logger.warning(f"Unparseable arguments for action {name}: {raw_arguments!r}")
            return UnrecognizedIntent(detail=f"Unparseable arguments for '{name}'", usage=usage)
        if not isinstance(arguments, dict):
            return UnrecognizedIntent(detail=f"Arguments for '{name}' are not an object", usage=usage)

        known = set(descriptor.required_params) | set(descriptor.optional_params)
        dropped = sorted(set(arguments) - known)
        if dropped:
            logger.debug(f"Ignoring undeclared arguments for {name}: {dropped}")
        arguments = {key: value for key, value in arguments.items() if key in known}

        missing = find_missing_params(descriptor, arguments)
        return ResolvedIntent(
            action_name=descriptor.name,
            arguments=arguments,
            missing_params=missing,
            confidence=confidence_for(descriptor, missing),
            usage=usage,
        )
