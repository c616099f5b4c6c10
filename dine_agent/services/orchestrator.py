"""End-to-end handling of one operator query."""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from dine_agent.infra.document_store import DocumentStore
from dine_agent.infra.error_handler import FailureReason, StorageUnavailableError, UpstreamUnavailableError
from dine_agent.infra.metrics import agent_queries_total, agent_query_duration
from dine_agent.infra.timeout import ACTION_EXECUTION_TIMEOUT
from dine_agent.infra.validation import sanitize_query_text, validate_identifier
from dine_agent.logging.event_logger import log_event
from dine_agent.models.action import (
    ActionName,
    DirectAnswer,
    ResolvedIntent,
    UnrecognizedIntent,
)
from dine_agent.models.agent import AgentRequest, AgentResponse
from dine_agent.models.conversation import ConversationState, TurnRole
from dine_agent.services.action_catalog import ACTION_CATALOG
from dine_agent.services.action_executor import ActionExecutor
from dine_agent.services.conversation_state import ConversationStateManager, FollowUpKind, classify_follow_up
from dine_agent.services.cost_governor import CostGovernor
from dine_agent.services.intent_resolver import IntentResolver
from dine_agent.services.permission_gate import NO_ACCESS_REASON, PermissionGate
from dine_agent.services.response_synthesizer import ResponseSynthesizer, extract_figure, failure_message
from dine_agent.services.retrieval import RetrievalEngine, format_context
from dine_agent.services.tenant_directory import TenantDirectory

logger = logging.getLogger(__name__)

RATE_LIMITED_MESSAGE = "You're sending requests faster than I can handle. Please wait a minute and try again."


class AgentOrchestrator:
    """
    Runs a query through the assistant pipeline.

    Order: sanitize, membership, rate limit, follow-up shortcut, cache,
    quota, retrieval, intent, missing-parameter deferral, permission,
    execution, conversation update, synthesis, cache store, reply.
    Every failure comes back as an AgentResponse with a failure_reason.
    """

    def __init__(
        self,
        store: DocumentStore,
        directory: TenantDirectory,
        retrieval: RetrievalEngine,
        resolver: IntentResolver,
        gate: PermissionGate,
        executor: ActionExecutor,
        conversations: ConversationStateManager,
        governor: CostGovernor,
        synthesizer: ResponseSynthesizer,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.directory = directory
        self.retrieval = retrieval
        self.resolver = resolver
        self.gate = gate
        self.executor = executor
        self.conversations = conversations
        self.governor = governor
        self.synthesizer = synthesizer
        self._clock = clock or datetime.utcnow
        self.model = resolver.model

    async def handle_query(self, request: AgentRequest) -> AgentResponse:
        """
        Handle one query.

        Raises:
            ValueError: If the tenant or user id is malformed
        """
        validate_identifier(request.tenant_id, "tenant_id")
        validate_identifier(request.user_id, "user_id")

        start = time.time()
        try:
            response = await self._handle(request)
        except (StorageUnavailableError, UpstreamUnavailableError) as e:
            logger.error(f"Upstream failure for tenant {request.tenant_id}: {e}")
            response = await self._fail(request, FailureReason.UPSTREAM_UNAVAILABLE, str(e))
        finally:
            agent_query_duration.observe(time.time() - start)

        if response.success:
            outcome = "cached" if response.cached else "success"
        else:
            outcome = response.failure_reason.value if response.failure_reason else "failure"
        agent_queries_total.labels(outcome=outcome).inc()
        return response

    async def _handle(self, request: AgentRequest) -> AgentResponse:
        tenant_id, user_id = request.tenant_id, request.user_id

        query = sanitize_query_text(request.query_text)
        if not query:
            return await self._fail(request, FailureReason.UNRECOGNIZED, "Empty query", record_turn=False)

        # Membership is proven before any tenant data is touched
        membership = await self.directory.get_role(user_id, tenant_id)
        if membership is None:
            return await self._fail(request, FailureReason.PERMISSION_DENIED, NO_ACCESS_REASON, record_turn=False)

        if not self.governor.check_rate_limit(tenant_id):
            return await self._fail(request, FailureReason.QUOTA_EXCEEDED, RATE_LIMITED_MESSAGE, record_turn=False)

        await self.conversations.append_turn(user_id, tenant_id, TurnRole.USER, query)
        state = await self.conversations.get_state(user_id, tenant_id)
        settings = await self.directory.get_settings(tenant_id)

        follow_up = classify_follow_up(query, state)
        if follow_up == FollowUpKind.EXTRACT:
            reply = await self._answer_follow_up(request, query, state)
            if reply is not None:
                return reply
        elif follow_up == FollowUpKind.REPEAT:
            intent = self.resolver.repeat_intent(state)
            if intent is not None:
                return await self._run_intent(request, query, intent, settings.currency, cacheable=False)

        cached = await self.governor.get_cached(tenant_id, query)
        if cached is not None:
            return await self._reply_from_cache(request, cached.response, cached.action_name)

        quota = await self.governor.check_and_reserve(tenant_id, self.model)
        if not quota.allowed:
            return await self._fail(request, FailureReason.QUOTA_EXCEEDED)

        hits = await self.retrieval.search(query, tenant_id)
        outcome = await self.resolver.resolve(
            query,
            tenant_id,
            state,
            context=format_context(hits),
            restaurant_name=settings.name,
            today=self._clock().date(),
        )
        if outcome.usage is not None:
            await self.governor.record(
                tenant_id, outcome.usage.model, outcome.usage.prompt_tokens, outcome.usage.completion_tokens
            )

        if isinstance(outcome, UnrecognizedIntent):
            return await self._fail(request, outcome.reason, outcome.detail)

        if isinstance(outcome, DirectAnswer):
            response = AgentResponse(success=True, reply=outcome.text)
            await self.governor.set_cached(tenant_id, query, response.model_dump(mode="json"))
            return await self._finish(request, response)

        return await self._run_intent(request, query, outcome, settings.currency, cacheable=True)

    async def _answer_follow_up(
        self,
        request: AgentRequest,
        query: str,
        state: ConversationState,
    ) -> Optional[AgentResponse]:
        """Answer from the previous result; None means resolve the query normally."""
        action_name = state.last_action_name
        result = state.last_result

        text = extract_figure(query, action_name, result.data)
        if text is None:
            quota = await self.governor.check_and_reserve(request.tenant_id, self.synthesizer.model)
            if not quota.allowed:
                return await self._fail(request, FailureReason.QUOTA_EXCEEDED)
            text, usage = await self.synthesizer.extract_with_model(query, action_name, result)
            if usage is not None:
                await self.governor.record(
                    request.tenant_id, usage.model, usage.prompt_tokens, usage.completion_tokens
                )
            if text is None:
                return None

        logger.info(f"Answered follow-up from previous {action_name.value} result for tenant {request.tenant_id}")
        return await self._finish(request, AgentResponse(success=True, reply=text))

    async def _reply_from_cache(
        self,
        request: AgentRequest,
        cached_response: Dict[str, Any],
        action_name: Optional[str],
    ) -> AgentResponse:
        # Permission can change after caching; check it again for the cached action
        if action_name:
            decision = await self.gate.check(request.user_id, request.tenant_id, ActionName(action_name))
            if not decision.allowed:
                return await self._fail(
                    request, FailureReason.PERMISSION_DENIED, decision.reason, action_name=ActionName(action_name)
                )
        response = AgentResponse.model_validate({**cached_response, "cached": True})
        return await self._finish(request, response)

    async def _run_intent(
        self,
        request: AgentRequest,
        query: str,
        intent: ResolvedIntent,
        currency: str,
        cacheable: bool,
    ) -> AgentResponse:
        tenant_id, user_id = request.tenant_id, request.user_id
        action_name = intent.action_name
        descriptor = ACTION_CATALOG[action_name]

        if intent.missing_params:
            return await self._fail(
                request,
                FailureReason.MISSING_PARAMETERS,
                action_name=action_name,
                missing_params=intent.missing_params,
            )

        decision = await self.gate.check(user_id, tenant_id, action_name)
        if not decision.allowed:
            return await self._fail(request, FailureReason.PERMISSION_DENIED, decision.reason, action_name=action_name)

        start = time.time()
        if descriptor.read_only:
            try:
                result = await asyncio.wait_for(
                    self.executor.execute(action_name, intent.arguments, tenant_id, user_id),
                    timeout=ACTION_EXECUTION_TIMEOUT,
                )
            except asyncio.TimeoutError:
                raise StorageUnavailableError(f"{action_name.value} timed out after {ACTION_EXECUTION_TIMEOUT}s")
        else:
            result = await self.executor.execute(action_name, intent.arguments, tenant_id, user_id)
        latency_ms = int((time.time() - start) * 1000)

        await self.conversations.set_last_result(user_id, tenant_id, action_name, intent.arguments, result)

        if not result.success:
            return await self._fail(
                request, result.reason or FailureReason.INVALID_STATE, result.error, action_name=action_name
            )

        await log_event(
            tenant_id=tenant_id,
            event_type="action_executed",
            user_id=user_id,
            action_name=action_name.value,
            latency_ms=latency_ms,
            store=self.store,
        )

        response = AgentResponse(
            success=True,
            reply=self.synthesizer.synthesize(action_name, result, currency),
            action_invoked=action_name.value,
            structured_result=result.data,
        )
        if cacheable and descriptor.read_only:
            await self.governor.set_cached(
                tenant_id, query, response.model_dump(mode="json"), action_name=action_name.value
            )
        return await self._finish(request, response)

    async def _fail(
        self,
        request: AgentRequest,
        reason: FailureReason,
        detail: Optional[str] = None,
        action_name: Optional[ActionName] = None,
        missing_params: Optional[List[str]] = None,
        record_turn: bool = True,
    ) -> AgentResponse:
        payload: Dict[str, Any] = {}
        if missing_params:
            payload["missing_params"] = missing_params
        if detail and reason in (FailureReason.UNRECOGNIZED, FailureReason.UPSTREAM_UNAVAILABLE):
            payload["detail"] = detail
            # Internal details stay in the audit log
            detail = None

        await log_event(
            tenant_id=request.tenant_id,
            event_type="query_failed",
            user_id=request.user_id,
            action_name=action_name.value if action_name else None,
            status="failure",
            reason=reason.value,
            payload=payload,
            store=self.store,
        )

        response = AgentResponse(
            success=False,
            reply=failure_message(reason, detail, action_name, missing_params),
            action_invoked=action_name.value if action_name else None,
            requires_follow_up=reason == FailureReason.MISSING_PARAMETERS,
            missing_params=missing_params or [],
            failure_reason=reason,
        )
        if record_turn:
            await self.conversations.append_turn(request.user_id, request.tenant_id, TurnRole.ASSISTANT, response.reply)
        return response

    async def _finish(self, request: AgentRequest, response: AgentResponse) -> AgentResponse:
        await self.conversations.append_turn(request.user_id, request.tenant_id, TurnRole.ASSISTANT, response.reply)
        return response
