"""OpenAI chat-completions adapter with function calling."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from dine_agent.infra.circuit_breaker import openai_circuit_breaker
from dine_agent.infra.config import config
from dine_agent.infra.error_handler import UpstreamUnavailableError, wrap_llm_error
from dine_agent.infra.metrics import llm_call_duration, llm_calls_total, llm_tokens_total
from dine_agent.infra.timeout import LLM_CALL_TIMEOUT
from dine_agent.models.action import ActionDescriptor
from dine_agent.models.usage import TokenUsage

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    """A function call selected by the model; arguments are raw JSON text."""
    name: str
    arguments: str


@dataclass
class LLMResponse:
    """Normalized chat completion result."""
    content: Optional[str]
    tool_calls: List[ToolCall] = field(default_factory=list)
    usage: Optional[TokenUsage] = None


def build_openai_tools(descriptors: List[ActionDescriptor]) -> List[Dict[str, Any]]:
    """
    Convert action descriptors to the OpenAI tool schema.

    Args:
        descriptors: Catalog entries to expose

    Returns:
        List of OpenAI tool dicts
    """
    openai_tools = []
    for descriptor in descriptors:
        openai_tools.append({
            "type": "function",
            "function": {
                "name": descriptor.name.value,
                "description": descriptor.description,
                "parameters": descriptor.parameters_schema or {"type": "object", "properties": {}},
            },
        })
    return openai_tools


class LLMClient:
    """Chat completion client guarded by a circuit breaker and a timeout."""

    provider = "openai"

    def __init__(self, api_key: Optional[str] = None, timeout: float = LLM_CALL_TIMEOUT):
        self._api_key = api_key
        self._client: Optional[AsyncOpenAI] = None
        self.timeout = timeout

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy initialization of OpenAI client."""
        if self._client is None:
            api_key = self._api_key or config.OPENAI_API_KEY
            if not api_key:
                raise UpstreamUnavailableError("OPENAI_API_KEY not configured")
            self._client = AsyncOpenAI(api_key=api_key)
        return self._client

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        model: str,
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: float = 0.3,
        max_tokens: int = 500,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> LLMResponse:
        """
        Call the chat completions API.

        Args:
            messages: System/user/assistant message sequence
            model: Model name
            tools: Optional OpenAI tool definitions (see build_openai_tools)
            temperature: Sampling temperature
            max_tokens: Completion token cap
            response_format: Optional response format, e.g. {"type": "json_object"}

        Returns:
            LLMResponse with free text and/or tool calls

        Raises:
            UpstreamUnavailableError: On failure, timeout or open circuit
        """
        request: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"
        if response_format:
            request["response_format"] = response_format

        async def _call():
            return await asyncio.wait_for(
                self.client.chat.completions.create(**request),
                timeout=self.timeout,
            )

        start = time.time()
        try:
            response = await openai_circuit_breaker.call_async(_call)
        except UpstreamUnavailableError:
            llm_calls_total.labels(provider=self.provider, model=model, status="failure").inc()
            raise
        except Exception as e:
            llm_calls_total.labels(provider=self.provider, model=model, status="failure").inc()
            wrapped = wrap_llm_error(e, self.provider)
            logger.warning(f"LLM call failed ({wrapped.category.value}): {wrapped.message}")
            raise UpstreamUnavailableError(f"Language model call failed: {wrapped.message}", cause=wrapped) from e
        finally:
            llm_call_duration.labels(provider=self.provider, model=model).observe(time.time() - start)

        llm_calls_total.labels(provider=self.provider, model=model, status="success").inc()

        choice = response.choices[0]
        message = choice.message
        tool_calls = [
            ToolCall(name=call.function.name, arguments=call.function.arguments or "{}")
            for call in (message.tool_calls or [])
        ]

        usage = None
        if response.usage is not None:
            usage = TokenUsage(
                model=model,
                prompt_tokens=response.usage.prompt_tokens or 0,
                completion_tokens=response.usage.completion_tokens or 0,
            )
            llm_tokens_total.labels(provider=self.provider, model=model, type="prompt").inc(usage.prompt_tokens)
            llm_tokens_total.labels(provider=self.provider, model=model, type="completion").inc(usage.completion_tokens)

        return LLMResponse(content=message.content, tool_calls=tool_calls, usage=usage)
