"""Prometheus metrics export."""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Request metrics
agent_queries_total = Counter(
    "agent_queries_total",
    "Total assistant queries handled",
    ["outcome"],  # success, cached, follow_up, or a failure reason
)

agent_query_duration = Histogram(
    "agent_query_duration_seconds",
    "End-to-end assistant query duration in seconds",
)

# LLM metrics
llm_calls_total = Counter(
    "llm_calls_total",
    "Total LLM API calls",
    ["provider", "model", "status"],
)

llm_call_duration = Histogram(
    "llm_call_duration_seconds",
    "LLM API call duration in seconds",
    ["provider", "model"],
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Total LLM tokens",
    ["provider", "model", "type"],  # type: prompt or completion
)

embedding_calls_total = Counter(
    "embedding_calls_total",
    "Total embedding API calls",
    ["model", "status"],
)

# Action metrics
actions_executed_total = Counter(
    "actions_executed_total",
    "Total actions executed",
    ["action", "status"],
)

action_duration = Histogram(
    "action_duration_seconds",
    "Action execution duration in seconds",
    ["action"],
)

permission_denials_total = Counter(
    "permission_denials_total",
    "Permission gate denials",
    ["action"],
)

# Cost governance
response_cache_total = Counter(
    "response_cache_total",
    "Response cache lookups",
    ["result"],  # hit or miss
)

quota_exceeded_total = Counter(
    "quota_exceeded_total",
    "Requests rejected by daily token or rate ceilings",
    ["kind"],  # tokens or rate
)

# Retrieval
retrieval_cross_tenant_drops_total = Counter(
    "retrieval_cross_tenant_drops_total",
    "Knowledge chunks dropped because their tenant did not match the query tenant",
)

# Circuit breaker metrics
circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["service"],
)


def get_metrics_response() -> Response:
    """Get Prometheus metrics as HTTP response."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
