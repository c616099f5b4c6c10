"""Token budgets, response caching and request rate limiting per tenant."""

import hashlib
import logging
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from dine_agent.infra.cache import TenantCache
from dine_agent.infra.config import config
from dine_agent.infra.document_store import DocumentStore
from dine_agent.infra.metrics import quota_exceeded_total, response_cache_total
from dine_agent.infra.rate_limiter import RequestRateLimiter
from dine_agent.models.usage import CacheEntry, QuotaStatus, UsageRecord
from dine_agent.services.cost_calculator import calculate_llm_cost

logger = logging.getLogger(__name__)

USAGE = "usage"


def normalize_query(query_text: str) -> str:
    return " ".join(query_text.casefold().split())


def query_hash(query_text: str) -> str:
    """Stable hash of the normalized query text."""
    return hashlib.sha256(normalize_query(query_text).encode("utf-8")).hexdigest()


class CostGovernor:
    """
    Enforces per-tenant, per-model daily token ceilings and caches replies.

    Usage lives in counter documents ``usage/{tenant}:{date}:{model}`` that
    are only changed through atomic increments, so concurrent requests of
    one tenant accumulate instead of overwriting each other.
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: TenantCache,
        rate_limiter: Optional[RequestRateLimiter] = None,
        clock: Optional[Callable[[], datetime]] = None,
        freshness_seconds: Optional[int] = None,
        limits: Optional[Dict[str, int]] = None,
    ):
        self.store = store
        self.cache = cache
        self.rate_limiter = rate_limiter or RequestRateLimiter(per_tenant_limit=config.RATE_LIMIT_PER_MINUTE)
        self._clock = clock or datetime.utcnow
        self.freshness_seconds = freshness_seconds or config.CACHE_TTL_SECONDS
        self.limits = dict(limits) if limits is not None else config.daily_token_limits()

    def today(self) -> str:
        return self._clock().date().isoformat()

    @staticmethod
    def _usage_id(tenant_id: str, day: str, model: str) -> str:
        return f"{tenant_id}:{day}:{model}"

    def limit_for(self, model: str) -> int:
        return self.limits.get(model, self.limits.get("default", 0))

    async def check_and_reserve(self, tenant_id: str, model: str) -> QuotaStatus:
        """
        Check whether the tenant may make another call to ``model`` today.

        Tokens are charged after the call by ``record``; a call that starts
        below the ceiling is allowed to finish even if it crosses it.

        Returns:
            QuotaStatus with remaining tokens for the day
        """
        limit = self.limit_for(model)
        counters = await self.store.get_counters(USAGE, self._usage_id(tenant_id, self.today(), model), tenant_id)
        used = int(counters.get("tokens", 0))

        if used >= limit:
            quota_exceeded_total.labels(kind="tokens").inc()
            logger.warning(f"Daily token limit reached for tenant {tenant_id}, model {model}: {used}/{limit}")
            return QuotaStatus(allowed=False, remaining=0, limit=limit)
        return QuotaStatus(allowed=True, remaining=limit - used, limit=limit)

    async def record(self, tenant_id: str, model: str, tokens_in: int, tokens_out: int) -> UsageRecord:
        """Add one call's tokens, request count and cost to today's usage."""
        day = self.today()
        cost = calculate_llm_cost(model, prompt_tokens=tokens_in, completion_tokens=tokens_out)
        totals = await self.store.increment(
            USAGE,
            self._usage_id(tenant_id, day, model),
            {"tokens": tokens_in + tokens_out, "requests": 1, "cost": cost},
            tenant_id=tenant_id,
        )
        logger.debug(f"Recorded {tokens_in + tokens_out} tokens for tenant {tenant_id}, model {model}")
        return UsageRecord(
            tenant_id=tenant_id,
            date=day,
            model=model,
            token_count=int(totals["tokens"]),
            request_count=int(totals["requests"]),
            cost=float(totals["cost"]),
        )

    async def get_usage(self, tenant_id: str, day: Optional[date] = None) -> List[UsageRecord]:
        """Usage of every budgeted model for one day (today by default)."""
        day_str = (day.isoformat() if day else self.today())
        records = []
        for model in sorted(m for m in self.limits if m != "default"):
            counters = await self.store.get_counters(USAGE, self._usage_id(tenant_id, day_str, model), tenant_id)
            if not counters:
                continue
            records.append(UsageRecord(
                tenant_id=tenant_id,
                date=day_str,
                model=model,
                token_count=int(counters.get("tokens", 0)),
                request_count=int(counters.get("requests", 0)),
                cost=float(counters.get("cost", 0.0)),
            ))
        return records

    async def get_cached(self, tenant_id: str, query_text: str) -> Optional[CacheEntry]:
        """
        Cached reply for an identical (normalized) query of the same tenant.

        Entries older than the freshness window count as misses.
        """
        digest = query_hash(query_text)
        raw = await self.cache.get(tenant_id, f"response:{digest}")
        if raw is None:
            response_cache_total.labels(result="miss").inc()
            return None

        entry = CacheEntry.model_validate(raw)
        if entry.tenant_id != tenant_id or entry.query_hash != digest:
            response_cache_total.labels(result="miss").inc()
            return None
        if self._clock() - entry.created_at > timedelta(seconds=self.freshness_seconds):
            response_cache_total.labels(result="expired").inc()
            return None

        response_cache_total.labels(result="hit").inc()
        return entry

    async def set_cached(
        self,
        tenant_id: str,
        query_text: str,
        response: Dict[str, Any],
        action_name: Optional[str] = None,
    ) -> CacheEntry:
        digest = query_hash(query_text)
        entry = CacheEntry(
            tenant_id=tenant_id,
            query_hash=digest,
            response=response,
            action_name=action_name,
            created_at=self._clock(),
        )
        await self.cache.set(
            tenant_id,
            f"response:{digest}",
            entry.model_dump(mode="json"),
            ttl_seconds=self.freshness_seconds,
        )
        return entry

    def check_rate_limit(self, tenant_id: str) -> bool:
        """Count one request against the tenant's per-minute limit."""
        allowed = self.rate_limiter.check(tenant_id)
        if not allowed:
            quota_exceeded_total.labels(kind="requests").inc()
            logger.warning(f"Request rate limit exceeded for tenant {tenant_id}")
        return allowed
