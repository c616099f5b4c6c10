"""Per-tenant request rate limiting (sliding one-minute window)."""

import logging
from typing import Callable, Dict, List, Optional
from datetime import datetime, timedelta
from collections import defaultdict

import redis

from dine_agent.infra.config import config

logger = logging.getLogger(__name__)


class RequestRateLimiter:
    """
    Sliding-window limiter keyed by tenant id.

    Uses Redis sorted sets when a client is supplied, otherwise an in-memory
    store. Redis errors fall back to the in-memory window for that call.
    """

    def __init__(
        self,
        per_tenant_limit: int = 60,
        redis_client: Optional[redis.Redis] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.per_tenant_limit = per_tenant_limit
        self.redis_client = redis_client
        self._clock = clock or datetime.utcnow
        self._memory: Dict[str, List[datetime]] = defaultdict(list)

    def check(self, tenant_id: str) -> bool:
        """
        Record a request for the tenant if it is within the limit.

        Returns:
            True if within limits, False if rate limited
        """
        if self.redis_client is not None:
            try:
                return self._check_redis(tenant_id)
            except redis.RedisError as e:
                logger.warning(f"Redis rate limit check failed, using in-memory window: {e}")
        return self._check_memory(tenant_id)

    def remaining(self, tenant_id: str) -> int:
        """Requests left in the current window."""
        minute_ago = self._clock() - timedelta(minutes=1)
        if self.redis_client is not None:
            try:
                count = self.redis_client.zcount(
                    self._redis_key(tenant_id), int(minute_ago.timestamp()), "+inf"
                )
                return max(0, self.per_tenant_limit - count)
            except redis.RedisError as e:
                logger.warning(f"Redis rate limit read failed: {e}")
        requests = [ts for ts in self._memory[tenant_id] if ts > minute_ago]
        return max(0, self.per_tenant_limit - len(requests))

    def headers(self, tenant_id: str) -> Dict[str, str]:
        """X-RateLimit-* headers for responses."""
        now = self._clock()
        return {
            "X-RateLimit-Limit": str(self.per_tenant_limit),
            "X-RateLimit-Remaining": str(self.remaining(tenant_id)),
            "X-RateLimit-Reset": str(int((now + timedelta(minutes=1)).timestamp())),
        }

    @staticmethod
    def _redis_key(tenant_id: str) -> str:
        return f"ratelimit:tenant:{tenant_id}"

    def _check_redis(self, tenant_id: str) -> bool:
        now = self._clock()
        window_start = int((now - timedelta(minutes=1)).timestamp())
        key = self._redis_key(tenant_id)

        current_count = self.redis_client.zcount(key, window_start, "+inf")
        if current_count >= self.per_tenant_limit:
            return False

        self.redis_client.zadd(key, {str(now.timestamp()): now.timestamp()})
        self.redis_client.zremrangebyscore(key, "-inf", window_start)
        self.redis_client.expire(key, 60)
        return True

    def _check_memory(self, tenant_id: str) -> bool:
        now = self._clock()
        minute_ago = now - timedelta(minutes=1)

        requests = self._memory[tenant_id]
        requests[:] = [ts for ts in requests if ts > minute_ago]
        if len(requests) >= self.per_tenant_limit:
            return False

        requests.append(now)
        return True


def build_rate_limiter() -> RequestRateLimiter:
    """Create the limiter configured by RATE_LIMIT_BACKEND."""
    client = None
    if config.RATE_LIMIT_BACKEND == "redis":
        client = redis.Redis.from_url(config.REDIS_URL, decode_responses=True)
    return RequestRateLimiter(per_tenant_limit=config.RATE_LIMIT_PER_MINUTE, redis_client=client)
