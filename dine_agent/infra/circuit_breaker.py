"""Circuit breaker for external service calls."""

from enum import Enum
from typing import Callable, Any, Optional
from datetime import datetime

from dine_agent.infra.metrics import circuit_breaker_state


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CircuitOpenError(RuntimeError):
    """Raised when a call is rejected because the circuit is open."""


class CircuitBreaker:
    """
    Circuit breaker for the language-model and embedding services.

    Opens after ``failure_threshold`` consecutive failures and rejects calls
    until ``recovery_timeout`` seconds have passed; then two successful
    half-open calls close it again.
    """

    def __init__(
        self,
        service: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: type = Exception,
    ):
        self.service = service
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = CircuitState.CLOSED
        self.success_count = 0  # For half-open state

    def _set_state(self, state: CircuitState) -> None:
        self.state = state
        circuit_breaker_state.labels(service=self.service).set(_STATE_GAUGE_VALUES[state])

    def _before_call(self) -> None:
        if self.state != CircuitState.OPEN:
            return
        if self.last_failure_time:
            elapsed = (datetime.utcnow() - self.last_failure_time).total_seconds()
            if elapsed >= self.recovery_timeout:
                self._set_state(CircuitState.HALF_OPEN)
                self.success_count = 0
                return
            raise CircuitOpenError(
                f"Circuit breaker for {self.service} is OPEN. "
                f"Retry after {int(self.recovery_timeout - elapsed)} seconds."
            )
        raise CircuitOpenError(f"Circuit breaker for {self.service} is OPEN.")

    def _on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= 2:  # Need 2 successes to close
                self._set_state(CircuitState.CLOSED)
                self.failure_count = 0
                self.success_count = 0
        else:
            self.failure_count = 0

    def _on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = datetime.utcnow()
        if self.failure_count >= self.failure_threshold:
            self._set_state(CircuitState.OPEN)

    async def call_async(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute async function with circuit breaker protection.

        Raises:
            CircuitOpenError: If circuit is open
            Exception: Original exception from function
        """
        self._before_call()
        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result


# Global circuit breakers for external services
openai_circuit_breaker = CircuitBreaker(
    service="openai_chat",
    failure_threshold=5,
    recovery_timeout=60,
)

embedding_circuit_breaker = CircuitBreaker(
    service="openai_embeddings",
    failure_threshold=5,
    recovery_timeout=60,
)
