"""Error taxonomy, classification and retry logic."""

import asyncio
import random
import re
from typing import Optional, Type, Tuple, Callable, Any
from enum import Enum


class FailureReason(str, Enum):
    """Structured failure reasons returned to callers instead of raw exceptions."""
    UNRECOGNIZED = "unrecognized"  # Query could not be mapped to a known action
    MISSING_PARAMETERS = "missing_parameters"  # Action known, required args absent
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"  # Referenced table/order/item/customer does not exist
    INVALID_STATE = "invalid_state"  # Entity exists but a precondition fails
    QUOTA_EXCEEDED = "quota_exceeded"  # Daily token or request ceiling hit
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"  # Model or storage call failed/timed out


class ErrorCategory(str, Enum):
    """Categories of errors for retry handling."""
    NETWORK = "network"  # Connection issues, timeouts
    API_ERROR = "api_error"  # API returned error response
    AUTH_ERROR = "auth_error"  # Authentication/authorization failures
    RATE_LIMIT = "rate_limit"  # Rate limit exceeded
    STORAGE = "storage"  # Document store failures
    VALIDATION = "validation"  # Input validation errors
    UNKNOWN = "unknown"


class RetryableError(Exception):
    """Base exception for classified errors."""
    def __init__(self, message: str, category: ErrorCategory, retryable: bool = True, retry_after: Optional[float] = None):
        self.message = message
        self.category = category
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(message)


class NetworkError(RetryableError):
    """Network-related errors (connection, timeout)."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.NETWORK, retryable=True, retry_after=retry_after)


class APIError(RetryableError):
    """API returned an error response."""
    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = False, retry_after: Optional[float] = None):
        self.status_code = status_code
        super().__init__(message, ErrorCategory.API_ERROR, retryable=retryable, retry_after=retry_after)


class AuthError(RetryableError):
    """Authentication/authorization errors."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.AUTH_ERROR, retryable=False)


class RateLimitError(RetryableError):
    """Upstream rate limit exceeded."""
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, ErrorCategory.RATE_LIMIT, retryable=True, retry_after=retry_after)


class UpstreamUnavailableError(RetryableError):
    """Language-model or embedding call failed after classification."""
    def __init__(self, message: str, cause: Optional[RetryableError] = None):
        self.cause = cause
        retryable = cause.retryable if cause is not None else True
        category = cause.category if cause is not None else ErrorCategory.NETWORK
        retry_after = cause.retry_after if cause is not None else None
        super().__init__(message, category, retryable=retryable, retry_after=retry_after)


class StorageUnavailableError(RetryableError):
    """Document store call failed or timed out."""
    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.STORAGE, retryable=True)


def classify_error(error: Exception) -> Tuple[ErrorCategory, bool, Optional[float]]:
    """
    Classify an error into a category and determine if it's retryable.

    Args:
        error: The exception to classify

    Returns:
        Tuple of (category, retryable, retry_after_seconds)
    """
    if isinstance(error, RetryableError):
        return error.category, error.retryable, error.retry_after

    if isinstance(error, (asyncio.TimeoutError, ConnectionError, TimeoutError)):
        return ErrorCategory.NETWORK, True, None

    error_str = str(error).lower()

    if any(keyword in error_str for keyword in ['connection', 'timeout', 'network', 'dns', 'refused']):
        return ErrorCategory.NETWORK, True, None

    if 'rate limit' in error_str or '429' in error_str or 'too many requests' in error_str:
        retry_after = None
        match = re.search(r'retry[_-]after[:\s]+(\d+)', error_str, re.IGNORECASE)
        if match:
            retry_after = float(match.group(1))
        return ErrorCategory.RATE_LIMIT, True, retry_after

    if any(keyword in error_str for keyword in ['unauthorized', 'forbidden', '401', '403', 'authentication']):
        return ErrorCategory.AUTH_ERROR, False, None

    if 'api' in error_str or 'http' in error_str:
        return ErrorCategory.API_ERROR, False, None

    return ErrorCategory.UNKNOWN, False, None


async def retry_with_backoff(
    func: Callable,
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    on_retry: Optional[Callable[[Exception, int], None]] = None,
) -> Any:
    """
    Retry a function with exponential backoff.

    Only use this for read-only calls (classification, embeddings, reads).
    Mutating calls must never go through here.

    Args:
        func: Async callable taking no arguments
        max_retries: Maximum number of retry attempts
        initial_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        on_retry: Optional callback called on each retry (exception, attempt_number)

    Returns:
        Result of the function call

    Raises:
        Last exception if all retries fail or the error is not retryable
    """
    for attempt in range(max_retries + 1):
        try:
            return await func()
        except Exception as e:
            _, retryable, retry_after = classify_error(e)
            if not retryable or attempt >= max_retries:
                raise

            if retry_after:
                delay = min(retry_after, max_delay)
            else:
                delay = min(initial_delay * (exponential_base ** attempt), max_delay)
            # Jitter to avoid thundering herd
            delay += random.uniform(0, delay * 0.1)

            if on_retry:
                result = on_retry(e, attempt + 1)
                if asyncio.iscoroutine(result):
                    await result

            await asyncio.sleep(delay)


def wrap_llm_error(error: Exception, provider: str) -> RetryableError:
    """
    Wrap LLM API errors into our error types.

    Args:
        error: Original exception
        provider: Provider name ('openai')

    Returns:
        RetryableError with appropriate category
    """
    if isinstance(error, RetryableError):
        return error

    if isinstance(error, asyncio.TimeoutError):
        return NetworkError(f"{provider} call timed out")

    error_str = str(error)
    error_lower = error_str.lower()

    status_code = getattr(error, 'status_code', None)

    if status_code == 429 or 'rate limit' in error_lower:
        retry_after = None
        response = getattr(error, 'response', None)
        headers = getattr(response, 'headers', None)
        if headers is not None:
            retry_after_header = headers.get('retry-after')
            if retry_after_header:
                try:
                    retry_after = float(retry_after_header)
                except ValueError:
                    retry_after = None
        return RateLimitError(f"{provider} rate limit exceeded", retry_after=retry_after)

    if status_code in (401, 403) or 'unauthorized' in error_lower or 'authentication' in error_lower:
        return AuthError(f"{provider} authentication failed")

    if any(keyword in error_lower for keyword in ['connection', 'timeout', 'network']):
        return NetworkError(f"{provider} network error: {error_str}")

    if status_code is not None:
        if status_code >= 500:
            return APIError(f"{provider} server error ({status_code})", status_code=status_code, retryable=True)
        return APIError(f"{provider} API error ({status_code})", status_code=status_code, retryable=False)

    # Unknown errors are assumed transient
    return NetworkError(f"{provider} error: {error_str}")
