"""
Bounded exponential-backoff retry for single network calls, on tenacity.

The delay after failed attempt n (1-based) is
min(max_delay, initial_delay * backoff_multiplier ** (n - 1)).
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import AsyncRetrying, RetryCallState, stop_after_attempt

from plugin_browser.errors import (
    HttpStatusError,
    InvalidRepositoryError,
    NetworkError,
    PayloadValidationError,
)

logger = logging.getLogger("resilience.retry")

T = TypeVar("T")

RETRYABLE_CLIENT_STATUSES = (408, 429)


def should_retry_http_error(error: BaseException, attempt: int) -> bool:
    """
    Default retryable-error predicate.

    Client errors (4xx other than 408 Request Timeout and 429 Too Many
    Requests) and validation errors are final. Server errors, timeouts,
    network failures and anything unclassified are retried.

    The attempt limit is enforced by the engine, not here.
    """
    if isinstance(error, HttpStatusError):
        if error.status in RETRYABLE_CLIENT_STATUSES:
            return True
        if error.status >= 500:
            return True
        # 3xx (including 304) and the remaining 4xx are answers, not faults
        return False
    if isinstance(error, (PayloadValidationError, InvalidRepositoryError)):
        return False
    if isinstance(error, (NetworkError, asyncio.TimeoutError, TimeoutError)):
        return True
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration. Immutable and shared across call sites."""
    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    is_retryable: Callable[[BaseException, int], bool] = should_retry_http_error

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait after the given 1-based failed attempt."""
        return min(self.max_delay, self.initial_delay * self.backoff_multiplier ** (attempt - 1))

    def with_predicate(self, predicate: Callable[[BaseException, int], bool]) -> "RetryPolicy":
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            backoff_multiplier=self.backoff_multiplier,
            is_retryable=predicate,
        )

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            initial_delay=settings.retry_initial_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            backoff_multiplier=settings.retry_backoff_multiplier,
        )


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: Optional[str] = None,
) -> T:
    """
    Run an async operation, retrying failures according to the policy.

    Args:
        operation: Zero-argument coroutine function performing one call
        policy: Retry configuration
        sleep: Awaitable delay function
        description: Label used in log messages

    Returns:
        The operation's result

    Raises:
        Exception: The last observed error, once attempts are exhausted or
            the policy declares the error non-retryable
    """
    label = description or getattr(operation, "__name__", "operation")
    attempts = max(1, policy.max_attempts)

    def should_retry(retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        if outcome is None or not outcome.failed:
            return False
        error = outcome.exception()
        # Cancellation is never retried
        if not isinstance(error, Exception):
            return False
        attempt = retry_state.attempt_number
        if not policy.is_retryable(error, attempt):
            logger.debug(f"Not retrying {label} after attempt {attempt}: {error}")
            return False
        if attempt >= attempts:
            logger.warning(f"Giving up on {label} after {attempt} attempts: {error}")
        return True

    def backoff(retry_state: RetryCallState) -> float:
        return policy.delay_after(retry_state.attempt_number)

    def log_retry(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Retryable error on {label} (attempt {retry_state.attempt_number}/{attempts}): "
            f"{type(error).__name__}: {error}. Waiting {delay:.2f}s..."
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=backoff,
        retry=should_retry,
        sleep=sleep,
        before_sleep=log_retry,
        reraise=True,
    )
    return await retrying(operation)
