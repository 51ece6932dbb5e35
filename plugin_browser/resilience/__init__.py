"""
Retry with exponential backoff and rate-limit detection.
"""
from .rate_limit import (
    NOT_RATE_LIMITED,
    RateLimitNotifier,
    RateLimitSignal,
    inspect_error,
    inspect_rate_limit,
    inspect_response,
)
from .retry import RetryPolicy, execute_with_retry, should_retry_http_error

__all__ = [
    "NOT_RATE_LIMITED",
    "RateLimitNotifier",
    "RateLimitSignal",
    "inspect_error",
    "inspect_rate_limit",
    "inspect_response",
    "RetryPolicy",
    "execute_with_retry",
    "should_retry_http_error",
]
