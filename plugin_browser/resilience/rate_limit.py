"""
Rate-limit detection and debounced rate-limit notices.

Detection reads the status code and the well-known quota headers of a
response (or of the HttpStatusError a throwing transport raised for it).
"""
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping, Optional

from plugin_browser.errors import HttpStatusError, RateLimitedError
from plugin_browser.utils.helpers import get_header, safe_int

logger = logging.getLogger("resilience.rate_limit")

# Configuration
RATE_LIMIT_STATUSES = (403, 429)
RATE_LIMIT_NOTICE_DEBOUNCE_SECONDS = 20


@dataclass(frozen=True)
class RateLimitSignal:
    """Outcome of inspecting one call for rate limiting. Never persisted."""
    is_rate_limited: bool
    reset_at: Optional[datetime] = None
    message: Optional[str] = None


NOT_RATE_LIMITED = RateLimitSignal(is_rate_limited=False)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def inspect_response(
    status: Optional[int],
    headers: Optional[Mapping[str, str]] = None,
    now: Optional[datetime] = None,
) -> RateLimitSignal:
    """
    Inspect a status code and headers for rate limiting.

    429 is always a rate limit. 403 is one only when the quota headers say
    so (remaining is "0", or a reset / retry-after header is present), since
    403 is also used for plain permission errors.

    Safe with missing or partial header data.
    """
    if status not in RATE_LIMIT_STATUSES:
        return NOT_RATE_LIMITED

    now = now or _utcnow()
    remaining = get_header(headers, "x-ratelimit-remaining")
    reset = get_header(headers, "x-ratelimit-reset")
    retry_after = get_header(headers, "retry-after")
    limit = get_header(headers, "x-ratelimit-limit")

    if status == 403 and not (
        (remaining is not None and str(remaining).strip() == "0") or reset or retry_after
    ):
        return NOT_RATE_LIMITED

    reset_at = None
    if reset:
        reset_seconds = safe_int(reset, default=-1)
        if reset_seconds >= 0:
            try:
                reset_at = datetime.fromtimestamp(reset_seconds, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                reset_at = None
    if reset_at is None and retry_after:
        delay = safe_int(retry_after, default=-1)
        if delay >= 0:
            reset_at = now + timedelta(seconds=delay)
    known_reset = reset_at is not None
    if reset_at is None:
        # Exact time unknown: retry later
        reset_at = now

    message = "API rate limit exceeded."
    if limit:
        message += f" Limit: {limit} requests/hour."
    if known_reset:
        message += f" Resets at {reset_at.strftime('%H:%M:%S')} UTC."

    return RateLimitSignal(is_rate_limited=True, reset_at=reset_at, message=message)


def inspect_error(error: Optional[BaseException], now: Optional[datetime] = None) -> RateLimitSignal:
    """Inspect a raised error for rate limiting."""
    if isinstance(error, RateLimitedError):
        return error.signal
    if isinstance(error, HttpStatusError):
        return inspect_response(error.status, error.headers, now=now)
    return NOT_RATE_LIMITED


def inspect_rate_limit(source: Any, now: Optional[datetime] = None) -> RateLimitSignal:
    """
    Inspect an error, a response object, or a {"status", "headers"} mapping.

    Never raises; anything unrecognised is reported as not rate limited.
    """
    if source is None:
        return NOT_RATE_LIMITED
    if isinstance(source, BaseException):
        return inspect_error(source, now=now)
    if isinstance(source, Mapping):
        status = source.get("status")
        headers = source.get("headers")
    else:
        status = getattr(source, "status", None)
        headers = getattr(source, "headers", None)
    if not isinstance(headers, Mapping):
        headers = None
    return inspect_response(safe_int(status, default=-1), headers, now=now)


class RateLimitNotifier:
    """
    Deferred, debounced user-visible notice for rate limiting.

    Only one notice is emitted per debounce window; the rest are dropped.
    """

    def __init__(
        self,
        debounce_seconds: float = RATE_LIMIT_NOTICE_DEBOUNCE_SECONDS,
        on_notice: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = _utcnow,
    ):
        self.debounce_seconds = debounce_seconds
        self._on_notice = on_notice
        self._clock = clock
        self._wall_clock = wall_clock
        self._last_notice_at: Optional[float] = None

    def notify(self, signal: RateLimitSignal) -> bool:
        """
        Emit a notice for a rate-limit signal unless one was emitted recently.

        Returns:
            True if a notice was emitted, False if it was debounced
        """
        now = self._clock()
        if self._last_notice_at is not None and now - self._last_notice_at < self.debounce_seconds:
            logger.debug("Rate limit notice debounced")
            return False
        self._last_notice_at = now

        message = self.format_message(signal)
        logger.warning(message)
        if self._on_notice is not None:
            self._on_notice(message)
        return True

    def format_message(self, signal: RateLimitSignal) -> str:
        message = signal.message or "API rate limit exceeded."
        if signal.reset_at is not None:
            minutes = math.ceil((signal.reset_at - self._wall_clock()).total_seconds() / 60)
            if minutes > 0:
                plural = "s" if minutes > 1 else ""
                message += f" Rate limit resets in approximately {minutes} minute{plural}."
            else:
                message += " Rate limit should reset soon."
        else:
            message += " Please try again later."
        return message + " Using cached data where available."

    def reset(self) -> None:
        self._last_notice_at = None
