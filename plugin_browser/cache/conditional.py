"""
Conditional-fetch cache for one remote resource.

Holds the last good value, when it was fetched and the entity tag the
server sent with it. Fresh values are served without I/O; otherwise the
resource is revalidated with If-None-Match, and a 304 only advances the
fetch time.
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from plugin_browser.cache.coalescer import RequestCoalescer
from plugin_browser.cache.core import CacheEntry, CacheMeta, CacheSource
from plugin_browser.cache.policies import FreshnessPolicy
from plugin_browser.errors import HttpStatusError, PluginBrowserError, RateLimitedError
from plugin_browser.resilience.rate_limit import RateLimitNotifier
from plugin_browser.resilience.retry import RetryPolicy
from plugin_browser.transport import (
    FetchOutcome,
    HttpResponse,
    OutcomeKind,
    Transport,
    conditional_request,
)

logger = logging.getLogger("cache.conditional")

T = TypeVar("T")


def _always_cache(value: Any) -> bool:
    return True


class ConditionalFetchCache(Generic[T]):
    """
    Cache for one resource kind, revalidated with entity tags.

    Failure policy: a rate-limited or failed fetch never changes the cache
    and is answered with the last good value when there is one. Without
    one, RateLimitedError or the underlying error is raised.
    """

    def __init__(
        self,
        name: str,
        url: str,
        transport: Transport,
        parse: Callable[[HttpResponse], T],
        retry_policy: RetryPolicy,
        freshness: FreshnessPolicy,
        should_cache: Callable[[T], bool] = _always_cache,
        notifier: Optional[RateLimitNotifier] = None,
        headers: Optional[Dict[str, str]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep=asyncio.sleep,
    ):
        """
        Args:
            name: Resource name used in logs and coalescing keys
            url: Resource location
            transport: Network transport
            parse: Turns a 2xx response into a value; raises
                PayloadValidationError for malformed payloads
            retry_policy: Retry configuration for each fetch
            freshness: Shared freshness window
            should_cache: Values for which this returns False are returned
                but not stored (e.g. an empty registry)
            notifier: Debounced rate-limit notice sink
            headers: Extra request headers
            clock: Monotonic clock in seconds
            sleep: Awaitable delay used between retries
        """
        self.name = name
        self.url = url
        self._transport = transport
        self._parse = parse
        self._retry_policy = retry_policy
        self._freshness = freshness
        self._should_cache = should_cache
        self._notifier = notifier
        self._headers = dict(headers or {})
        self._clock = clock
        self._sleep = sleep
        self._coalescer = RequestCoalescer()
        self._entry: Optional[CacheEntry[T]] = None
        self._last_source: Optional[CacheSource] = None

        self._stats = {
            "hits_fresh": 0,
            "revalidations": 0,
            "misses": 0,
            "stale_served": 0,
        }

    @property
    def entry(self) -> Optional[CacheEntry[T]]:
        return self._entry

    def peek(self) -> Optional[T]:
        """The cached value regardless of age, with no I/O."""
        return self._entry.value if self._entry is not None else None

    def is_fresh(self) -> bool:
        return (
            self._entry is not None
            and self._entry.value is not None
            and self._entry.is_fresh(self._freshness.window_seconds, self._clock())
        )

    async def get(self, force_refresh: bool = False, revalidate: bool = False) -> T:
        """
        Return the resource, fetching only when needed.

        Args:
            force_refresh: Skip the freshness check and the revalidation token
            revalidate: Skip the freshness check but keep the revalidation
                token, so an unchanged resource costs a 304

        Raises:
            RateLimitedError: Rate limited with nothing cached
            PluginBrowserError: Fetch or validation failed with nothing cached
        """
        if not force_refresh and not revalidate and self.is_fresh():
            entry = self._entry
            logger.debug(f"CACHE HIT (fresh): {self.name} [age={entry.age(self._clock()):.1f}s]")
            self._stats["hits_fresh"] += 1
            self._last_source = CacheSource.FRESH
            return entry.value

        key = f"{self.name}:force" if force_refresh else self.name
        return await self._coalescer.get_or_fetch(key, lambda: self._fetch(force_refresh))

    async def _request(self, force_refresh: bool) -> FetchOutcome:
        etag = self._entry.etag if self._entry is not None else None
        return await conditional_request(
            self._transport,
            self.url,
            self._retry_policy,
            etag=etag,
            force_refresh=force_refresh,
            extra_headers=self._headers,
            sleep=self._sleep,
        )

    async def _fetch(self, force_refresh: bool) -> T:
        outcome = await self._request(force_refresh)

        if outcome.kind is OutcomeKind.NOT_MODIFIED:
            entry = self._entry
            if entry is not None and entry.value is not None:
                entry.touch(self._clock())
                logger.debug(f"NOT MODIFIED: {self.name}, fetched_at refreshed")
                self._stats["revalidations"] += 1
                self._last_source = CacheSource.REVALIDATED
                return entry.value
            logger.warning(f"Got 304 for {self.name} with nothing cached, refetching")
            outcome = await self._request(force_refresh=True)
            if outcome.kind is OutcomeKind.NOT_MODIFIED:
                outcome = FetchOutcome(
                    OutcomeKind.FAILURE,
                    response=outcome.response,
                    error=PluginBrowserError(f"{self.name}: not modified but nothing cached"),
                )

        if outcome.kind is OutcomeKind.SUCCESS:
            try:
                value = self._parse(outcome.response)
            except PluginBrowserError as e:
                return self._fallback(e, reason="invalid payload")
            self._store(value, outcome.etag)
            return value

        if outcome.kind is OutcomeKind.RATE_LIMITED:
            if self._notifier is not None:
                self._notifier.notify(outcome.rate_limit)
            if self._entry is not None and self._entry.value is not None:
                logger.warning(f"Rate limited fetching {self.name}, serving cached data")
                return self._serve_stale()
            raise RateLimitedError(outcome.rate_limit, resource=self.name)

        error = outcome.error
        if error is None and outcome.response is not None:
            error = HttpStatusError(outcome.response.status, outcome.response.headers, self.url)
        return self._fallback(error, reason="fetch failed")

    def _store(self, value: T, etag: Optional[str]) -> None:
        self._stats["misses"] += 1
        self._last_source = CacheSource.UPSTREAM
        if not self._should_cache(value):
            logger.warning(f"Received empty {self.name} payload, not caching it")
            return
        now = self._clock()
        if self._entry is not None:
            now = max(now, self._entry.fetched_at)
        self._entry = CacheEntry(value=value, fetched_at=now, etag=etag)
        logger.info(f"CACHE STORE: {self.name} (etag={'yes' if etag else 'no'})")

    def _serve_stale(self) -> T:
        self._stats["stale_served"] += 1
        self._last_source = CacheSource.STALE
        return self._entry.value

    def _fallback(self, error: BaseException, reason: str) -> T:
        if self._entry is not None and self._entry.value is not None:
            logger.warning(f"Failed to fetch {self.name} ({reason}), using cached data: {error}")
            return self._serve_stale()
        logger.error(f"Failed to fetch {self.name} ({reason}) and nothing is cached: {error}")
        raise error

    def meta(self) -> CacheMeta:
        """Describe the most recent access, for API responses."""
        age = self._entry.age(self._clock()) if self._entry is not None else None
        source = self._last_source or CacheSource.UPSTREAM
        return CacheMeta(
            cache_source=source.value,
            age_seconds=age,
            freshness_window_seconds=self._freshness.window_seconds,
        )

    def clear(self) -> None:
        """Drop the value and its revalidation token."""
        self._entry = None
        self._last_source = None

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "cached": self._entry is not None and self._entry.value is not None,
            "has_etag": bool(self._entry and self._entry.etag),
            "coalescer": self._coalescer.get_stats(),
        }
