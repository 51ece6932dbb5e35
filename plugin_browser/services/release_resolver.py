"""
Tiered resolution of "latest release" information per registry entry.

Sources are tried cheapest first and the first one that yields data wins:

1. the in-memory release cache (including confirmed "no release" entries)
2. the statistics blob, which is shared by every entry
3. the error suppression check, which skips entries that failed recently
4. the rate-limited releases API
"""
import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional

from plugin_browser.cache.coalescer import RequestCoalescer
from plugin_browser.cache.core import CacheEntry
from plugin_browser.cache.policies import FreshnessPolicy
from plugin_browser.cache.suppression import ErrorSuppressionCache
from plugin_browser.errors import PayloadValidationError
from plugin_browser.models import CachedReleaseDate, CommunityPlugin, ReleaseInfo, stats_for
from plugin_browser.resilience.rate_limit import RateLimitNotifier
from plugin_browser.resilience.retry import RetryPolicy
from plugin_browser.transport import FetchOutcome, OutcomeKind, Transport, conditional_request
from plugin_browser.utils.helpers import latest_release_url, parse_timestamp, safe_int

logger = logging.getLogger("services.resolver")

StatisticsSource = Callable[[bool], Awaitable[Optional[Dict[str, Any]]]]


def total_downloads(release: Dict[str, Any]) -> int:
    """Sum the download counts of a release's assets."""
    assets = release.get("assets")
    if not isinstance(assets, list):
        return 0
    return sum(safe_int(a.get("download_count")) for a in assets if isinstance(a, dict))


class TieredReleaseResolver:
    """
    Resolves release dates while keeping the API tier a last resort.

    Owns the per-entry release cache. Statistics come from a separately
    cached source passed in by the owning service.
    """

    def __init__(
        self,
        statistics: StatisticsSource,
        transport: Transport,
        retry_policy: RetryPolicy,
        freshness: FreshnessPolicy,
        suppression: ErrorSuppressionCache,
        api_url: str,
        notifier: Optional[RateLimitNotifier] = None,
        headers: Optional[Dict[str, str]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep=asyncio.sleep,
    ):
        self._statistics = statistics
        self._transport = transport
        self._retry_policy = retry_policy
        self._freshness = freshness
        self._suppression = suppression
        self._api_url = api_url
        self._notifier = notifier
        self._headers = dict(headers or {})
        self._clock = clock
        self._sleep = sleep
        self._coalescer = RequestCoalescer()
        self._entries: Dict[str, CacheEntry[ReleaseInfo]] = {}

        self._stats = {
            "cache_hits": 0,
            "stats_hits": 0,
            "suppressed": 0,
            "api_calls": 0,
        }

    # ------------------------------------------------------------------
    # Cache tier
    # ------------------------------------------------------------------

    def _fresh_entry(self, plugin_id: str) -> Optional[CacheEntry[ReleaseInfo]]:
        entry = self._entries.get(plugin_id)
        if entry is not None and entry.is_fresh(self._freshness.window_seconds, self._clock()):
            return entry
        return None

    def get_cached_release_date(self, plugin_id: str) -> CachedReleaseDate:
        """
        Synchronous cache lookup with no I/O.

        found=True with date=None means the entry has no release.
        """
        entry = self._fresh_entry(plugin_id)
        if entry is None:
            return CachedReleaseDate(found=False)
        return CachedReleaseDate(found=True, date=entry.value.date if entry.value else None)

    def _store(
        self,
        plugin_id: str,
        value: Optional[ReleaseInfo],
        etag: Optional[str] = None,
        pinned: bool = False,
    ) -> None:
        now = self._clock()
        previous = self._entries.get(plugin_id)
        if previous is not None:
            now = max(now, previous.fetched_at)
        self._entries[plugin_id] = CacheEntry(value=value, fetched_at=now, etag=etag, pinned=pinned)

    def adopt_from_stats(self, plugin: CommunityPlugin, stats: Optional[Dict[str, Any]]) -> Optional[datetime]:
        """
        Take the release date for plugin from already-loaded statistics.

        Writes through to the release cache. Returns None if the statistics
        have no valid date for this entry.
        """
        plugin_stats = stats_for(stats, plugin.id)
        if plugin_stats is None or plugin_stats.updated is None:
            return None
        previous = self._entries.get(plugin.id)
        self._store(
            plugin.id,
            ReleaseInfo(date=plugin_stats.updated, downloads=plugin_stats.downloads),
            etag=previous.etag if previous is not None else None,
        )
        return plugin_stats.updated

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def get_latest_release_date(
        self,
        plugin: CommunityPlugin,
        force_refresh: bool = False,
    ) -> Optional[datetime]:
        """Resolve the latest release date, or None if none can be found."""
        info = await self.resolve(plugin, force_refresh=force_refresh)
        return info.date if info is not None else None

    async def resolve(
        self,
        plugin: CommunityPlugin,
        force_refresh: bool = False,
    ) -> Optional[ReleaseInfo]:
        """
        Resolve latest-release information through the tiers.

        force_refresh skips the cache, statistics and suppression tiers and
        asks the API without a revalidation token.

        Raises:
            InvalidRepositoryError: If the entry's repo is malformed
        """
        key = plugin.id

        if not force_refresh:
            entry = self._fresh_entry(key)
            if entry is not None:
                self._stats["cache_hits"] += 1
                return entry.value

            try:
                stats = await self._statistics(False)
            except Exception as e:
                logger.warning(f"Failed to get release date from stats for {key}, trying API: {e}")
                stats = None
            if self.adopt_from_stats(plugin, stats) is not None:
                self._stats["stats_hits"] += 1
                return self._entries[key].value

            if self._suppression.should_skip(key):
                self._stats["suppressed"] += 1
                logger.debug(f"Skipping release lookup for {key}: failed recently")
                return None

        url = latest_release_url(self._api_url, plugin.repo)
        coalesce_key = f"{key}:force" if force_refresh else key
        return await self._coalescer.get_or_fetch(
            coalesce_key, lambda: self._fetch_from_api(key, url, force_refresh)
        )

    def _stale(self, key: str) -> Optional[ReleaseInfo]:
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    async def _fetch_from_api(self, key: str, url: str, force_refresh: bool) -> Optional[ReleaseInfo]:
        entry = self._entries.get(key)
        self._stats["api_calls"] += 1
        outcome = await conditional_request(
            self._transport,
            url,
            self._retry_policy,
            etag=entry.etag if entry is not None else None,
            force_refresh=force_refresh,
            extra_headers=self._headers,
            sleep=self._sleep,
        )

        if outcome.kind is OutcomeKind.NOT_MODIFIED:
            current = self._entries.get(key)
            if current is not None:
                current.touch(self._clock())
                self._suppression.clear(key)
                return current.value
            return None

        if outcome.kind is OutcomeKind.NOT_FOUND:
            # No releases published: a stable fact, not an error
            logger.debug(f"No releases for {key}, caching confirmed absence")
            self._store(key, None, pinned=True)
            self._suppression.clear(key)
            return None

        if outcome.kind is OutcomeKind.RATE_LIMITED:
            if self._notifier is not None:
                self._notifier.notify(outcome.rate_limit)
            self._suppression.record_failure(key)
            return self._stale(key)

        if outcome.kind is OutcomeKind.SUCCESS:
            return self._adopt_release(key, outcome)

        logger.warning(f"Failed to fetch release data for {key}: {outcome.error}")
        self._suppression.record_failure(key)
        return self._stale(key)

    def _adopt_release(self, key: str, outcome: FetchOutcome) -> Optional[ReleaseInfo]:
        try:
            release = outcome.response.json()
        except PayloadValidationError as e:
            logger.warning(f"Failed to parse release JSON for {key}: {e}")
            self._suppression.record_failure(key)
            return self._stale(key)
        if not isinstance(release, dict):
            logger.warning(f"Unexpected release payload for {key}: {type(release).__name__}")
            self._suppression.record_failure(key)
            return self._stale(key)

        self._suppression.clear(key)
        etag = outcome.etag
        published_at = release.get("published_at")
        if not published_at:
            self._store(key, None, etag=etag)
            return None

        date = parse_timestamp(published_at)
        if date is None:
            logger.warning(f"Invalid release date format for {key}: {published_at!r}")
            self._store(key, None, etag=etag, pinned=True)
            return None

        info = ReleaseInfo(date=date, downloads=total_downloads(release))
        self._store(key, info, etag=etag)
        return info

    async def get_release_info(
        self,
        plugin: CommunityPlugin,
        force_refresh: bool = False,
    ) -> Optional[ReleaseInfo]:
        """
        Release info for display: statistics, then the cache. Never calls the API.
        """
        try:
            stats = await self._statistics(force_refresh)
        except Exception as e:
            logger.warning(f"Failed to get stats for {plugin.id}, trying cache: {e}")
            stats = None

        plugin_stats = stats_for(stats, plugin.id)
        if plugin_stats is not None:
            if self.adopt_from_stats(plugin, stats) is not None:
                return ReleaseInfo(date=plugin_stats.updated, downloads=plugin_stats.downloads)
            if plugin_stats.downloads > 0:
                cached = self._stale(plugin.id)
                if cached is not None:
                    return ReleaseInfo(date=cached.date, downloads=plugin_stats.downloads)

        if not force_refresh:
            entry = self._fresh_entry(plugin.id)
            if entry is not None and entry.value is not None:
                return entry.value
        return None

    def clear(self) -> None:
        self._entries.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "entries": len(self._entries),
            "confirmed_absent": sum(1 for e in self._entries.values() if e.value is None),
            "suppressed_keys": len(self._suppression),
        }
