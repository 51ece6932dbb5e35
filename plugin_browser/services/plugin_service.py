"""
Cache service for the plugin registry.

One PluginService is created per process and passed to whatever consumes
it. It owns every cache (registry, statistics, per-entry releases), the
error suppression map and the rate-limit notifier, so clearing the service
clears all cached state at once.
"""
import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from config.settings import Settings, freshness_window_for_interval, settings as default_settings
from plugin_browser.cache import ConditionalFetchCache, ErrorSuppressionCache, FreshnessPolicy
from plugin_browser.errors import (
    HttpStatusError,
    InvalidRepositoryError,
    PayloadValidationError,
    PluginBrowserError,
)
from plugin_browser.models import (
    CachedReleaseDate,
    CommunityPlugin,
    PluginInfo,
    PluginManifest,
    ReleaseInfo,
    parse_registry,
    parse_stats,
)
from plugin_browser.resilience import RateLimitNotifier, RetryPolicy
from plugin_browser.services.date_filter import DateFilterPipeline
from plugin_browser.services.release_resolver import TieredReleaseResolver
from plugin_browser.transport import (
    HttpResponse,
    OutcomeKind,
    RequestsTransport,
    Transport,
    conditional_request,
)
from plugin_browser.utils.helpers import github_raw_url, sanitize_search_query, safe_lower

logger = logging.getLogger("services.plugin_service")

# Fields compared when deciding whether a registry refresh changed anything
CHANGE_FIELDS = ("name", "description", "repo", "author")


def _parse_registry_response(response: HttpResponse) -> List[CommunityPlugin]:
    plugins = parse_registry(response.json())
    logger.debug(f"Parsed {len(plugins)} valid registry entries")
    return plugins


def _parse_stats_response(response: HttpResponse) -> Dict[str, Any]:
    return parse_stats(response.json())


def registry_changed(old: Sequence[CommunityPlugin], new: Sequence[CommunityPlugin]) -> bool:
    """True if ids or any of the compared fields differ between two registries."""
    if len(old) != len(new):
        return True
    old_by_id = {p.id: p for p in old}
    for plugin in new:
        previous = old_by_id.get(plugin.id)
        if previous is None:
            return True
        if any(getattr(previous, f) != getattr(plugin, f) for f in CHANGE_FIELDS):
            return True
    return False


class PluginService:
    """
    Registry, statistics and release data with conditional-fetch caching.

    Usage:
        service = PluginService()
        plugins = await service.fetch_registry()
        info = await service.get_release_info(plugins[0])
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[Transport] = None,
        on_rate_limit_notice: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep=asyncio.sleep,
    ):
        """
        Args:
            settings: Configuration (the module-level settings by default)
            transport: Network transport (a RequestsTransport by default)
            on_rate_limit_notice: Receives the debounced rate-limit notice
            clock: Monotonic clock in seconds
            sleep: Awaitable delay used for backoff and batch pauses
        """
        self.settings = settings or default_settings
        self._owns_transport = transport is None
        self.transport = transport or RequestsTransport(timeout=self.settings.request_timeout_seconds)
        self._clock = clock
        self._sleep = sleep

        self.freshness = FreshnessPolicy(self.settings.cache_ttl_seconds)
        self.suppression = ErrorSuppressionCache(self.settings.error_cache_ttl_seconds, clock=clock)
        self.notifier = RateLimitNotifier(
            debounce_seconds=self.settings.rate_limit_notice_debounce_seconds,
            on_notice=on_rate_limit_notice,
            clock=clock,
        )
        self.retry_policy = RetryPolicy.from_settings(self.settings)

        common = dict(
            transport=self.transport,
            retry_policy=self.retry_policy,
            freshness=self.freshness,
            notifier=self.notifier,
            clock=clock,
            sleep=sleep,
        )
        self.registry = ConditionalFetchCache(
            "registry",
            self.settings.registry_url,
            parse=_parse_registry_response,
            should_cache=lambda plugins: len(plugins) > 0,
            **common,
        )
        self.statistics = ConditionalFetchCache(
            "statistics",
            self.settings.stats_url,
            parse=_parse_stats_response,
            **common,
        )

        api_headers = {"Accept": "application/vnd.github+json"}
        if self.settings.github_token:
            api_headers["Authorization"] = f"Bearer {self.settings.github_token}"
        self.resolver = TieredReleaseResolver(
            statistics=self.fetch_statistics,
            transport=self.transport,
            retry_policy=self.retry_policy,
            freshness=self.freshness,
            suppression=self.suppression,
            api_url=self.settings.github_api_url,
            notifier=self.notifier,
            headers=api_headers,
            clock=clock,
            sleep=sleep,
        )

        self.date_filter = DateFilterPipeline(
            resolve_date=self.get_latest_release_date,
            batch_size=self.settings.filter_batch_size,
            inter_batch_delay=self.settings.filter_batch_delay_seconds,
            sleep=sleep,
        )

    # ------------------------------------------------------------------
    # Registry and statistics
    # ------------------------------------------------------------------

    async def fetch_registry(self, force_refresh: bool = False, revalidate: bool = False) -> List[CommunityPlugin]:
        """
        Get the list of valid registry entries.

        Raises:
            RateLimitedError: Rate limited with nothing cached
            PluginBrowserError: Fetch failed with nothing cached
        """
        return await self.registry.get(force_refresh=force_refresh, revalidate=revalidate)

    async def find_plugin(self, plugin_id: str, force_refresh: bool = False) -> Optional[CommunityPlugin]:
        for plugin in await self.fetch_registry(force_refresh=force_refresh):
            if plugin.id == plugin_id:
                return plugin
        return None

    async def fetch_statistics(self, force_refresh: bool = False) -> Optional[Dict[str, Any]]:
        """
        Get the statistics blob, or None if it is unavailable.

        Statistics are optional, so this never raises for fetch failures.
        """
        try:
            return await self.statistics.get(force_refresh=force_refresh)
        except HttpStatusError as e:
            if e.status == 404:
                logger.info("Stats file not found, continuing without statistics")
            else:
                logger.warning(f"Failed to fetch stats: {e}")
        except PluginBrowserError as e:
            logger.warning(f"Failed to fetch stats: {e}")
        return None

    async def refresh_registry_if_changed(self) -> bool:
        """
        Revalidate the registry and report whether the entries changed.

        The stored entity tag is sent, so an unchanged registry costs a 304.
        Failures are logged and reported as "unchanged".
        """
        before = self.registry.peek() or []
        try:
            after = await self.fetch_registry(revalidate=True)
        except PluginBrowserError as e:
            logger.warning(f"Background registry refresh failed: {e}")
            return False
        changed = registry_changed(before, after)
        if changed:
            logger.info(f"Registry changed: {len(before)} -> {len(after)} entries")
        return changed

    # ------------------------------------------------------------------
    # Release information
    # ------------------------------------------------------------------

    async def get_release_info(
        self,
        plugin: CommunityPlugin,
        force_refresh: bool = False,
    ) -> Optional[ReleaseInfo]:
        """Release info for display, from statistics or the cache only."""
        return await self.resolver.get_release_info(plugin, force_refresh=force_refresh)

    async def resolve_release(
        self,
        plugin: CommunityPlugin,
        force_refresh: bool = False,
    ) -> Optional[ReleaseInfo]:
        """Release info through every tier, the releases API included."""
        return await self.resolver.resolve(plugin, force_refresh=force_refresh)

    async def get_latest_release_date(
        self,
        plugin: CommunityPlugin,
        force_refresh: bool = False,
    ) -> Optional[datetime]:
        return await self.resolver.get_latest_release_date(plugin, force_refresh=force_refresh)

    def get_cached_release_date(self, plugin_id: str) -> CachedReleaseDate:
        return self.resolver.get_cached_release_date(plugin_id)

    async def run_date_filter(
        self,
        plugins: Sequence[CommunityPlugin],
        cutoff: Optional[datetime],
    ) -> Optional[List[CommunityPlugin]]:
        """
        Keep entries released on or after cutoff.

        Supersedes any filter run still in flight. Returns None if this run
        was itself superseded or cancelled.
        """
        return await self.date_filter.run(plugins, cutoff)

    def cancel_date_filter(self) -> None:
        self.date_filter.cancel()

    # ------------------------------------------------------------------
    # Manifest and README (not cached)
    # ------------------------------------------------------------------

    def _raw_url(self, plugin: CommunityPlugin, path: str) -> str:
        branch = plugin.branch or self.settings.default_branch
        return github_raw_url(self.settings.github_raw_url, plugin.repo, branch, path)

    async def _fetch_raw(self, plugin: CommunityPlugin, path: str) -> Optional[HttpResponse]:
        try:
            url = self._raw_url(plugin, path)
        except InvalidRepositoryError as e:
            logger.warning(f"Cannot fetch {path} for {plugin.id}: {e}")
            return None
        outcome = await conditional_request(
            self.transport, url, self.retry_policy, sleep=self._sleep
        )
        if outcome.kind is OutcomeKind.SUCCESS:
            return outcome.response
        if outcome.kind is OutcomeKind.RATE_LIMITED:
            self.notifier.notify(outcome.rate_limit)
        elif outcome.kind is OutcomeKind.NOT_FOUND:
            logger.info(f"{path} not found for {plugin.id}")
        else:
            logger.warning(f"Failed to fetch {path} for {plugin.id}: {outcome.error}")
        return None

    async def fetch_manifest(self, plugin: CommunityPlugin) -> Optional[PluginManifest]:
        """Fetch and validate manifest.json, or None on any failure."""
        response = await self._fetch_raw(plugin, "manifest.json")
        if response is None:
            return None
        try:
            return PluginManifest.from_dict(response.json())
        except PayloadValidationError as e:
            logger.warning(f"Invalid manifest for {plugin.id}: {e}")
            return None

    async def fetch_readme(self, plugin: CommunityPlugin) -> Optional[str]:
        """Fetch README.md as text, or None on any failure."""
        response = await self._fetch_raw(plugin, "README.md")
        return response.text if response is not None else None

    async def get_plugin_info(self, plugin: CommunityPlugin) -> PluginInfo:
        manifest, readme = await asyncio.gather(
            self.fetch_manifest(plugin),
            self.fetch_readme(plugin),
        )
        return PluginInfo(plugin=plugin, manifest=manifest, readme=readme)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    @staticmethod
    def search_plugins(plugins: Sequence[CommunityPlugin], query: Any) -> List[CommunityPlugin]:
        """Case-insensitive substring search over name, author, description and id."""
        cleaned = safe_lower(sanitize_search_query(query))
        if not cleaned:
            return list(plugins)
        return [p for p in plugins if p.matches(cleaned)]

    # ------------------------------------------------------------------
    # Configuration and introspection
    # ------------------------------------------------------------------

    def set_freshness_window(self, seconds: float) -> None:
        """Change the freshness window; applies to the next lookup everywhere."""
        self.freshness.set_window(seconds)

    def get_freshness_window(self) -> float:
        return self.freshness.window_seconds

    def apply_refresh_interval(self, interval_seconds: float) -> float:
        """Derive the freshness window from a background refresh interval."""
        window = freshness_window_for_interval(interval_seconds, self.settings.freshness_buffer_seconds)
        self.set_freshness_window(window)
        return window

    def clear_all_caches(self) -> None:
        """Drop every cached value, revalidation token and suppression entry."""
        self.registry.clear()
        self.statistics.clear()
        self.resolver.clear()
        self.suppression.clear_all()
        logger.info("All caches cleared")

    def cache_stats(self) -> Dict[str, Any]:
        return {
            "freshness_window_seconds": self.freshness.window_seconds,
            "registry": self.registry.get_stats(),
            "statistics": self.statistics.get_stats(),
            "releases": self.resolver.get_stats(),
        }

    def close(self) -> None:
        if self._owns_transport and isinstance(self.transport, RequestsTransport):
            self.transport.close()
