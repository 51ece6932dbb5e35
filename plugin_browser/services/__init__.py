"""
Registry services: the cache service, tiered release resolution, date
filtering and background refresh.
"""
from .background import BackgroundRefresher
from .date_filter import CancellationToken, DateFilterPipeline, FilterRun
from .plugin_service import PluginService, registry_changed
from .release_resolver import TieredReleaseResolver, total_downloads

__all__ = [
    "BackgroundRefresher",
    "CancellationToken",
    "DateFilterPipeline",
    "FilterRun",
    "PluginService",
    "registry_changed",
    "TieredReleaseResolver",
    "total_downloads",
]
