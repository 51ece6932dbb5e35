"""
Plugin Browser - FastAPI application
Registry, statistics and release data served from the conditional-fetch caches
"""
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from config.settings import settings
from plugin_browser.errors import InvalidRepositoryError, PluginBrowserError, RateLimitedError
from plugin_browser.models import CommunityPlugin
from plugin_browser.schemas import (
    FreshnessUpdate,
    FreshnessWindow,
    Manifest,
    PluginDetail,
    PluginEntry,
    PluginList,
    ReleaseInfoResponse,
    StatsSummary,
)
from plugin_browser.services import BackgroundRefresher, PluginService
from plugin_browser.utils.helpers import is_compatible

load_dotenv()

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("main")

# Version tracking
APP_VERSION = "v0.1.0"
APP_NAME = "Plugin Browser"

router = APIRouter()


def get_service(request: Request) -> PluginService:
    return request.app.state.service


def _entry(plugin: CommunityPlugin) -> PluginEntry:
    return PluginEntry.model_validate(plugin)


async def _require_plugin(service: PluginService, plugin_id: str) -> CommunityPlugin:
    plugin = await service.find_plugin(plugin_id)
    if plugin is None:
        raise HTTPException(status_code=404, detail=f"Plugin {plugin_id} not found")
    return plugin


@router.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "name": APP_NAME, "version": APP_VERSION}


@router.get("/plugins", response_model=PluginList)
async def list_plugins(
    q: Optional[str] = Query(None, description="Search name, author, description and id"),
    refresh: bool = Query(False, description="Bypass the freshness window"),
    service: PluginService = Depends(get_service),
):
    """List registry entries, optionally filtered by a search query."""
    plugins = await service.fetch_registry(force_refresh=refresh)
    if q:
        plugins = service.search_plugins(plugins, q)
    return PluginList(
        count=len(plugins),
        plugins=[_entry(p) for p in plugins],
        meta=service.registry.meta().to_dict(),
    )


# Declared before /plugins/{plugin_id} so the path is not read as an id
@router.get("/plugins/updated-after", response_model=PluginList)
async def plugins_updated_after(
    cutoff_date: date = Query(..., alias="date", description="Cutoff date (YYYY-MM-DD), inclusive"),
    q: Optional[str] = Query(None),
    service: PluginService = Depends(get_service),
):
    """
    Entries whose latest release is on or after the given date.

    Entries whose release date cannot be determined are left out. A newer
    request supersedes one still running, which then answers 409.
    """
    plugins = await service.fetch_registry()
    if q:
        plugins = service.search_plugins(plugins, q)
    cutoff = datetime(cutoff_date.year, cutoff_date.month, cutoff_date.day, tzinfo=timezone.utc)
    filtered = await service.run_date_filter(plugins, cutoff)
    if filtered is None:
        raise HTTPException(status_code=409, detail="Superseded by a newer filter request")
    return PluginList(count=len(filtered), plugins=[_entry(p) for p in filtered])


@router.get("/plugins/{plugin_id}", response_model=PluginDetail)
async def plugin_detail(
    plugin_id: str,
    app_version: Optional[str] = Query(None, description="Check compatibility against this version"),
    service: PluginService = Depends(get_service),
):
    """Entry with its manifest and README."""
    plugin = await _require_plugin(service, plugin_id)
    info = await service.get_plugin_info(plugin)

    compatible = None
    if app_version and info.manifest is not None and info.manifest.min_app_version:
        compatible = is_compatible(info.manifest.min_app_version, app_version)

    return PluginDetail(
        plugin=_entry(plugin),
        manifest=Manifest.model_validate(info.manifest) if info.manifest is not None else None,
        readme=info.readme,
        compatible=compatible,
    )


@router.get("/plugins/{plugin_id}/release", response_model=ReleaseInfoResponse)
async def plugin_release(
    plugin_id: str,
    resolve: bool = Query(False, description="Fall back to the releases API"),
    refresh: bool = Query(False),
    service: PluginService = Depends(get_service),
):
    """Latest-release date and download count."""
    plugin = await _require_plugin(service, plugin_id)
    if resolve:
        info = await service.resolve_release(plugin, force_refresh=refresh)
    else:
        info = await service.get_release_info(plugin, force_refresh=refresh)
    if info is None:
        return ReleaseInfoResponse(plugin_id=plugin_id, found=False)
    return ReleaseInfoResponse(
        plugin_id=plugin_id,
        found=True,
        date=info.date,
        downloads=info.downloads,
    )


@router.get("/stats", response_model=StatsSummary)
async def stats_summary(
    refresh: bool = Query(False),
    service: PluginService = Depends(get_service),
):
    """Whether the statistics file is available."""
    stats = await service.fetch_statistics(force_refresh=refresh)
    if stats is None:
        return StatsSummary(available=False)
    return StatsSummary(
        available=True,
        plugin_count=len(stats),
        meta=service.statistics.meta().to_dict(),
    )


@router.get("/cache/stats")
def cache_stats(service: PluginService = Depends(get_service)):
    """Get cache statistics."""
    return service.cache_stats()


@router.post("/cache/clear")
def clear_cache(service: PluginService = Depends(get_service)):
    """Drop every cached value."""
    service.clear_all_caches()
    return {"status": "cleared"}


@router.put("/cache/freshness", response_model=FreshnessWindow)
def set_freshness(update: FreshnessUpdate, service: PluginService = Depends(get_service)):
    """Set the freshness window directly or from a refresh interval."""
    if update.seconds is not None:
        service.set_freshness_window(update.seconds)
    elif update.refresh_interval_seconds is not None:
        service.apply_refresh_interval(update.refresh_interval_seconds)
    else:
        raise HTTPException(status_code=422, detail="Provide seconds or refresh_interval_seconds")
    return FreshnessWindow(freshness_window_seconds=service.get_freshness_window())


async def _rate_limited_response(request: Request, exc: RateLimitedError) -> JSONResponse:
    headers = {}
    reset_at = exc.signal.reset_at
    if reset_at is not None:
        delay = int((reset_at - datetime.now(timezone.utc)).total_seconds())
        headers["Retry-After"] = str(max(delay, 1))
    return JSONResponse(
        status_code=503,
        content={"detail": f"{exc} Please try again later."},
        headers=headers,
    )


async def _invalid_repository_response(request: Request, exc: InvalidRepositoryError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


async def _upstream_failure_response(request: Request, exc: PluginBrowserError) -> JSONResponse:
    logger.error(f"Upstream failure on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=502,
        content={"detail": "Failed to load plugin data. Please check your connection and try again."},
    )


def create_app(service: Optional[PluginService] = None, background_refresh: bool = True) -> FastAPI:
    """
    Build the application around one PluginService.

    Args:
        service: Service to expose (a new one from settings by default)
        background_refresh: Run periodic revalidation while the app is up
    """
    service = service or PluginService(settings=settings)
    service.apply_refresh_interval(service.settings.background_refresh_interval_seconds)
    refresher = BackgroundRefresher(service, service.settings.background_refresh_interval_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if background_refresh and refresher.interval_seconds > 0:
            refresher.start()
        yield
        refresher.stop()
        service.cancel_date_filter()
        service.close()

    app = FastAPI(
        title=APP_NAME,
        description="Cached view of the community plugin registry",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.refresher = refresher
    app.include_router(router)
    app.add_exception_handler(RateLimitedError, _rate_limited_response)
    app.add_exception_handler(InvalidRepositoryError, _invalid_repository_response)
    app.add_exception_handler(PluginBrowserError, _upstream_failure_response)
    return app


app = create_app()
