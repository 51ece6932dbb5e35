"""
Pydantic schemas for API request/response models
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ===== REGISTRY SCHEMAS =====

class PluginEntry(BaseModel):
    """One registry entry"""
    id: str
    name: str
    author: str
    description: str
    repo: str
    branch: Optional[str] = None
    is_desktop_only: bool = False

    class Config:
        from_attributes = True


class PluginList(BaseModel):
    """Registry entries with cache metadata"""
    count: int
    plugins: List[PluginEntry]
    meta: Dict[str, Any] = {}


# ===== DETAIL SCHEMAS =====

class Manifest(BaseModel):
    """Parsed manifest.json"""
    id: str
    name: str
    version: str
    min_app_version: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    author_url: Optional[str] = None
    funding_url: Optional[Any] = None
    is_desktop_only: bool = False

    class Config:
        from_attributes = True


class PluginDetail(BaseModel):
    """Entry with manifest, README and optional compatibility check"""
    plugin: PluginEntry
    manifest: Optional[Manifest] = None
    readme: Optional[str] = None
    compatible: Optional[bool] = None


class ReleaseInfoResponse(BaseModel):
    """Latest-release facts for one entry"""
    plugin_id: str
    found: bool
    date: Optional[datetime] = None
    downloads: Optional[int] = None


# ===== CACHE SCHEMAS =====

class StatsSummary(BaseModel):
    """Availability of the statistics file"""
    available: bool
    plugin_count: int = 0
    meta: Dict[str, Any] = {}


class FreshnessUpdate(BaseModel):
    """New freshness window, or a refresh interval to derive it from"""
    seconds: Optional[float] = Field(None, ge=0)
    refresh_interval_seconds: Optional[float] = Field(None, ge=0)


class FreshnessWindow(BaseModel):
    freshness_window_seconds: float
