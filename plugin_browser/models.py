"""
Data models for registry entries, manifests and release information.

Parsing helpers turn raw JSON payloads into these dataclasses and drop
entries that are missing required fields.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from plugin_browser.errors import PayloadValidationError
from plugin_browser.utils.helpers import safe_int, safe_lower, safe_strip, parse_timestamp

REQUIRED_ENTRY_FIELDS = ("id", "name", "author", "description", "repo")
REQUIRED_MANIFEST_FIELDS = ("id", "name", "version")


@dataclass(frozen=True)
class CommunityPlugin:
    """One entry of the published plugin registry."""
    id: str
    name: str
    author: str
    description: str
    repo: str  # "owner/name"
    branch: Optional[str] = None
    is_desktop_only: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> Optional["CommunityPlugin"]:
        """Build an entry, or None if any required field is missing or empty."""
        if not isinstance(data, dict):
            return None
        for key in REQUIRED_ENTRY_FIELDS:
            value = data.get(key)
            if not isinstance(value, str) or not value.strip():
                return None
        branch = data.get("branch")
        return cls(
            id=data["id"],
            name=data["name"],
            author=data["author"],
            description=data["description"],
            repo=data["repo"],
            branch=branch if isinstance(branch, str) and branch.strip() else None,
            is_desktop_only=bool(data.get("isDesktopOnly", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "name": self.name,
            "author": self.author,
            "description": self.description,
            "repo": self.repo,
            "isDesktopOnly": self.is_desktop_only,
        }
        if self.branch:
            result["branch"] = self.branch
        return result

    def matches(self, lower_query: str) -> bool:
        """Case-insensitive substring match on the searchable fields."""
        return any(
            lower_query in safe_lower(value)
            for value in (self.name, self.author, self.description, self.id)
        )


@dataclass
class PluginManifest:
    """The manifest.json published in a plugin repository."""
    id: str
    name: str
    version: str
    min_app_version: Optional[str] = None
    description: Optional[str] = None
    author: Optional[str] = None
    author_url: Optional[str] = None
    funding_url: Optional[Any] = None
    is_desktop_only: bool = False

    @classmethod
    def from_dict(cls, data: Any) -> "PluginManifest":
        """
        Parse a manifest payload.

        Raises:
            PayloadValidationError: If id, name or version is missing
        """
        if not isinstance(data, dict):
            raise PayloadValidationError("Invalid manifest format: expected object")
        if not all(safe_strip(data.get(key)) for key in REQUIRED_MANIFEST_FIELDS):
            raise PayloadValidationError("Invalid manifest format: missing required fields")
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            version=str(data["version"]),
            min_app_version=data.get("minAppVersion"),
            description=data.get("description"),
            author=data.get("author"),
            author_url=data.get("authorUrl"),
            funding_url=data.get("fundingUrl"),
            is_desktop_only=bool(data.get("isDesktopOnly", False)),
        )


@dataclass
class PluginInfo:
    """A registry entry together with its manifest and README, when available."""
    plugin: CommunityPlugin
    manifest: Optional[PluginManifest] = None
    readme: Optional[str] = None


@dataclass(frozen=True)
class ReleaseInfo:
    """Latest-release facts for one entry (date and total downloads)."""
    date: datetime
    downloads: int = 0


@dataclass(frozen=True)
class CachedReleaseDate:
    """
    Result of a synchronous release-date cache lookup.

    found=True, date=None means the entry is confirmed to have no release.
    found=False means the entry is not cached or its entry has expired.
    """
    found: bool
    date: Optional[datetime] = None


@dataclass
class PluginStats:
    """Statistics for one entry from the statistics file."""
    id: str
    downloads: int = 0
    updated: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, plugin_id: str, data: Any) -> Optional["PluginStats"]:
        if not isinstance(data, dict):
            return None
        extra = {k: v for k, v in data.items() if k not in ("id", "downloads", "updated")}
        return cls(
            id=plugin_id,
            downloads=safe_int(data.get("downloads")),
            updated=parse_timestamp(data.get("updated")),
            extra=extra,
        )


def parse_registry(payload: Any) -> List[CommunityPlugin]:
    """
    Validate a registry payload and keep only well-formed entries.

    Raises:
        PayloadValidationError: If the payload is not a list
    """
    if not isinstance(payload, list):
        raise PayloadValidationError("Invalid plugin list format: expected array")
    plugins = []
    for item in payload:
        plugin = CommunityPlugin.from_dict(item)
        if plugin is not None:
            plugins.append(plugin)
    return plugins


def parse_stats(payload: Any) -> Dict[str, Any]:
    """
    Validate a statistics payload (an object keyed by entry id).

    Raises:
        PayloadValidationError: If the payload is not an object
    """
    if not isinstance(payload, dict):
        raise PayloadValidationError("Invalid stats data structure")
    return payload


def stats_for(stats: Optional[Dict[str, Any]], plugin_id: str) -> Optional[PluginStats]:
    """Look up and parse the statistics entry for one id."""
    if not stats:
        return None
    return PluginStats.from_dict(plugin_id, stats.get(plugin_id))
