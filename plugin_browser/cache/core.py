"""
Core cache data structures.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class CacheSource(Enum):
    """Where a returned value came from."""
    FRESH = "fresh"              # Within the freshness window, no I/O
    REVALIDATED = "revalidated"  # Server answered "not modified"
    UPSTREAM = "upstream"        # Downloaded from the remote source
    STALE = "stale"              # Fetch failed, last good value served


@dataclass
class CacheEntry(Generic[T]):
    """
    A cached value with its fetch time and revalidation token.

    value=None is a legitimate "confirmed absent" state, distinct from
    having no entry at all.
    """
    value: Optional[T]
    fetched_at: float  # monotonic clock seconds
    etag: Optional[str] = None
    pinned: bool = False  # stays fresh until replaced or cleared

    def age(self, now: float) -> float:
        """Seconds since the value was fetched or last revalidated."""
        return now - self.fetched_at

    def is_fresh(self, window_seconds: float, now: float) -> bool:
        """Check if the entry is within the freshness window."""
        return self.pinned or self.age(now) < window_seconds

    def touch(self, now: float) -> None:
        """Advance fetched_at, never moving it backwards."""
        self.fetched_at = max(self.fetched_at, now)


@dataclass
class CacheMeta:
    """
    Metadata about a cache access, included in API responses.
    """
    cache_source: str  # a CacheSource value
    age_seconds: Optional[float] = None
    freshness_window_seconds: Optional[float] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON response."""
        result = {
            "generatedAt": datetime.now(timezone.utc).isoformat(),
            "cacheSource": self.cache_source,
        }
        if self.age_seconds is not None:
            result["ageSeconds"] = round(self.age_seconds, 1)
        if self.freshness_window_seconds is not None:
            result["freshnessWindowSeconds"] = self.freshness_window_seconds
        return result
