"""Configuration management using pydantic-settings."""
from typing import Optional

from pydantic_settings import BaseSettings

RELEASES_REPO_RAW = "https://raw.githubusercontent.com/obsidianmd/obsidian-releases/master"


def freshness_window_for_interval(interval_seconds: float, buffer_seconds: float = 300) -> float:
    """
    Compute the cache freshness window for a background refresh interval.

    The window is the refresh interval plus a buffer so that a value fetched
    by one background pass is still fresh when the next pass starts.
    """
    return max(0.0, float(interval_seconds)) + max(0.0, float(buffer_seconds))


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Remote registry locations
    registry_url: str = f"{RELEASES_REPO_RAW}/community-plugins.json"
    stats_url: str = f"{RELEASES_REPO_RAW}/community-plugin-stats.json"
    github_api_url: str = "https://api.github.com"
    github_raw_url: str = "https://raw.githubusercontent.com"

    # Optional token for the rate-limited API tier only
    github_token: Optional[str] = None

    request_timeout_seconds: float = 30.0

    # Cache settings
    cache_ttl_seconds: float = 3600          # 1 hour, replaced from the refresh interval at startup
    error_cache_ttl_seconds: float = 300     # 5 minutes
    background_refresh_interval_seconds: float = 1800
    freshness_buffer_seconds: float = 300

    # Retry policy
    retry_max_attempts: int = 3
    retry_initial_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 10.0
    retry_backoff_multiplier: float = 2.0

    # Date filter batching
    filter_batch_size: int = 10
    filter_batch_delay_seconds: float = 0.1

    # Rate limit notices
    rate_limit_notice_debounce_seconds: float = 20

    default_branch: str = "master"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
