"""
Utility helper functions for safe data handling.
"""
import re
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Tuple

from plugin_browser.errors import InvalidRepositoryError

MAX_QUERY_LENGTH = 500


def safe_lower(value: Any) -> str:
    """
    Safely lowercase a value, handling None.

    Args:
        value: Any value to lowercase

    Returns:
        Lowercased string or empty string if None
    """
    if value is None:
        return ""
    return str(value).lower()


def safe_strip(value: Any) -> str:
    """
    Safely strip whitespace from a value, handling None.

    Args:
        value: Any value to strip

    Returns:
        Stripped string or empty string if None
    """
    if value is None:
        return ""
    return str(value).strip()


def safe_int(value: Any, default: int = 0) -> int:
    """
    Safely convert value to int, handling None and invalid values.

    Args:
        value: Any value to convert
        default: Default int if conversion fails

    Returns:
        Integer or default
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def parse_repo(repo: Any) -> Tuple[str, str]:
    """
    Split an "owner/name" repository reference.

    Raises:
        InvalidRepositoryError: If the reference is missing or malformed
    """
    if not repo or not isinstance(repo, str):
        raise InvalidRepositoryError("Repository string is required")

    parts = repo.split("/")
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        raise InvalidRepositoryError(
            f'Invalid repository format: "{repo}". Expected format: "owner/name"'
        )
    return parts[0].strip(), parts[1].strip()


def is_valid_repo_format(repo: Any) -> bool:
    """Check a repository reference without raising."""
    try:
        parse_repo(repo)
    except InvalidRepositoryError:
        return False
    return True


def github_raw_url(base_url: str, repo: str, branch: str, path: str) -> str:
    """Build a raw file URL for a path inside a repository branch."""
    owner, name = parse_repo(repo)
    safe_path = path.replace("..", "").lstrip("/")
    return f"{base_url.rstrip('/')}/{owner}/{name}/{branch}/{safe_path}"


def latest_release_url(api_url: str, repo: str) -> str:
    """Build the "latest release" API URL for a repository."""
    owner, name = parse_repo(repo)
    return f"{api_url.rstrip('/')}/repos/{owner}/{name}/releases/latest"


def get_header(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
    """Look up a header value case-insensitively."""
    if not headers:
        return None
    wanted = name.lower()
    for key, value in headers.items():
        if str(key).lower() == wanted:
            return value
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a release timestamp into an aware UTC datetime.

    Strings are read as ISO-8601 (a trailing "Z" is accepted, naive values
    are taken as UTC). Numbers are epoch milliseconds, as the statistics
    file publishes them. Returns None for anything unparsable.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utc_midnight(value: datetime) -> datetime:
    """Truncate a datetime to midnight of its UTC calendar date."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)


def sanitize_search_query(query: Any) -> str:
    """Strip control characters, collapse whitespace and cap the length."""
    if not isinstance(query, str):
        return ""
    cleaned = "".join(ch for ch in query if ord(ch) >= 32 and ord(ch) != 127)
    return re.sub(r"\s+", " ", cleaned).strip()[:MAX_QUERY_LENGTH]


def is_compatible(min_app_version: str, current_version: str) -> bool:
    """True if current_version meets the dotted-numeric minimum."""
    min_parts = [safe_int(p) for p in safe_strip(min_app_version).split(".")]
    current_parts = [safe_int(p) for p in safe_strip(current_version).split(".")]

    for i in range(max(len(min_parts), len(current_parts))):
        minimum = min_parts[i] if i < len(min_parts) else 0
        current = current_parts[i] if i < len(current_parts) else 0
        if current > minimum:
            return True
        if current < minimum:
            return False
    return True
