"""
Exception hierarchy for the plugin registry client.

Transport failures are raised as typed exceptions so callers never need to
inspect error messages for status codes.
"""
from typing import Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from plugin_browser.resilience.rate_limit import RateLimitSignal


class PluginBrowserError(Exception):
    """Base class for all errors raised by this package."""


class TransportError(PluginBrowserError):
    """A request could not be completed."""


class NetworkError(TransportError):
    """Connection-level failure (DNS, refused, reset)."""


class RequestTimeoutError(NetworkError):
    """The request did not complete within the transport timeout."""


class HttpStatusError(TransportError):
    """Non-2xx response raised by a transport that throws on status."""

    def __init__(
        self,
        status: int,
        headers: Optional[Dict[str, str]] = None,
        url: Optional[str] = None,
    ):
        self.status = status
        self.headers = dict(headers or {})
        self.url = url
        super().__init__(f"HTTP {status} for {url or 'request'}")


class RateLimitedError(PluginBrowserError):
    """Rate limited and no cached data is available to serve instead."""

    def __init__(self, signal: "RateLimitSignal", resource: Optional[str] = None):
        self.signal = signal
        self.resource = resource
        detail = signal.message or "Rate limit exceeded"
        super().__init__(
            f"{detail} (no cached data for {resource})" if resource else detail
        )


class PayloadValidationError(PluginBrowserError):
    """A response body did not have the expected structure."""


class InvalidRepositoryError(PluginBrowserError, ValueError):
    """A repository reference is not in "owner/name" form."""
