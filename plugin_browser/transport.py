"""
Network transport and response classification.

The transport performs one request. Classification turns whatever the
transport produced (a response of any status, or a raised error) into a
FetchOutcome, so status codes are interpreted in exactly one place.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import requests

from plugin_browser.errors import (
    HttpStatusError,
    NetworkError,
    PayloadValidationError,
    RateLimitedError,
    RequestTimeoutError,
)
from plugin_browser.resilience.rate_limit import RateLimitSignal, inspect_error, inspect_response
from plugin_browser.resilience.retry import RetryPolicy, execute_with_retry
from plugin_browser.utils.helpers import get_header

logger = logging.getLogger("transport")

USER_AGENT = "plugin-browser/0.1"


@dataclass
class HttpResponse:
    """A completed HTTP exchange."""
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    url: Optional[str] = None

    def header(self, name: str) -> Optional[str]:
        return get_header(self.headers, name)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """
        Decode the body as JSON.

        Raises:
            PayloadValidationError: If the body is not valid JSON
        """
        try:
            return json.loads(self.body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise PayloadValidationError(f"Failed to parse JSON from {self.url or 'response'}: {e}")


class Transport(Protocol):
    """Anything that can perform one HTTP request."""

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        ...


class RequestsTransport:
    """
    Transport backed by a requests Session.

    The blocking call runs in a worker thread so the event loop keeps
    running while the request is in flight.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        raise_for_status: bool = False,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            timeout: Per-request timeout in seconds
            raise_for_status: Raise HttpStatusError for any non-2xx status
                instead of returning the response
            session: Session to reuse (a new one is created otherwise)
        """
        self.timeout = timeout
        self.raise_for_status = raise_for_status
        self._session = session or requests.Session()
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        return await asyncio.to_thread(self._request_sync, url, method, headers)

    def _request_sync(
        self,
        url: str,
        method: str,
        headers: Optional[Dict[str, str]],
    ) -> HttpResponse:
        try:
            response = self._session.request(
                method,
                url,
                headers=headers or None,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise RequestTimeoutError(f"Timed out requesting {url}: {e}") from e
        except requests.RequestException as e:
            raise NetworkError(f"Network error requesting {url}: {e}") from e

        result = HttpResponse(
            status=response.status_code,
            headers=dict(response.headers),
            body=response.content or b"",
            url=url,
        )
        if self.raise_for_status and not 200 <= result.status < 300:
            raise HttpStatusError(result.status, result.headers, url)
        return result

    def close(self) -> None:
        self._session.close()


class OutcomeKind(Enum):
    """What a conditional fetch produced."""
    SUCCESS = "success"
    NOT_MODIFIED = "not_modified"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    FAILURE = "failure"


@dataclass
class FetchOutcome:
    """Typed result of one fetch, produced at the transport boundary."""
    kind: OutcomeKind
    response: Optional[HttpResponse] = None
    rate_limit: Optional[RateLimitSignal] = None
    error: Optional[BaseException] = None

    @property
    def etag(self) -> Optional[str]:
        if self.response is None:
            return None
        return self.response.header("etag")


def classify_response(response: HttpResponse) -> FetchOutcome:
    """Classify a response returned by a non-throwing transport."""
    if response.status == 304:
        return FetchOutcome(OutcomeKind.NOT_MODIFIED, response=response)
    signal = inspect_response(response.status, response.headers)
    if signal.is_rate_limited:
        return FetchOutcome(OutcomeKind.RATE_LIMITED, response=response, rate_limit=signal)
    if response.status == 404:
        return FetchOutcome(OutcomeKind.NOT_FOUND, response=response)
    if 200 <= response.status < 300:
        return FetchOutcome(OutcomeKind.SUCCESS, response=response)
    return FetchOutcome(
        OutcomeKind.FAILURE,
        response=response,
        error=HttpStatusError(response.status, response.headers, response.url),
    )


def classify_error(error: BaseException) -> FetchOutcome:
    """Classify an error raised by the transport or the retry engine."""
    if isinstance(error, RateLimitedError):
        return FetchOutcome(OutcomeKind.RATE_LIMITED, rate_limit=error.signal, error=error)
    if isinstance(error, HttpStatusError):
        response = HttpResponse(status=error.status, headers=error.headers, url=error.url)
        if error.status == 304:
            return FetchOutcome(OutcomeKind.NOT_MODIFIED, response=response)
        signal = inspect_error(error)
        if signal.is_rate_limited:
            return FetchOutcome(
                OutcomeKind.RATE_LIMITED, response=response, rate_limit=signal, error=error
            )
        if error.status == 404:
            return FetchOutcome(OutcomeKind.NOT_FOUND, response=response, error=error)
    return FetchOutcome(OutcomeKind.FAILURE, error=error)


def _raise_if_failed(response: HttpResponse) -> HttpResponse:
    """Turn retryable statuses into errors so the retry engine sees them."""
    if response.status >= 500 or response.status in (408, 429):
        raise HttpStatusError(response.status, response.headers, response.url)
    return response


async def conditional_request(
    transport: Transport,
    url: str,
    policy: RetryPolicy,
    etag: Optional[str] = None,
    force_refresh: bool = False,
    extra_headers: Optional[Dict[str, str]] = None,
    sleep=asyncio.sleep,
) -> FetchOutcome:
    """
    Perform a GET with an optional If-None-Match header, with retries.

    The revalidation token is sent only when one is known and the caller
    did not force a refresh. Rate-limit responses are never retried.
    Never raises for transport failures; they come back as FAILURE.
    """
    headers = dict(extra_headers or {})
    if etag and not force_refresh:
        headers["If-None-Match"] = etag

    async def attempt() -> HttpResponse:
        response = await transport.request(url, method="GET", headers=headers or None)
        return _raise_if_failed(response)

    def retryable(error: BaseException, attempt_number: int) -> bool:
        if inspect_error(error).is_rate_limited:
            return False
        return policy.is_retryable(error, attempt_number)

    try:
        response = await execute_with_retry(
            attempt,
            policy.with_predicate(retryable),
            sleep=sleep,
            description=f"GET {url}",
        )
    except Exception as e:
        outcome = classify_error(e)
        if outcome.kind is OutcomeKind.FAILURE:
            logger.debug(f"Request failed for {url}: {e}")
        return outcome
    return classify_response(response)
