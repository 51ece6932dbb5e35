"""
Test doubles: a scripted transport, a manual clock and a recording sleep.
"""
import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from plugin_browser.errors import HttpStatusError
from plugin_browser.transport import HttpResponse

REGISTRY_URL = "https://registry.test/community-plugins.json"
STATS_URL = "https://registry.test/community-plugin-stats.json"
API_URL = "https://api.test"
RAW_URL = "https://raw.test"


def epoch_ms(year: int, month: int, day: int, hour: int = 0) -> int:
    return int(datetime(year, month, day, hour, tzinfo=timezone.utc).timestamp() * 1000)


def release_url(repo: str) -> str:
    return f"{API_URL}/repos/{repo}/releases/latest"


@dataclass
class RecordedRequest:
    url: str
    method: str
    headers: Dict[str, str] = field(default_factory=dict)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Awaitable sleep that records delays and returns immediately."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(float(seconds))
        await asyncio.sleep(0)


class FakeTransport:
    """
    Transport returning scripted results per URL.

    Results are consumed in order; the last one repeats. An exception in
    the script is raised. With raise_for_status=True non-2xx responses are
    raised as HttpStatusError, like a throwing HTTP client.
    """

    def __init__(self, raise_for_status: bool = False):
        self.raise_for_status = raise_for_status
        self.requests: List[RecordedRequest] = []
        self._scripts: Dict[str, List[Any]] = {}

    def add(self, url: str, *results: Any) -> None:
        self._scripts.setdefault(url, []).extend(results)

    def calls_to(self, url: str) -> int:
        return sum(1 for r in self.requests if r.url == url)

    def requests_to(self, url: str) -> List[RecordedRequest]:
        return [r for r in self.requests if r.url == url]

    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        self.requests.append(RecordedRequest(url, method, dict(headers or {})))
        await asyncio.sleep(0)

        script = self._scripts.get(url)
        if not script:
            raise AssertionError(f"Unexpected request to {url}")
        result = script.pop(0) if len(script) > 1 else script[0]

        if isinstance(result, BaseException):
            raise result
        if self.raise_for_status and not 200 <= result.status < 300:
            raise HttpStatusError(result.status, result.headers, url)
        return HttpResponse(status=result.status, headers=result.headers, body=result.body, url=url)


def json_response(
    payload: Any,
    status: int = 200,
    etag: Optional[str] = None,
    headers: Optional[Dict[str, str]] = None,
) -> HttpResponse:
    all_headers = dict(headers or {})
    all_headers["Content-Type"] = "application/json"
    if etag:
        all_headers["ETag"] = etag
    return HttpResponse(status=status, headers=all_headers, body=json.dumps(payload).encode("utf-8"))


def text_response(text: str, status: int = 200) -> HttpResponse:
    return HttpResponse(status=status, headers={"Content-Type": "text/plain"}, body=text.encode("utf-8"))


def status_response(status: int, headers: Optional[Dict[str, str]] = None) -> HttpResponse:
    return HttpResponse(status=status, headers=dict(headers or {}))
