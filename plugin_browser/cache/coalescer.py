"""
Request coalescing to prevent duplicate upstream calls.

When several tasks ask for the same resource at once, only one upstream
call is made and every caller receives its result (or its error).
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an in-progress upstream request."""
    future: asyncio.Future
    waiter_count: int = 0


class RequestCoalescer:
    """
    Ensures concurrent requests for the same key share one upstream call.

    Pattern:
    - First request for a key starts the fetch
    - Later requests for the same key await the same future
    - When the fetch completes, every waiter gets the same outcome

    All callers must run on one event loop.

    Usage:
        coalescer = RequestCoalescer()
        result = await coalescer.get_or_fetch("registry", fetch_registry)
    """

    def __init__(self):
        self._in_flight: Dict[str, InFlightRequest] = {}

    async def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """
        Either join an existing in-flight request or start a new one.

        Raises:
            Exception: Any error from fetch_fn, delivered to every caller
        """
        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            in_flight.waiter_count += 1
            logger.debug(f"Coalescing request for {key} (waiters: {in_flight.waiter_count})")
            # shield: a cancelled waiter must not cancel the shared fetch
            return await asyncio.shield(in_flight.future)

        loop = asyncio.get_running_loop()
        in_flight = InFlightRequest(future=loop.create_future())
        self._in_flight[key] = in_flight
        logger.debug(f"Initiating fetch for {key}")

        try:
            result = await fetch_fn()
        except asyncio.CancelledError:
            in_flight.future.cancel()
            raise
        except Exception as e:
            in_flight.future.set_exception(e)
            if in_flight.waiter_count == 0:
                # Mark retrieved so asyncio does not warn about it
                in_flight.future.exception()
            raise
        else:
            in_flight.future.set_result(result)
            return result
        finally:
            if self._in_flight.get(key) is in_flight:
                del self._in_flight[key]

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            "active_requests": len(self._in_flight),
            "active_keys": list(self._in_flight.keys()),
        }
