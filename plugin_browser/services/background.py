"""
Periodic background revalidation of the registry and statistics.
"""
import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger("services.background")


class BackgroundRefresher:
    """
    Refreshes the registry and statistics every interval.

    Runs as an asyncio task on the caller's loop. Failures are logged and
    the loop carries on.
    """

    def __init__(
        self,
        service,
        interval_seconds: float,
        on_change: Optional[Callable[[], None]] = None,
        sleep=asyncio.sleep,
    ):
        """
        Args:
            service: PluginService to refresh
            interval_seconds: Pause between refresh passes
            on_change: Called when a pass found registry changes
            sleep: Awaitable delay function
        """
        self.service = service
        self.interval_seconds = interval_seconds
        self._on_change = on_change
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop, restarting it if it is already running."""
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(f"Background refresh every {self.interval_seconds:.0f}s")

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def refresh_once(self) -> bool:
        """Run one refresh pass. Returns True if the registry changed."""
        changed, _ = await asyncio.gather(
            self.service.refresh_registry_if_changed(),
            self.service.fetch_statistics(False),
        )
        if changed and self._on_change is not None:
            self._on_change()
        return changed

    async def _loop(self) -> None:
        while True:
            await self._sleep(self.interval_seconds)
            try:
                await self.refresh_once()
            except Exception as e:
                logger.error(f"Background refresh failed: {e}")
