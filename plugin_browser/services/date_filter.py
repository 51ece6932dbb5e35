"""
Batched "released on or after" filtering with supersession.

Release dates are resolved a batch at a time, concurrently within a batch,
with a pause between batches to stay clear of API rate limits. Starting a
new run cancels the previous one; only the newest run ever delivers.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence

from plugin_browser.models import CommunityPlugin
from plugin_browser.utils.helpers import utc_midnight

logger = logging.getLogger("services.date_filter")

# Configuration
DEFAULT_BATCH_SIZE = 10
DEFAULT_BATCH_DELAY_SECONDS = 0.1

DateResolver = Callable[[CommunityPlugin], Awaitable[Optional[datetime]]]


class CancellationToken:
    """Cooperative cancellation flag checked at batch boundaries."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class FilterRun:
    """One cancellable filter pass."""
    batch_size: int = DEFAULT_BATCH_SIZE
    inter_batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS
    token: CancellationToken = field(default_factory=CancellationToken)


class DateFilterPipeline:
    """
    Filters entries by latest release date.

    An entry passes only when its release date resolves and falls on or
    after the cutoff (both compared as UTC calendar dates). Entries whose
    date cannot be resolved are excluded.
    """

    def __init__(
        self,
        resolve_date: DateResolver,
        batch_size: int = DEFAULT_BATCH_SIZE,
        inter_batch_delay: float = DEFAULT_BATCH_DELAY_SECONDS,
        on_results: Optional[Callable[[List[CommunityPlugin]], None]] = None,
        sleep=asyncio.sleep,
    ):
        """
        Args:
            resolve_date: Coroutine returning an entry's release date or None
            batch_size: Entries resolved concurrently per batch
            inter_batch_delay: Seconds to wait between batches
            on_results: Called with the results of a run that completed
                without being cancelled or superseded
            sleep: Awaitable delay function
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {batch_size}")
        self._resolve_date = resolve_date
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self._on_results = on_results
        self._sleep = sleep
        self._current: Optional[FilterRun] = None

    @property
    def current_run(self) -> Optional[FilterRun]:
        return self._current

    def start_run(self) -> FilterRun:
        """Cancel the current run, if any, and make a new one current."""
        if self._current is not None:
            self._current.token.cancel()
        self._current = FilterRun(batch_size=self.batch_size, inter_batch_delay=self.inter_batch_delay)
        return self._current

    def cancel(self) -> None:
        """Cancel the current run without starting another."""
        if self._current is not None:
            self._current.token.cancel()
            self._current = None

    async def run(
        self,
        entries: Sequence[CommunityPlugin],
        cutoff: Optional[datetime],
    ) -> Optional[List[CommunityPlugin]]:
        """
        Filter entries released on or after cutoff, superseding any run in flight.

        Returns:
            The matching entries in input order, or None if this run was
            cancelled or superseded before it finished
        """
        run = self.start_run()

        if cutoff is None:
            return self._deliver(run, list(entries))
        if not entries:
            return self._deliver(run, [])

        cutoff_day = utc_midnight(cutoff)
        logger.debug(f"Filtering {len(entries)} entries released on or after {cutoff_day.date()}")

        matched: List[CommunityPlugin] = []
        for start in range(0, len(entries), run.batch_size):
            if run.token.cancelled:
                logger.debug("Date filter run cancelled before batch")
                return None

            batch = entries[start:start + run.batch_size]
            results = await asyncio.gather(
                *(self._matches(plugin, cutoff_day) for plugin in batch)
            )

            if run.token.cancelled:
                logger.debug("Date filter run cancelled after batch")
                return None

            matched.extend(plugin for plugin, ok in zip(batch, results) if ok)

            if start + run.batch_size < len(entries):
                await self._sleep(run.inter_batch_delay)

        logger.debug(f"Date filter complete: {len(matched)} of {len(entries)} matched")
        return self._deliver(run, matched)

    async def _matches(self, plugin: CommunityPlugin, cutoff_day: datetime) -> bool:
        try:
            release_date = await self._resolve_date(plugin)
        except Exception as e:
            logger.warning(f"Failed to get release date for {plugin.id}: {e}")
            return False
        if release_date is None:
            return False
        return utc_midnight(release_date) >= cutoff_day

    def _deliver(self, run: FilterRun, results: List[CommunityPlugin]) -> Optional[List[CommunityPlugin]]:
        if run.token.cancelled or run is not self._current:
            return None
        self._current = None
        if self._on_results is not None:
            self._on_results(results)
        return results
