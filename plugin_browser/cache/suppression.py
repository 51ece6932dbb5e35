"""
Error suppression for per-entry resolution failures.

After a non-fatal failure for a key, further attempts for that key are
skipped until the suppression window has elapsed.
"""
import logging
import time
from typing import Callable, Dict, Optional

from plugin_browser.cache.policies import DEFAULT_SUPPRESSION_WINDOW_SECONDS

logger = logging.getLogger("cache.suppression")


class ErrorSuppressionCache:
    """
    Remembers recent failures per key.

    The window is fixed and shorter than the main freshness window.
    """

    def __init__(
        self,
        window_seconds: float = DEFAULT_SUPPRESSION_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self._clock = clock
        self._failures: Dict[str, float] = {}

    def should_skip(self, key: str) -> bool:
        """True if a failure for key was recorded within the window."""
        occurred_at = self._failures.get(key)
        if occurred_at is None:
            return False
        if self._clock() - occurred_at < self.window_seconds:
            return True
        # Expired
        del self._failures[key]
        return False

    def record_failure(self, key: str) -> None:
        self._failures[key] = self._clock()
        logger.debug(f"Suppressing retries for {key} for {self.window_seconds:.0f}s")

    def clear(self, key: str) -> None:
        self._failures.pop(key, None)

    def clear_all(self) -> None:
        self._failures.clear()

    def occurred_at(self, key: str) -> Optional[float]:
        return self._failures.get(key)

    def __len__(self) -> int:
        return len(self._failures)

    def __contains__(self, key: str) -> bool:
        """Lookup only; expired keys are left for should_skip to remove."""
        occurred_at = self._failures.get(key)
        return occurred_at is not None and self._clock() - occurred_at < self.window_seconds
