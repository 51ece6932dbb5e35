"""
Freshness configuration shared by every cache of one service.
"""
import logging

logger = logging.getLogger("cache.policies")

DEFAULT_FRESHNESS_WINDOW_SECONDS = 3600   # 1 hour
DEFAULT_SUPPRESSION_WINDOW_SECONDS = 300  # 5 minutes


class FreshnessPolicy:
    """
    Holds the freshness window, read on every lookup.

    Changing the window applies to the next lookup of every cache that
    shares the policy; no invalidation pass is needed.
    """

    def __init__(self, window_seconds: float = DEFAULT_FRESHNESS_WINDOW_SECONDS):
        self._window_seconds = 0.0
        self.set_window(window_seconds)

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def set_window(self, seconds: float) -> None:
        """
        Set the freshness window.

        Raises:
            ValueError: If seconds is negative
        """
        seconds = float(seconds)
        if seconds < 0:
            raise ValueError(f"Freshness window must be non-negative, got {seconds}")
        if seconds != self._window_seconds:
            logger.info(f"Freshness window set to {seconds:.0f}s")
        self._window_seconds = seconds
