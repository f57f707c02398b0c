"""Minimum-spacing rate limiter for outbound deliveries."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

# Telegram allows roughly 30 msg/s per bot; 100ms keeps well under it
DEFAULT_MIN_INTERVAL_SECONDS = 0.1


class RateLimiter:
    """Enforce a minimum interval between consecutive delivery calls.

    Shared process-wide: whole-file and chunk sends go through the same
    instance. Callers are serialized, so a burst is spread out at one call
    per interval.
    """

    def __init__(
        self,
        min_interval_seconds: float = DEFAULT_MIN_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if min_interval_seconds < 0:
            raise ValueError("min_interval_seconds must be >= 0")
        self.min_interval = min_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: Optional[float] = None

    def acquire(self) -> float:
        """Block until the spacing since the previous call has elapsed.

        Returns:
            Seconds spent waiting.
        """
        with self._lock:
            waited = 0.0
            if self._last_call is not None:
                elapsed = self._clock() - self._last_call
                if elapsed < self.min_interval:
                    waited = self.min_interval - elapsed
                    self._sleep(waited)
            self._last_call = self._clock()
            return waited
