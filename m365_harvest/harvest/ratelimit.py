"""
Fixed-window request limiter.

Counts requests issued in the current window. When the count reaches
max_requests the caller is put to sleep for whatever remains of the window,
then the counter starts over. Single threaded; there is no burst allowance.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

logger = logging.getLogger("m365_harvest.harvest.ratelimit")


class RateLimiter:
    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._count = 0
        self._window_start: Optional[float] = None
        self.pauses = 0
        self.total_requests = 0

    def acquire(self) -> None:
        """Block, if needed, until one more request may be issued."""
        now = self._clock()
        if self._window_start is None or now - self._window_start >= self.window_seconds:
            self._window_start = now
            self._count = 0

        if self._count >= self.max_requests:
            remaining = self.window_seconds - (now - self._window_start)
            if remaining > 0:
                logger.info(
                    f"Rate limit of {self.max_requests} requests per "
                    f"{self.window_seconds:g}s reached; pausing {remaining:.1f}s"
                )
                self._sleep(remaining)
                self.pauses += 1
            self._window_start = self._clock()
            self._count = 0

        self._count += 1
        self.total_requests += 1
