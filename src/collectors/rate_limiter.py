"""Fixed-interval pacing for upstream requests"""
import time
from typing import Callable, Optional


class RateLimiter:
    """
    Enforce a minimum interval between consecutive calls.

    ``wait()`` blocks until ``interval`` seconds have passed since the previous
    ``wait()`` returned or ``mark()`` was called. The first call after
    construction or ``reset()`` returns immediately.
    """

    def __init__(self, interval: float,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None

    def wait(self):
        if self._last is not None:
            remaining = self.interval - (self._clock() - self._last)
            if remaining > 0:
                self._sleep(remaining)
        self._last = self._clock()

    def mark(self):
        """Start the interval now, for paced work that finishes well after wait() returned"""
        self._last = self._clock()

    def reset(self):
        self._last = None
