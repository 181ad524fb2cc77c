"""Time sources for the guard.

Anything that needs "now" takes a ``Clock``: a zero-argument callable
returning UNIX time in seconds, defaulting to ``time.time``.
"""

from __future__ import annotations

import threading
import time
from typing import Callable

Clock = Callable[[], float]

system_clock: Clock = time.time


class ManualClock:
    """Deterministic clock that only moves when told to.

    Useful for tests and for replaying recorded traffic.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> float:
        """Move the clock forward and return the new time."""
        if seconds < 0:
            raise ValueError("seconds must be >= 0")
        with self._lock:
            self._now += seconds
            return self._now

    def set(self, now: float) -> None:
        with self._lock:
            self._now = float(now)
