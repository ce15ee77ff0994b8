"""Mass-gift deduplication.

A community gift of N subs arrives as one "submysterygift" event followed by
N individual "subgift" events from the same gifter. Only the burst event is
attributed; the individual notices that follow within the window are ignored.
"""

from __future__ import annotations

import threading
import time
from typing import Callable


class GiftBurstTracker:
    """Remembers when each donor last sent a mass gift."""

    def __init__(
        self,
        window_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._last_burst: dict[str, float] = {}

    def mark_burst(self, donor: str) -> None:
        with self._lock:
            self._last_burst[donor.lower()] = self._clock()

    def should_suppress(self, donor: str) -> bool:
        """True if ``donor`` sent a mass gift less than one window ago."""
        with self._lock:
            last = self._last_burst.get(donor.lower())
            if last is None:
                return False
            return self._clock() - last < self._window

    def prune(self) -> int:
        """Drop markers older than the window. Returns how many were dropped."""
        with self._lock:
            cutoff = self._clock() - self._window
            stale = [k for k, t in self._last_burst.items() if t <= cutoff]
            for k in stale:
                del self._last_burst[k]
            return len(stale)
