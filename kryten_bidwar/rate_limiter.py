"""Token-bucket gate for outgoing chat replies."""

from __future__ import annotations

import threading
import time
from typing import Callable


class ReplyRateLimiter:
    """Allows ``burst`` replies at once, refilling one every interval.

    Denied replies are dropped by the caller, never queued.
    """

    def __init__(
        self,
        refill_interval_seconds: float = 2.0,
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if refill_interval_seconds <= 0:
            raise ValueError("refill_interval_seconds must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self._interval = refill_interval_seconds
        self._burst = burst
        self._clock = clock
        self._lock = threading.Lock()
        self._tokens = float(burst)
        self._last_refill = clock()

    def allow(self) -> bool:
        """Take a token if one is available."""
        with self._lock:
            now = self._clock()
            elapsed = max(0.0, now - self._last_refill)
            self._tokens = min(self._burst, self._tokens + elapsed / self._interval)
            self._last_refill = now
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False
