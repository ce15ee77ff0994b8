"""Short-lived memory of donors' bid preferences.

When a donor uses the bid command but has no unassigned donations yet, we
keep their choice for a few minutes in case the donation data arrives late.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable

from .catalog import Choice


@dataclass(frozen=True)
class PendingPreference:
    choice: Choice
    expires_at: float


class PreferenceCache:
    """Donor → pending choice, consumed at most once."""

    def __init__(
        self,
        ttl_seconds: float = 180.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._pending: dict[str, PendingPreference] = {}

    def remember(self, donor: str, choice: Choice) -> None:
        """Store ``choice`` for ``donor``, replacing any earlier preference."""
        with self._lock:
            self._pending[donor.lower()] = PendingPreference(
                choice=choice,
                expires_at=self._clock() + self._ttl,
            )

    def consume(self, donor: str) -> Choice | None:
        """Remove and return the donor's preference if it hasn't expired."""
        with self._lock:
            pref = self._pending.pop(donor.lower(), None)
            if pref is None or self._clock() > pref.expires_at:
                return None
            return pref.choice

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)
