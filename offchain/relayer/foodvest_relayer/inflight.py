"""
Per-intent in-flight guard.

Reconciliation and settlement both claim an intent before touching it;
a second claimant skips instead of waiting.
"""

import threading
from contextlib import contextmanager
from typing import Iterator


class InFlightGuard:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()

    def try_acquire(self, intent_id: str) -> bool:
        with self._lock:
            if intent_id in self._in_flight:
                return False
            self._in_flight.add(intent_id)
            return True

    def release(self, intent_id: str) -> None:
        with self._lock:
            self._in_flight.discard(intent_id)

    def is_in_flight(self, intent_id: str) -> bool:
        with self._lock:
            return intent_id in self._in_flight

    @contextmanager
    def claim(self, intent_id: str) -> Iterator[bool]:
        """Yield True if the claim was taken; it is always released on exit."""
        acquired = self.try_acquire(intent_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(intent_id)
