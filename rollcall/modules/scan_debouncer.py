"""
Scan Debouncer Module - Rollcall QR Attendance

A camera keeps decoding the same code many times per second while it is in
view. The debouncer drops those repeats before they reach validation:

- while a scan is being processed, every other decode is ignored
- after a payload is dispatched, the identical payload is ignored for a
  cooldown window (3 seconds by default); different payloads are not
- once the window passes the same code may be scanned again

This is a usability guard only. Correctness against duplicate marks comes
from the idempotent recorder in attendance_manager.
"""

from contextlib import contextmanager
import logging
import threading
import time
from typing import Callable, Dict

DEFAULT_COOLDOWN_SECONDS = 3.0


class ScanDebouncer:
    """Suppresses re-entrant and repeated dispatch of scan payloads."""

    def __init__(self, cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.cooldown_seconds = float(cooldown_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._in_flight = False
        self._recent: Dict[str, float] = {}
        self.logger = logging.getLogger(__name__)

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def should_dispatch(self, payload: str) -> bool:
        """Whether ``payload`` may be dispatched right now."""
        with self._lock:
            return self._can_dispatch(payload, self._clock())

    def begin(self, payload: str) -> bool:
        """
        Claim the in-flight slot for ``payload`` and start its cooldown.

        Returns:
            bool: False if the payload must be dropped
        """
        with self._lock:
            now = self._clock()
            if not self._can_dispatch(payload, now):
                self.logger.debug("Scan suppressed by debouncer")
                return False
            self._in_flight = True
            self._recent[payload] = now + self.cooldown_seconds
            return True

    def finish(self) -> None:
        """Release the in-flight slot."""
        with self._lock:
            self._in_flight = False

    @contextmanager
    def dispatching(self, payload: str):
        """
        Context manager around processing one scan.

        Yields:
            bool: True if the body should process the payload
        """
        accepted = self.begin(payload)
        try:
            yield accepted
        finally:
            if accepted:
                self.finish()

    def reset(self) -> None:
        with self._lock:
            self._in_flight = False
            self._recent.clear()

    def _can_dispatch(self, payload: str, now: float) -> bool:
        # expired cooldowns are dropped so the map stays small
        self._recent = {p: until for p, until in self._recent.items() if until > now}
        if self._in_flight:
            return False
        return payload not in self._recent
