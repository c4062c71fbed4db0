"""Backoff shared by every request that hits the web API."""

import logging
import threading
import time

log = logging.getLogger(__name__)


def pause(seconds: float, cancel: threading.Event | None = None) -> bool:
    """Sleep for `seconds` unless cancelled first. Returns False if cancelled."""
    if seconds <= 0:
        return not (cancel is not None and cancel.is_set())
    if cancel is None:
        time.sleep(seconds)
        return True
    return not cancel.wait(seconds)


class SharedBackoff:
    """Process-wide pause that grows with consecutive failures.

    Metadata lookups and binary downloads both call wait() before a request,
    penalize() on a rate-limit or transient failure, and reset() on success.
    """

    def __init__(self, base: float = 0.5, maximum: float = 30.0, clock=time.monotonic):
        self.base = base
        self.maximum = maximum
        self._clock = clock
        self._lock = threading.Lock()
        self._failures = 0
        self._not_before = 0.0

    @property
    def failures(self) -> int:
        with self._lock:
            return self._failures

    def delay(self) -> float:
        with self._lock:
            return max(0.0, self._not_before - self._clock())

    def penalize(self, retry_after: float | None = None) -> float:
        with self._lock:
            self._failures += 1
            seconds = min(self.base * 2 ** (self._failures - 1), self.maximum)
            if retry_after is not None:
                seconds = max(seconds, min(retry_after, self.maximum))
            self._not_before = max(self._not_before, self._clock() + seconds)
        log.debug("backoff: %d consecutive failures, pausing %.2fs", self._failures, seconds)
        return seconds

    def reset(self):
        with self._lock:
            self._failures = 0
            self._not_before = 0.0

    def wait(self, cancel: threading.Event | None = None) -> bool:
        """Sleep out the current pause. Returns False if cancelled meanwhile."""
        return pause(self.delay(), cancel)


def retry_after_seconds(headers) -> float | None:
    """Parse a numeric Retry-After header; HTTP-date values are ignored."""
    value = (headers or {}).get("Retry-After")
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None
