"""Pacing limiter for rate-limited provider calls."""

from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from time import monotonic, sleep
from typing import Any, Callable, Iterator


class PacingLimiter:
    """Token bucket of size one whose refill starts when the previous call finishes.

    Holding the slot serializes callers, so at most one call is in flight and
    consecutive calls are separated by at least `interval_sec`.
    """

    def __init__(
        self,
        interval_sec: float,
        *,
        clock: Callable[[], float] = monotonic,
        sleeper: Callable[[float], Any] = sleep,
    ) -> None:
        self._interval = max(0.0, float(interval_sec))
        self._clock = clock
        self._sleep = sleeper
        self._lock = Lock()
        self._last_finished: float | None = None
        self.calls_total = 0
        self.wait_sec_total = 0.0

    @property
    def interval_sec(self) -> float:
        return self._interval

    def acquire(self) -> float:
        """Block until the slot is free and refilled; returns seconds spent sleeping."""
        self._lock.acquire()
        waited = 0.0
        if self._last_finished is not None and self._interval > 0:
            wait_more = self._interval - max(0.0, self._clock() - self._last_finished)
            if wait_more > 0:
                self._sleep(wait_more)
                waited = wait_more
        self.calls_total += 1
        self.wait_sec_total += waited
        return waited

    def release(self) -> None:
        self._last_finished = self._clock()
        self._lock.release()

    @contextmanager
    def slot(self) -> Iterator[float]:
        waited = self.acquire()
        try:
            yield waited
        finally:
            self.release()

    def stats(self) -> dict[str, Any]:
        return {
            "interval_sec": self._interval,
            "calls_total": self.calls_total,
            "wait_sec_total": self.wait_sec_total,
        }
