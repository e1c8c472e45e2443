"""Rolling-window limiter for job starts shared by all worker threads."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable


class StartRateLimiter:
    """Allow at most ``max_starts`` job starts per ``window_seconds``.

    A worker reserves a slot before claiming a job and gives it back with
    ``cancel`` when the queue turned out to be empty, so idle polling never
    consumes the budget.
    """

    def __init__(
        self,
        max_starts: int,
        window_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_starts < 1:
            raise ValueError("max_starts must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_starts = max_starts
        self.window_seconds = window_seconds
        self._clock = clock
        self._starts: list[float] = []
        self._lock = threading.Lock()

    def try_reserve(self) -> float | None:
        """Record a start and return its token, or None when the window is full."""

        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._starts) >= self.max_starts:
                return None
            self._starts.append(now)
            return now

    def cancel(self, token: float) -> None:
        with self._lock:
            try:
                self._starts.remove(token)
            except ValueError:
                pass

    def seconds_until_available(self) -> float:
        with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._starts) < self.max_starts:
                return 0.0
            return max(0.0, self._starts[0] + self.window_seconds - now)

    def reserve(self, stop_event: threading.Event | None = None) -> float | None:
        """Block until a slot is free; None if ``stop_event`` was set while waiting."""

        while True:
            token = self.try_reserve()
            if token is not None:
                return token
            wait = self.seconds_until_available()
            if stop_event is None:
                time.sleep(wait)
            elif stop_event.wait(wait):
                return None

    def _prune(self, now: float) -> None:
        self._starts = [started for started in self._starts if now - started < self.window_seconds]
