"""Cancellable delayed calls used by the enrichment engine."""

from __future__ import annotations

import threading
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None:
        """Prevent the callback from running if it has not started yet."""


class Scheduler(Protocol):
    """Runs a callback once after a delay."""

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
        """Schedule ``callback`` after ``delay_seconds`` and return its handle."""


class ThreadingScheduler:
    """Scheduler backed by daemon ``threading.Timer`` threads."""

    def __init__(self, name: str = "enricher") -> None:
        self._name = name
        self._lock = threading.Lock()
        self._timers: set[threading.Timer] = set()

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> threading.Timer:
        timer: threading.Timer

        def run() -> None:
            with self._lock:
                self._timers.discard(timer)
            callback()

        timer = threading.Timer(max(0.0, delay_seconds), run)
        timer.daemon = True
        timer.name = f"{self._name}-timer"
        with self._lock:
            self._timers.add(timer)
        timer.start()
        return timer

    def cancel_all(self) -> None:
        with self._lock:
            timers = list(self._timers)
            self._timers.clear()
        for timer in timers:
            timer.cancel()
