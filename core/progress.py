"""Progress reporting and the user-facing fetch log."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List

from core.models import ProgressState
from logger import get_logger

log = get_logger()


@dataclass(frozen=True)
class LogEntry:
    """One timestamped fetch log line."""

    timestamp: datetime
    message: str

    def render(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] {self.message}"


class FetchLog:
    """Append-only list of timestamped events, echoed to the console logger."""

    def __init__(self, clock: Callable[[], datetime] = datetime.now, echo: bool = True) -> None:
        self._clock = clock
        self._echo = echo
        self._entries: List[LogEntry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, message: str) -> LogEntry:
        entry = LogEntry(timestamp=self._clock(), message=message)
        self._entries.append(entry)
        if self._echo:
            log.info(entry.render())
        return entry

    def lines(self) -> List[str]:
        return [entry.render() for entry in self._entries]

    def messages(self) -> List[str]:
        return [entry.message for entry in self._entries]


class ProgressTracker:
    """Owns the progress state of the current batch.

    ``last_finished`` keeps the final counts of the most recent batch after
    the live state has been reset.
    """

    def __init__(self) -> None:
        self._state = ProgressState()
        self.last_finished: ProgressState | None = None

    @property
    def state(self) -> ProgressState:
        return dataclasses.replace(self._state)

    @property
    def active(self) -> bool:
        return self._state.active

    def start(self, total: int) -> None:
        self._state = ProgressState(total=total, current=0, fetching_title="", active=True)

    def grow(self, count: int) -> None:
        if self._state.active and count > 0:
            self._state.total += count

    def fetching(self, title: str) -> None:
        self._state.fetching_title = title

    def done_one(self, counted: bool) -> None:
        if counted:
            self._state.current += 1
        self._state.fetching_title = ""

    def pause(self) -> None:
        self._state.active = False

    def finish(self) -> ProgressState:
        finished = dataclasses.replace(self._state, fetching_title="", active=False)
        self.last_finished = finished
        self._state = ProgressState()
        return finished

    def reset(self) -> None:
        self._state = ProgressState()


def format_progress(state: ProgressState) -> str:
    """Render a one-line progress summary for the console."""
    if not state.active and not state.total:
        return "Idle"
    pct = (state.current / state.total * 100.0) if state.total else 0.0
    label = "Fetching" if state.active else "Paused"
    line = f"{label} {state.current}/{state.total} ({pct:.0f}%)"
    if state.fetching_title:
        line += f" - {state.fetching_title}"
    return line
