from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Set

import pytest

from anilist.models import AnimeMetadata, CandidateMatch
from core.backoff import BackoffPolicy
from core.engine import EnrichmentEngine
from core.models import TrackedItem
from core.progress import FetchLog


class MemoryStore:
    """In-process store with the same interface as JsonStore."""

    def __init__(self, items: List[TrackedItem] | None = None) -> None:
        self.collection: List[Dict[str, Any]] | None = (
            [item.to_dict() for item in items] if items is not None else None
        )
        self.unresolved: Set[int] = set()
        self.details_cache: Dict[int, Dict[str, Any]] = {}

    def load_collection(self) -> List[TrackedItem] | None:
        if self.collection is None:
            return None
        return [TrackedItem.from_dict(entry) for entry in self.collection]

    def save_collection(self, items: List[TrackedItem]) -> None:
        self.collection = [item.to_dict() for item in items]

    def load_unresolved(self) -> Set[int]:
        return set(self.unresolved)

    def save_unresolved(self, ids: Set[int]) -> None:
        self.unresolved = set(ids)

    def load_details_cache(self) -> Dict[int, Dict[str, Any]]:
        return {key: dict(value) for key, value in self.details_cache.items()}

    def save_details_cache(self, cache: Dict[int, Dict[str, Any]]) -> None:
        self.details_cache = {key: dict(value) for key, value in cache.items()}

    def clear_details_cache(self) -> None:
        self.details_cache = {}


class ManualTimer:
    def __init__(self, due: float, delay: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic scheduler: timers only fire inside ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: List[ManualTimer] = []

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + delay_seconds, delay_seconds, callback)
        self.timers.append(timer)
        return timer

    def pending(self) -> List[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.pending() if t.due <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.now = timer.due
            timer.fired = True
            timer.callback()
        self.now = target

    def fired_delays(self, exclude: float | None = 1.0) -> List[float]:
        return [t.delay for t in self.timers if t.fired and t.delay != exclude]


class FakeFetcher:
    """Scripted metadata source.

    ``script`` maps an id to a list of responses consumed one per call; a
    response is a fields dict, None (not found) or an exception to raise.
    Ids without a script (or with an exhausted one) succeed.
    """

    def __init__(self, clock: Callable[[], float] | None = None) -> None:
        self.script: Dict[int, List[Any]] = {}
        self.calls: List[int] = []
        self.call_times: List[float] = []
        self.searches: List[str] = []
        self.search_results: List[CandidateMatch] = []
        self.search_error: Exception | None = None
        self.on_fetch: Callable[[int], None] | None = None
        self._clock = clock

    def fetch_metadata(self, item_id: int):
        self.calls.append(item_id)
        if self._clock is not None:
            self.call_times.append(self._clock())
        if self.on_fetch is not None:
            self.on_fetch(item_id)
        pending = self.script.get(item_id)
        if pending:
            response = pending.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return complete_fields(item_id)

    def search_by_title(self, title: str) -> List[CandidateMatch]:
        self.searches.append(title)
        if self.search_error is not None:
            raise self.search_error
        return list(self.search_results)


def complete_fields(item_id: int) -> Dict[str, Any]:
    return {
        "title": f"Show {item_id}",
        "description": f"Description of show {item_id}.",
        "media_status": "FINISHED",
        "total_episodes": 12,
        "genres": ["Action"],
    }


def make_item(item_id: int, **kwargs: Any) -> TrackedItem:
    kwargs.setdefault("title", f"Show {item_id}")
    return TrackedItem(id=item_id, **kwargs)


def make_complete_item(item_id: int, **kwargs: Any) -> TrackedItem:
    kwargs.setdefault("description", "Already fetched.")
    kwargs.setdefault("media_status", "RELEASING")
    return make_item(item_id, **kwargs)


def make_candidate(mal_id: int, title: str, score: float = 9.0, **kwargs: Any) -> CandidateMatch:
    values: Dict[str, Any] = {
        "mal_id": mal_id,
        "anilist_id": mal_id + 1000,
        "title": title,
        "description": f"About {title}.",
        "media_status": "FINISHED",
        "total_episodes": 24,
        "poster_url": "",
        "banner_url": "",
        "genres": ("Drama",),
        "average_score": 80,
        "format": "TV",
        "start_date": "2013-04-07",
        "studio": "Wit Studio",
        "alternative_titles": (),
        "site_url": "",
    }
    values.update(kwargs)
    return CandidateMatch(metadata=AnimeMetadata(**values), score=score)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def fetcher(scheduler: ManualScheduler) -> FakeFetcher:
    return FakeFetcher(clock=lambda: scheduler.now)


@pytest.fixture
def make_engine(scheduler: ManualScheduler, fetcher: FakeFetcher):
    def _make(items: List[TrackedItem] | None = None, policy: BackoffPolicy | None = None):
        store = MemoryStore(items)
        fetch_log = FetchLog(clock=lambda: datetime(2024, 1, 1, 12, 0, 0), echo=False)
        engine = EnrichmentEngine(
            store=store,
            fetcher=fetcher,
            scheduler=scheduler,
            policy=policy,
            fetch_log=fetch_log,
        )
        return engine, store

    return _make
