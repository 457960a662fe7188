"""Single-flight background engine that enriches the collection with metadata."""

from __future__ import annotations

import dataclasses
import threading
from functools import partial
from typing import Any, Iterable, List, Set

from anilist.client import RateLimitError
from anilist.models import CandidateMatch
from core.backoff import BackoffPolicy
from core.collection import Collection
from core.fetching import (
    AlreadyComplete,
    FetchFailed,
    FetchOutcome,
    Fetched,
    MetadataFetcher,
    NotFound,
    RateLimited,
    counts_as_processed,
    fetch_one,
)
from core.models import BackoffState, NetworkErrorState, ProgressState, RateLimitState, TrackedItem, merge_fields
from core.pending_queue import PendingQueue
from core.progress import FetchLog, ProgressTracker
from core.resolution import build_resolved_item, search_candidates
from core.scheduling import Scheduler, ThreadingScheduler, TimerHandle


class UnknownItemError(KeyError):
    """Raised when a command names an id that is not in the collection."""


def _seconds(delay_ms: int) -> str:
    value = delay_ms / 1000.0
    return f"{value:g}"


class EnrichmentEngine:
    """Owns the pending queue and decides, on every change, what happens next.

    States: idle, scheduled (one delayed dequeue armed), in flight, paused by
    a rate limit. ``reevaluate`` is safe to call any number of times; it
    cancels the armed dequeue and decides again from the current state.

    One instance per process: it represents a single rate-limit budget.
    """

    def __init__(
        self,
        store: Any,
        fetcher: MetadataFetcher,
        scheduler: Scheduler | None = None,
        policy: BackoffPolicy | None = None,
        fetch_log: FetchLog | None = None,
    ) -> None:
        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._store = store
        self._fetcher = fetcher
        self._scheduler = scheduler or ThreadingScheduler()
        self._policy = policy or BackoffPolicy()
        self._log = fetch_log or FetchLog()

        self.collection = Collection(store)
        self._queue = PendingQueue()
        self._unresolved: Set[int] = set()
        self._progress = ProgressTracker()
        self._rate_limit = RateLimitState()
        self._backoff = BackoffState(current_delay_ms=self._policy.base_delay_ms)
        self._detail: TrackedItem | None = None

        self._in_flight = False
        self._fetches_outstanding = 0
        self._epoch = 0
        self._populated = False
        self._pause_logged = False

        self._dequeue_timer: TimerHandle | None = None
        self._dequeue_token = 0
        self._rate_limit_timer: TimerHandle | None = None
        self._rate_limit_token = 0
        self._network_timer: TimerHandle | None = None
        self._network_token = 0

    # read models

    @property
    def progress(self) -> ProgressState:
        with self._lock:
            return self._progress.state

    @property
    def last_finished_progress(self) -> ProgressState | None:
        with self._lock:
            return self._progress.last_finished

    @property
    def log(self) -> List[str]:
        return self._log.lines()

    @property
    def fetch_log(self) -> FetchLog:
        return self._log

    @property
    def rate_limit_state(self) -> RateLimitState:
        with self._lock:
            return dataclasses.replace(self._rate_limit)

    @property
    def backoff_state(self) -> BackoffState:
        with self._lock:
            return dataclasses.replace(self._backoff)

    @property
    def network_error_state(self) -> NetworkErrorState:
        with self._lock:
            return NetworkErrorState(
                active=self._backoff.network_error_active,
                seconds_remaining=self._backoff.network_error_seconds_remaining,
                initial_seconds=self._backoff.network_error_initial_seconds,
            )

    @property
    def unresolved_ids(self) -> Set[int]:
        with self._lock:
            return set(self._unresolved)

    @property
    def queue(self) -> List[int]:
        with self._lock:
            return self._queue.snapshot()

    @property
    def in_flight(self) -> bool:
        with self._lock:
            return self._in_flight

    @property
    def is_scheduled(self) -> bool:
        with self._lock:
            return self._dequeue_timer is not None

    @property
    def is_idle(self) -> bool:
        with self._lock:
            return not self._queue and not self._in_flight and self._fetches_outstanding == 0

    @property
    def detail(self) -> TrackedItem | None:
        with self._lock:
            return self._detail

    # commands

    def load(self, start: bool = True) -> bool:
        """Load persisted state and populate the queue on the first load.

        Args:
            start: When False, only read state; nothing is queued or scheduled.

        Returns:
            True when a stored collection was found.
        """
        with self._lock:
            found = self.collection.load()
            self._unresolved = self._store.load_unresolved()
            if start:
                self.populate_initial_queue()
                self._reevaluate_locked()
            return found

    def populate_initial_queue(self) -> int:
        """Queue every item missing metadata; runs once until the next import."""
        with self._lock:
            if self._populated:
                return 0
            self._populated = True
            added = 0
            for item_id in self.collection.missing_metadata_ids(exclude=self._unresolved):
                if item_id not in self._queue:
                    self._queue.push_back(item_id)
                    added += 1
            if added:
                self._log.add(f"Initial queue populated with {added} items.")
            return added

    def refresh(self) -> int:
        """Queue newly discovered gaps ahead of the backlog and clear any pause."""
        with self._lock:
            self._log.add("Manual refresh triggered. Checking for missing data...")
            missing = self.collection.missing_metadata_ids(exclude=self._unresolved)
            added = self._queue.prepend_new(missing)
            if added:
                self._progress.grow(len(added))
                self._log.add(f"Added {len(added)} new item(s) to the fetch queue. Total: {len(self._queue)}.")
            else:
                self._log.add("No new items to fetch.")
            self._clear_rate_limit()
            self._reset_backoff()
            self._log.add("Fetch queue state reset. Processing will resume if items are available.")
            self._reevaluate_locked()
            return len(added)

    def stop(self) -> None:
        """Abort: drop the queue and every pause, timer and progress counter."""
        with self._lock:
            self._log.add("Stop request received. Clearing queue and halting process.")
            self._queue.clear()
            self._hard_reset()
            self._progress.reset()
            self._reevaluate_locked()

    def import_replaced(self, items: Iterable[TrackedItem]) -> None:
        """Replace the collection wholesale and start over from its gaps."""
        with self._lock:
            self.collection.replace_all(items)
            self._unresolved = set()
            self._store.save_unresolved(self._unresolved)
            self._queue.clear()
            self._hard_reset()
            self._progress.reset()
            self._detail = None
            self._populated = False
            self._log.add("List imported. Fetch queue and unresolved list reset. Rate limit cleared.")
            self.populate_initial_queue()
            self._reevaluate_locked()

    def clear_cache(self) -> None:
        """Strip fetched metadata from every item and re-fetch all of them."""
        with self._lock:
            self._log.add("Clearing details cache and unresolved IDs...")
            self.collection.strip_all()
            self._unresolved = set()
            self._store.save_unresolved(self._unresolved)
            ids = self.collection.ids()
            self._queue.replace(ids)
            self._log.add(f"Details cache cleared. Re-populating fetch queue with {len(ids)} items.")
            self._hard_reset()
            self._progress.reset()
            if self._detail is not None:
                self._detail = self.collection.get(self._detail.id)
            self._reevaluate_locked()

    def remove_item(self, item_id: int) -> bool:
        """Delete an item from the collection, the unresolved set and the queue."""
        with self._lock:
            removed = self.collection.remove(item_id)
            if item_id in self._unresolved:
                self._unresolved.discard(item_id)
                self._store.save_unresolved(self._unresolved)
            self._queue.remove(item_id)
            if self._detail is not None and self._detail.id == item_id:
                self._detail = None
            self._reevaluate_locked()
            return removed

    def candidates_for(self, item_id: int, limit: int = 10, min_score: float = 0.0) -> List[CandidateMatch]:
        """Search for manual match candidates using the item's title.

        A rate-limited search engages the same global pause as a fetch.
        """
        with self._lock:
            item = self.collection.get(item_id)
            if item is None:
                raise UnknownItemError(item_id)
            title = item.title
        try:
            return search_candidates(self._fetcher, title, limit=limit, min_score=min_score)
        except RateLimitError as exc:
            with self._lock:
                self._engage_rate_limit(exc.retry_after)
                self._reevaluate_locked()
            raise

    def resolve(self, item_id: int, candidate: CandidateMatch) -> TrackedItem:
        """Replace an unmatched item with the chosen candidate.

        Raises:
            UnknownItemError: If ``item_id`` is not in the collection.
        """
        with self._lock:
            original = self.collection.get(item_id)
            if original is None:
                raise UnknownItemError(item_id)
            resolved = build_resolved_item(original, candidate)
            self.collection.rekey(item_id, resolved)
            self.collection.merge(resolved.id, candidate.metadata.to_fields())
            changed = False
            for stale_id in (item_id, resolved.id):
                if stale_id in self._unresolved:
                    self._unresolved.discard(stale_id)
                    changed = True
            if changed:
                self._store.save_unresolved(self._unresolved)
            self._queue.remove(item_id)
            if self._detail is not None and self._detail.id == item_id:
                self._detail = resolved
            self._log.add(
                f'✅ Resolved: Matched "{original.title}" to "{resolved.title}" (MAL ID: {resolved.id}).'
            )
            self._reevaluate_locked()
            return resolved

    def open_detail(self, item_id: int) -> TrackedItem:
        with self._lock:
            item = self.collection.get(item_id)
            if item is None:
                raise UnknownItemError(item_id)
            self._detail = item
            return item

    def close_detail(self) -> None:
        with self._lock:
            self._detail = None

    def wait_until_idle(self, timeout: float | None = None) -> bool:
        """Block until the queue is drained and no fetch is outstanding."""
        with self._changed:
            return self._changed.wait_for(lambda: self.is_idle, timeout=timeout)

    def shutdown(self) -> None:
        """Cancel every timer without touching the queue."""
        with self._lock:
            self._cancel_dequeue_timer()
            self._cancel_rate_limit_timer()
            self._cancel_network_timer()

    def reevaluate(self) -> None:
        with self._lock:
            self._reevaluate_locked()

    # state machine

    def _reevaluate_locked(self) -> None:
        try:
            self._cancel_dequeue_timer()

            if self._rate_limit.active:
                if self._progress.active:
                    self._progress.pause()
                self._in_flight = False
                if not self._pause_logged:
                    self._pause_logged = True
                    self._log.add(
                        "Queue processing paused due to rate limit. "
                        f"Resuming in {self._rate_limit.seconds_remaining} seconds."
                    )
                return

            if not self._queue and not self._in_flight and not self._fetches_outstanding:
                if self._progress.active:
                    finished = self._progress.finish()
                    self._log.add(
                        f"Fetch queue is empty, processing finished ({finished.current}/{finished.total})."
                    )
                self._backoff.current_delay_ms = self._policy.base_delay_ms
                return

            if self._in_flight or self._fetches_outstanding:
                return

            delay_ms = self._backoff.current_delay_ms
            if not self._progress.active:
                self._progress.start(len(self._queue))
                self._log.add(f"Starting background fetch for {len(self._queue)} item(s).")
            elif delay_ms > self._policy.base_delay_ms:
                self._log.add(f"Rescheduling next queue item with increased delay ({_seconds(delay_ms)} seconds).")
            else:
                self._log.add(f"Scheduling next queue item processing (delaying {_seconds(delay_ms)} seconds)...")

            self._dequeue_token += 1
            self._dequeue_timer = self._scheduler.call_later(
                delay_ms / 1000.0, partial(self._on_dequeue_due, self._dequeue_token)
            )
        finally:
            self._changed.notify_all()

    def _on_dequeue_due(self, token: int) -> None:
        with self._lock:
            if token != self._dequeue_token or self._dequeue_timer is None:
                return
            self._dequeue_timer = None
            if self._rate_limit.active or not self._queue or self._in_flight or self._fetches_outstanding:
                self._log.add("Skipping scheduled processing due to changed conditions after delay.")
                return
            self._in_flight = True
            self._fetches_outstanding += 1
            epoch = self._epoch
            item_id = self._queue.pop_front()
            item = self.collection.get(item_id)
            title = item.title if item else f"ID {item_id}"
            self._progress.fetching(title)
            self._log.add(f'Fetching details for "{title}"...')
            outcome: FetchOutcome | None = None
            if item is None or item.has_complete_metadata or item_id in self._unresolved:
                outcome = AlreadyComplete()

        if outcome is None:
            outcome = fetch_one(self._fetcher, item_id)
        self._complete(item_id, title, outcome, epoch, tracked=item is not None)

    def _complete(self, item_id: int, title: str, outcome: FetchOutcome, epoch: int, tracked: bool) -> None:
        with self._lock:
            self._fetches_outstanding -= 1
            stale = epoch != self._epoch
            self._apply_result(item_id, title, outcome, tracked)
            if stale:
                if isinstance(outcome, (RateLimited, FetchFailed)):
                    self._log.add(f'Discarded late failure for "{title}" after queue reset.')
            else:
                self._apply_control(item_id, title, outcome)
                self._in_flight = False
            self._reevaluate_locked()

    def _apply_result(self, item_id: int, title: str, outcome: FetchOutcome, tracked: bool) -> None:
        if isinstance(outcome, Fetched):
            merged = self.collection.merge(item_id, outcome.metadata)
            if self._detail is not None and self._detail.id == item_id:
                self._detail = merged or merge_fields(self._detail, outcome.metadata)
            if item_id in self._unresolved:
                self._unresolved.discard(item_id)
                self._store.save_unresolved(self._unresolved)
            fetched_title = merged.title if merged else title
            self._log.add(f'✅ Success: Fetched details for "{fetched_title}".')
        elif isinstance(outcome, NotFound):
            if item_id in self.collection and item_id not in self._unresolved:
                self._unresolved.add(item_id)
                self._store.save_unresolved(self._unresolved)
            self._queue.remove(item_id)
            self._log.add(f'🟡 Resolution needed: No AniList entry found for "{title}" (MAL ID: {item_id}).')
        elif isinstance(outcome, AlreadyComplete):
            if item_id in self._unresolved:
                self._log.add(f'ℹ️ "{title}" is awaiting manual resolution. Skipping.')
            elif tracked:
                self._log.add(f'ℹ️ Details already exist for "{title}". Skipping.')
            else:
                self._log.add(f"ℹ️ ID {item_id} is no longer tracked. Skipping.")

    def _apply_control(self, item_id: int, title: str, outcome: FetchOutcome) -> None:
        if counts_as_processed(outcome):
            self._clear_network_error()
            if self._backoff.current_delay_ms != self._policy.base_delay_ms:
                self._backoff.current_delay_ms = self._policy.base_delay_ms
                self._log.add("Successful fetch. Resetting fetch delay.")
            self._progress.done_one(counted=True)
            return

        self._queue.push_front(item_id)
        self._progress.done_one(counted=False)
        if isinstance(outcome, RateLimited):
            self._engage_rate_limit(outcome.retry_after)
            return

        message = outcome.message if isinstance(outcome, FetchFailed) else ""
        self._log.add(f"❌ Error: {message}. Retrying with delay.")
        new_delay = self._policy.escalate(self._backoff.current_delay_ms)
        self._backoff.current_delay_ms = new_delay
        self._arm_network_error(new_delay // 1000)
        self._log.add(f'Re-queued "{title}" due to error. Increasing retry delay to {_seconds(new_delay)} seconds.')

    # resets

    def _hard_reset(self) -> None:
        self._epoch += 1
        self._cancel_dequeue_timer()
        self._in_flight = False
        self._clear_rate_limit()
        self._reset_backoff()

    def _reset_backoff(self) -> None:
        self._backoff.current_delay_ms = self._policy.base_delay_ms
        self._clear_network_error()

    def _cancel_dequeue_timer(self) -> None:
        self._dequeue_token += 1
        timer, self._dequeue_timer = self._dequeue_timer, None
        if timer is not None:
            timer.cancel()

    # rate limit countdown

    def _engage_rate_limit(self, retry_after: int) -> None:
        if self._rate_limit.active:
            return
        seconds = self._policy.rate_limit_seconds(retry_after)
        self._rate_limit = RateLimitState(active=True, seconds_remaining=seconds)
        self._pause_logged = False
        self._log.add(f"Rate limit hit. Pausing queue for {seconds} seconds.")
        self._arm_rate_limit_tick()

    def _arm_rate_limit_tick(self) -> None:
        self._rate_limit_token += 1
        self._rate_limit_timer = self._scheduler.call_later(
            1.0, partial(self._on_rate_limit_tick, self._rate_limit_token)
        )

    def _on_rate_limit_tick(self, token: int) -> None:
        with self._lock:
            if token != self._rate_limit_token or not self._rate_limit.active:
                return
            self._rate_limit.seconds_remaining = max(0, self._rate_limit.seconds_remaining - 1)
            if self._rate_limit.seconds_remaining > 0:
                self._arm_rate_limit_tick()
                return
            self._rate_limit_timer = None
            self._rate_limit.active = False
            self._pause_logged = False
            self._log.add("Rate limit lifted. Resuming queue.")
            self._reevaluate_locked()

    def _cancel_rate_limit_timer(self) -> None:
        self._rate_limit_token += 1
        timer, self._rate_limit_timer = self._rate_limit_timer, None
        if timer is not None:
            timer.cancel()

    def _clear_rate_limit(self) -> None:
        self._cancel_rate_limit_timer()
        self._rate_limit = RateLimitState()
        self._pause_logged = False

    # network error countdown

    def _arm_network_error(self, seconds: int) -> None:
        self._cancel_network_timer()
        self._backoff.network_error_active = True
        self._backoff.network_error_seconds_remaining = seconds
        self._backoff.network_error_initial_seconds = seconds
        if seconds > 0:
            self._arm_network_tick()

    def _arm_network_tick(self) -> None:
        self._network_token += 1
        self._network_timer = self._scheduler.call_later(1.0, partial(self._on_network_tick, self._network_token))

    def _on_network_tick(self, token: int) -> None:
        with self._lock:
            if token != self._network_token or not self._backoff.network_error_active:
                return
            if not self._rate_limit.active:
                remaining = max(0, self._backoff.network_error_seconds_remaining - 1)
                self._backoff.network_error_seconds_remaining = remaining
            if self._backoff.network_error_seconds_remaining > 0:
                self._arm_network_tick()
            else:
                self._network_timer = None
            self._changed.notify_all()

    def _cancel_network_timer(self) -> None:
        self._network_token += 1
        timer, self._network_timer = self._network_timer, None
        if timer is not None:
            timer.cancel()

    def _clear_network_error(self) -> None:
        self._cancel_network_timer()
        self._backoff.network_error_active = False
        self._backoff.network_error_seconds_remaining = 0
        self._backoff.network_error_initial_seconds = 0
