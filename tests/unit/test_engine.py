import pytest

from anilist.client import RateLimitError
from core.engine import UnknownItemError
from core.models import ProgressState, RateLimitState

from conftest import make_candidate, make_complete_item, make_item


def _messages(engine) -> list:
    return engine.fetch_log.messages()


def test_all_fetches_succeed_and_progress_completes(make_engine, scheduler, fetcher) -> None:
    engine, store = make_engine([make_item(1), make_item(2), make_item(3)])

    engine.load()
    assert engine.queue == [1, 2, 3]
    assert engine.progress == ProgressState(total=3, current=0, fetching_title="", active=True)

    scheduler.advance(10)

    assert fetcher.calls == [1, 2, 3]
    assert engine.queue == []
    assert engine.last_finished_progress == ProgressState(total=3, current=3, fetching_title="", active=False)
    assert engine.progress == ProgressState()
    messages = _messages(engine)
    assert messages.count("Starting background fetch for 3 item(s).") == 1
    assert sum(1 for m in messages if m.startswith("✅ Success: Fetched details for")) == 3
    assert messages[-1] == "Fetch queue is empty, processing finished (3/3)."
    assert all(item.has_complete_metadata for item in engine.collection.items())
    assert store.collection[0]["description"] == "Description of show 1."


def test_rate_limit_pauses_then_retries_same_id(make_engine, scheduler, fetcher) -> None:
    fetcher.script[1] = [RateLimitError(5)]
    engine, _ = make_engine([make_item(1)])

    engine.load()
    scheduler.advance(2)

    assert fetcher.calls == [1]
    assert engine.rate_limit_state == RateLimitState(active=True, seconds_remaining=5)
    assert engine.queue == [1]
    assert not engine.is_scheduled

    for remaining in (4, 3, 2, 1):
        scheduler.advance(1)
        assert engine.rate_limit_state == RateLimitState(active=True, seconds_remaining=remaining)
        assert fetcher.calls == [1]

    scheduler.advance(1)
    assert engine.rate_limit_state.active is False
    assert "Rate limit lifted. Resuming queue." in _messages(engine)
    assert engine.is_scheduled

    scheduler.advance(2)
    assert fetcher.calls == [1, 1]
    assert engine.collection.get(1).has_complete_metadata


def test_rate_limit_without_retry_after_uses_default_pause(make_engine, scheduler, fetcher) -> None:
    fetcher.script[1] = [RateLimitError(0)]
    engine, _ = make_engine([make_item(1)])

    engine.load()
    scheduler.advance(2)

    assert engine.rate_limit_state == RateLimitState(active=True, seconds_remaining=60)
    assert "Rate limit hit. Pausing queue for 60 seconds." in _messages(engine)


def test_rate_limit_blocks_dequeue_on_reevaluate(make_engine, scheduler, fetcher) -> None:
    fetcher.script[1] = [RateLimitError(30)]
    engine, _ = make_engine([make_item(1), make_item(2)])

    engine.load()
    scheduler.advance(2)
    engine.reevaluate()
    engine.reevaluate()
    scheduler.advance(20)

    assert not engine.is_scheduled
    assert fetcher.calls == [1]
    assert engine.progress.active is False
    paused = [m for m in _messages(engine) if m.startswith("Queue processing paused due to rate limit.")]
    assert len(paused) == 1


def test_backoff_sequence_after_repeated_errors(make_engine, scheduler, fetcher) -> None:
    fetcher.script[1] = [RuntimeError("boom"), RuntimeError("boom")]
    engine, _ = make_engine([make_item(1)])

    engine.load()
    scheduler.advance(2)
    assert engine.backoff_state.current_delay_ms == 30000
    network = engine.network_error_state
    assert network.active and network.initial_seconds == 30

    scheduler.advance(30)
    assert engine.backoff_state.current_delay_ms == 10000

    scheduler.advance(10)

    assert fetcher.calls == [1, 1, 1]
    assert fetcher.call_times == [2.0, 32.0, 42.0]
    assert scheduler.fired_delays() == [2.0, 30.0, 10.0]
    assert engine.backoff_state.current_delay_ms == 2000
    assert engine.network_error_state.active is False
    messages = _messages(engine)
    assert "❌ Error: boom. Retrying with delay." in messages
    assert 'Re-queued "Show 1" due to error. Increasing retry delay to 30 seconds.' in messages
    assert "Rescheduling next queue item with increased delay (10 seconds)." in messages
    assert "Successful fetch. Resetting fetch delay." in messages


def test_network_error_countdown_ticks(make_engine, scheduler, fetcher) -> None:
    fetcher.script[1] = [ConnectionError("offline")]
    engine, _ = make_engine([make_item(1)])

    engine.load()
    scheduler.advance(2)
    scheduler.advance(5)

    state = engine.network_error_state
    assert state.active
    assert state.seconds_remaining == 25
    assert state.initial_seconds == 30


def test_not_found_goes_to_unresolved_and_resolve_rekeys(make_engine, scheduler, fetcher) -> None:
    fetcher.script[7] = [None]
    engine, store = make_engine([make_item(7, title="Shingeki", episodes_watched=5, score=8, status="watching")])

    engine.load()
    scheduler.advance(10)

    assert engine.unresolved_ids == {7}
    assert store.unresolved == {7}
    assert engine.last_finished_progress.current == 1

    scheduler.advance(100)
    assert engine.refresh() == 0
    scheduler.advance(100)
    assert fetcher.calls == [7]

    candidate = make_candidate(16498, "Attack on Titan")
    resolved = engine.resolve(7, candidate)

    assert 7 not in engine.unresolved_ids
    assert store.unresolved == set()
    assert 7 not in engine.collection
    assert engine.collection.ids()[0] == 16498
    assert resolved.title == "Attack on Titan"
    assert resolved.episodes_watched == 5
    assert resolved.score == 8
    assert resolved.status == "watching"
    assert resolved.has_complete_metadata
    assert engine.collection.details(16498)["studio"] == "Wit Studio"
    assert '✅ Resolved: Matched "Shingeki" to "Attack on Titan" (MAL ID: 16498).' in _messages(engine)


def test_resolve_replaces_existing_entry_with_same_id(make_engine) -> None:
    engine, _ = make_engine([make_item(1), make_item(7), make_complete_item(99, title="Old copy")])
    engine.load(start=False)

    engine.resolve(7, make_candidate(99, "New copy"))

    assert engine.collection.ids() == [99, 1]
    assert engine.collection.get(99).title == "New copy"


def test_resolve_unknown_item_raises(make_engine) -> None:
    engine, _ = make_engine([make_item(1)])
    engine.load(start=False)

    with pytest.raises(UnknownItemError):
        engine.resolve(42, make_candidate(5, "Nope"))


def test_single_flight_while_fetch_outstanding(make_engine, scheduler, fetcher) -> None:
    engine, _ = make_engine([make_item(1), make_item(2)])
    observed = []

    def during_fetch(item_id: int) -> None:
        engine.reevaluate()
        engine.refresh()
        observed.append((engine.in_flight, engine.is_scheduled))

    fetcher.on_fetch = during_fetch
    engine.load()
    scheduler.advance(2)

    assert observed == [(True, False)]
    assert fetcher.calls == [1]
    assert engine.is_scheduled

    scheduler.advance(10)
    assert fetcher.calls == [1, 2]
    assert "ℹ️ Details already exist for \"Show 1\". Skipping." in _messages(engine)


def test_stop_clears_queue_and_cancels_timers(make_engine, scheduler, fetcher) -> None:
    engine, _ = make_engine([make_item(1), make_item(2)])
    engine.load()

    engine.stop()
    scheduler.advance(60)

    assert fetcher.calls == []
    assert engine.queue == []
    assert not engine.is_scheduled
    assert engine.progress == ProgressState()
    assert engine.is_idle
    assert "Stop request received. Clearing queue and halting process." in _messages(engine)


def test_stop_clears_rate_limit(make_engine, scheduler, fetcher) -> None:
    fetcher.script[1] = [RateLimitError(30)]
    engine, _ = make_engine([make_item(1)])
    engine.load()
    scheduler.advance(2)

    engine.stop()

    assert engine.rate_limit_state == RateLimitState()
    assert scheduler.pending() == []


def test_late_success_after_stop_is_still_merged(make_engine, scheduler, fetcher) -> None:
    engine, _ = make_engine([make_item(1), make_item(2)])
    fetcher.on_fetch = lambda item_id: engine.stop()

    engine.load()
    scheduler.advance(10)

    assert fetcher.calls == [1]
    assert engine.collection.get(1).has_complete_metadata
    assert engine.queue == []
    assert not engine.in_flight
    assert not engine.is_scheduled


def test_late_failure_after_stop_is_discarded(make_engine, scheduler, fetcher) -> None:
    fetcher.script[1] = [RuntimeError("boom")]
    engine, _ = make_engine([make_item(1)])
    fetcher.on_fetch = lambda item_id: engine.stop()

    engine.load()
    scheduler.advance(10)

    assert engine.queue == []
    assert engine.backoff_state.current_delay_ms == 2000
    assert engine.network_error_state.active is False
    assert 'Discarded late failure for "Show 1" after queue reset.' in _messages(engine)


def test_complete_items_are_not_queued(make_engine, scheduler, fetcher) -> None:
    engine, _ = make_engine([make_complete_item(1), make_item(2)])

    engine.load()
    scheduler.advance(10)

    assert fetcher.calls == [2]
    assert "Initial queue populated with 1 items." in _messages(engine)


def test_initial_population_runs_once(make_engine) -> None:
    engine, _ = make_engine([make_item(1)])
    engine.load()

    assert engine.populate_initial_queue() == 0
    assert engine.queue == [1]


def test_refresh_prepends_new_gaps_and_grows_total(make_engine, scheduler) -> None:
    engine, _ = make_engine([make_complete_item(1), make_item(2)])
    engine.load()
    assert engine.queue == [2]

    engine.collection.replace_all(engine.collection.items() + [make_item(3)])
    added = engine.refresh()

    assert added == 1
    assert engine.queue == [3, 2]
    assert engine.progress.total == 2
    assert "Added 1 new item(s) to the fetch queue. Total: 2." in _messages(engine)


def test_refresh_clears_rate_limit_and_resumes(make_engine, scheduler, fetcher) -> None:
    fetcher.script[1] = [RateLimitError(30)]
    engine, _ = make_engine([make_item(1)])
    engine.load()
    scheduler.advance(2)
    assert engine.rate_limit_state.active

    assert engine.refresh() == 0

    assert engine.rate_limit_state == RateLimitState()
    assert engine.is_scheduled
    scheduler.advance(2)
    assert fetcher.calls == [1, 1]


def test_import_reuses_cached_details(make_engine, scheduler, fetcher) -> None:
    fetcher.script[3] = [None]
    engine, store = make_engine([make_item(1), make_item(3)])
    engine.load()
    scheduler.advance(10)
    assert engine.unresolved_ids == {3}

    engine.import_replaced([make_item(1, score=9), make_item(5)])

    assert engine.unresolved_ids == set()
    assert store.unresolved == set()
    assert engine.queue == [5]
    item = engine.collection.get(1)
    assert item.has_complete_metadata
    assert item.score == 9
    assert "List imported. Fetch queue and unresolved list reset. Rate limit cleared." in _messages(engine)


def test_clear_cache_strips_metadata_and_requeues_everything(make_engine, scheduler, fetcher) -> None:
    engine, store = make_engine([make_item(1, score=7, episodes_watched=3), make_item(2)])
    engine.load()
    scheduler.advance(10)
    assert store.details_cache

    engine.clear_cache()

    assert store.details_cache == {}
    assert engine.queue == [1, 2]
    item = engine.collection.get(1)
    assert item.description is None
    assert item.media_status is None
    assert item.score == 7
    assert item.episodes_watched == 3
    assert item.total_episodes == 12
    assert "Details cache cleared. Re-populating fetch queue with 2 items." in _messages(engine)


def test_remove_item_drops_queue_entries(make_engine) -> None:
    engine, store = make_engine([make_item(1), make_item(2), make_item(3)])
    engine.load()

    assert engine.remove_item(2) is True
    assert engine.queue == [1, 3]
    assert 2 not in engine.collection
    assert [entry["id"] for entry in store.collection] == [1, 3]
    assert engine.remove_item(2) is False


def test_detail_view_follows_fetched_metadata(make_engine, scheduler) -> None:
    engine, _ = make_engine([make_item(1)])
    engine.load()
    assert engine.open_detail(1).description is None

    scheduler.advance(2)

    assert engine.detail.description == "Description of show 1."
    engine.close_detail()
    assert engine.detail is None


def test_candidates_for_ranks_results(make_engine, fetcher) -> None:
    engine, _ = make_engine([make_item(7, title="Shingeki no Kyojin")])
    engine.load(start=False)
    fetcher.search_results = [
        make_candidate(2, "Beta", score=5.0),
        make_candidate(3, "Alpha", score=9.0),
        make_candidate(4, "Gamma", score=1.0),
    ]

    candidates = engine.candidates_for(7, min_score=2.0)

    assert [c.mal_id for c in candidates] == [3, 2]
    assert fetcher.searches == ["Shingeki no Kyojin"]


def test_candidates_for_rate_limit_engages_pause(make_engine, fetcher) -> None:
    engine, _ = make_engine([make_item(7)])
    engine.load(start=False)
    fetcher.search_error = RateLimitError(7)

    with pytest.raises(RateLimitError):
        engine.candidates_for(7)

    assert engine.rate_limit_state == RateLimitState(active=True, seconds_remaining=7)


def test_candidates_for_unknown_item(make_engine) -> None:
    engine, _ = make_engine([make_item(1)])
    engine.load(start=False)

    with pytest.raises(UnknownItemError):
        engine.candidates_for(99)


def test_refresh_during_not_found_fetch_does_not_refetch(make_engine, scheduler, fetcher) -> None:
    fetcher.script[7] = [None, None]
    engine, _ = make_engine([make_item(7), make_item(8)])

    def during_fetch(item_id: int) -> None:
        if item_id == 7 and fetcher.calls.count(7) == 1:
            engine.refresh()

    fetcher.on_fetch = during_fetch
    engine.load()
    scheduler.advance(2)

    assert engine.unresolved_ids == {7}
    assert engine.queue == [8]

    scheduler.advance(20)
    assert fetcher.calls == [7, 8]


def test_late_not_found_after_clear_cache_is_not_requeued(make_engine, scheduler, fetcher) -> None:
    fetcher.script[7] = [None, None]
    engine, _ = make_engine([make_item(7), make_item(8)])

    def during_fetch(item_id: int) -> None:
        if item_id == 7 and fetcher.calls.count(7) == 1:
            engine.clear_cache()

    fetcher.on_fetch = during_fetch
    engine.load()
    scheduler.advance(2)

    assert engine.unresolved_ids == {7}
    assert 7 not in engine.queue

    scheduler.advance(20)
    assert fetcher.calls.count(7) == 1


def test_rate_limit_leaves_backoff_and_freezes_network_countdown(make_engine, scheduler, fetcher) -> None:
    fetcher.script[1] = [RuntimeError("boom"), RateLimitError(5)]
    engine, _ = make_engine([make_item(1)])

    engine.load()
    scheduler.advance(2)
    assert engine.backoff_state.current_delay_ms == 30000

    scheduler.advance(30)
    assert engine.rate_limit_state == RateLimitState(active=True, seconds_remaining=5)
    assert engine.backoff_state.current_delay_ms == 30000
    frozen = engine.network_error_state.seconds_remaining
    assert engine.network_error_state.active

    for _ in range(4):
        scheduler.advance(1)
        assert engine.rate_limit_state.active
        assert engine.backoff_state.current_delay_ms == 30000
        assert engine.network_error_state.seconds_remaining == frozen

    scheduler.advance(1)
    assert engine.rate_limit_state.active is False

    scheduler.advance(60)
    assert fetcher.calls == [1, 1, 1]
    assert engine.backoff_state.current_delay_ms == 2000
    assert engine.network_error_state.active is False
