"""Tests for the ephemeral call state store."""

import threading
from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from outreach.dialogue.state import CallState, CallStateStore, FlowPhase


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> CallStateStore:
    return CallStateStore(clock=clock)


class TestCallState:
    def test_new_state_starts_at_detection(self, clock: FakeClock) -> None:
        state = CallState.new(7, clock())

        assert state.cursor == 0
        assert state.retry_count == 0
        assert state.timeout_retried is False
        assert state.hang_up_after_playback is False
        assert state.phase(3) == FlowPhase.DETECTING

    def test_phase_follows_cursor(self, clock: FakeClock) -> None:
        state = CallState.new(1, clock())

        assert state.advanced(clock()).phase(3) == FlowPhase.ASKING
        assert CallState(1, clock(), clock(), cursor=3).phase(3) == FlowPhase.ASKING
        assert CallState(1, clock(), clock(), cursor=4).phase(3) == FlowPhase.COMPLETE

    def test_advanced_resets_retry_bookkeeping(self, clock: FakeClock) -> None:
        state = CallState(
            1, clock(), clock(), cursor=2, retry_count=2, timeout_retried=True
        )

        nxt = state.advanced(clock())

        assert nxt.cursor == 3
        assert nxt.retry_count == 0
        assert nxt.timeout_retried is False

    def test_transitions_return_new_values(self, clock: FakeClock) -> None:
        state = CallState.new(1, clock())

        retried = state.with_invalid_input(clock())

        assert retried is not state
        assert state.retry_count == 0
        assert retried.retry_count == 1

    def test_state_is_immutable(self, clock: FakeClock) -> None:
        state = CallState.new(1, clock())

        with pytest.raises(FrozenInstanceError):
            state.cursor = 5  # type: ignore[misc]


class TestCallStateStore:
    def test_create_and_get(self, store: CallStateStore) -> None:
        created = store.create("conn-1", 42)

        assert store.get("conn-1") == created
        assert created.call_session_id == 42
        assert "conn-1" in store
        assert len(store) == 1

    def test_get_unknown_returns_none(self, store: CallStateStore) -> None:
        assert store.get("missing") is None

    def test_update_applies_mutation_with_store_clock(
        self, store: CallStateStore, clock: FakeClock
    ) -> None:
        store.create("conn-1", 1)
        clock.advance(seconds=30)

        updated = store.update("conn-1", lambda s, now: s.advanced(now))

        assert updated is not None
        assert updated.cursor == 1
        assert updated.updated_at == clock.now
        assert store.get("conn-1") == updated

    def test_update_unknown_returns_none(self, store: CallStateStore) -> None:
        assert store.update("missing", lambda s, now: s.advanced(now)) is None
        assert "missing" not in store

    def test_remove(self, store: CallStateStore) -> None:
        store.create("conn-1", 1)

        removed = store.remove("conn-1")

        assert removed is not None
        assert store.get("conn-1") is None
        assert store.remove("conn-1") is None

    def test_concurrent_updates_are_not_lost(self, store: CallStateStore) -> None:
        store.create("conn-1", 1)
        workers = 8
        per_worker = 250

        def bump() -> None:
            for _ in range(per_worker):
                store.update("conn-1", lambda s, now: s.with_invalid_input(now))

        threads = [threading.Thread(target=bump) for _ in range(workers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        state = store.get("conn-1")
        assert state is not None
        assert state.retry_count == workers * per_worker

    def test_sweep_removes_only_stale_states(
        self, store: CallStateStore, clock: FakeClock
    ) -> None:
        store.create("old", 1)
        clock.advance(minutes=50)
        store.create("recent", 2)
        clock.advance(minutes=15)

        removed = store.sweep(timedelta(hours=1))

        assert removed == 1
        assert "old" not in store
        assert "recent" in store

    def test_sweep_uses_creation_time(self, store: CallStateStore, clock: FakeClock) -> None:
        store.create("conn-1", 1)
        clock.advance(minutes=90)
        store.update("conn-1", lambda s, now: s.advanced(now))

        assert store.sweep(timedelta(hours=1)) == 1
