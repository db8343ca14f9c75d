"""
Ephemeral per-call conversation state.

State lives only in this process, keyed by provider connection ID, from
the moment a call connects until it ends. Records are immutable; every
flow step stores a new ``CallState`` value.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from functools import lru_cache

from outreach.shared.logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FlowPhase(str, Enum):
    """Where a call stands in the detection/questionnaire sequence."""

    DETECTING = "detecting"
    ASKING = "asking"
    COMPLETE = "complete"


@dataclass(frozen=True)
class CallState:
    """Conversation position for one connected call.

    ``cursor`` is 0 during person detection, 1..N while asking question N,
    and N+1 once the questionnaire is done.
    """

    call_session_id: int
    created_at: datetime
    updated_at: datetime
    cursor: int = 0
    retry_count: int = 0
    timeout_retried: bool = False
    hang_up_after_playback: bool = False

    @classmethod
    def new(cls, call_session_id: int, now: datetime) -> CallState:
        return cls(call_session_id=call_session_id, created_at=now, updated_at=now)

    def phase(self, question_count: int) -> FlowPhase:
        if self.cursor == 0:
            return FlowPhase.DETECTING
        if self.cursor <= question_count:
            return FlowPhase.ASKING
        return FlowPhase.COMPLETE

    def advanced(self, now: datetime) -> CallState:
        """Move to the next step with fresh retry bookkeeping."""
        return replace(
            self,
            cursor=self.cursor + 1,
            retry_count=0,
            timeout_retried=False,
            updated_at=now,
        )

    def with_invalid_input(self, now: datetime) -> CallState:
        return replace(self, retry_count=self.retry_count + 1, updated_at=now)

    def with_timeout_retry(self, now: datetime) -> CallState:
        return replace(self, timeout_retried=True, updated_at=now)

    def closing(self, now: datetime) -> CallState:
        """Mark the call to be hung up once the current message finishes."""
        return replace(self, hang_up_after_playback=True, updated_at=now)


class CallStateStore:
    """Thread-safe mapping of connection ID to ``CallState``.

    All operations are atomic per call; ``update`` applies a
    read-modify-write under the store lock so concurrent updates for the
    same call are never lost.
    """

    def __init__(self, clock: Clock = _utcnow) -> None:
        self._states: dict[str, CallState] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def create(self, call_connection_id: str, call_session_id: int) -> CallState:
        """Start (or restart) tracking a call at the detection step."""
        state = CallState.new(call_session_id, self._clock())
        with self._lock:
            self._states[call_connection_id] = state
        return state

    def get(self, call_connection_id: str) -> CallState | None:
        with self._lock:
            return self._states.get(call_connection_id)

    def set(self, call_connection_id: str, state: CallState) -> None:
        with self._lock:
            self._states[call_connection_id] = state

    def update(
        self,
        call_connection_id: str,
        mutate: Callable[[CallState, datetime], CallState],
    ) -> CallState | None:
        """Atomically replace a call's state with ``mutate(state, now)``.

        Returns:
            The stored new state, or None if the call is not tracked.
        """
        with self._lock:
            current = self._states.get(call_connection_id)
            if current is None:
                return None
            new_state = mutate(current, self._clock())
            self._states[call_connection_id] = new_state
            return new_state

    def remove(self, call_connection_id: str) -> CallState | None:
        with self._lock:
            return self._states.pop(call_connection_id, None)

    def sweep(self, max_age: timedelta = timedelta(hours=1)) -> int:
        """Drop state for calls that started more than ``max_age`` ago.

        Returns:
            Number of records removed.
        """
        cutoff = self._clock() - max_age
        with self._lock:
            stale = [key for key, state in self._states.items() if state.created_at < cutoff]
            for key in stale:
                del self._states[key]
        if stale:
            logger.info(
                "Swept stale call state",
                extra={"removed": len(stale), "max_age_seconds": max_age.total_seconds()},
            )
        return len(stale)

    def __contains__(self, call_connection_id: object) -> bool:
        with self._lock:
            return call_connection_id in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)


@lru_cache(maxsize=1)
def get_call_state_store() -> CallStateStore:
    """Process-wide call state store."""
    return CallStateStore()
