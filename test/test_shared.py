"""
Tests for shared helpers: errors, locks, task shielding and logging.
"""

import asyncio
import json
import logging

import pytest

from outreach.shared.exceptions import (
    ActiveCallExistsError,
    AppError,
    CallSessionNotFoundError,
    InternalError,
    InvalidEventError,
    MemberNotEligibleError,
    MemberNotFoundError,
    ProviderFailureError,
)
from outreach.shared.locks import KeyedLocks
from outreach.shared.logging import StructuredFormatter, correlation_id_var
from outreach.shared.tasks import run_to_completion


class TestProblemDetails:
    @pytest.mark.parametrize(
        ("error", "status", "problem"),
        [
            (MemberNotFoundError(3), 404, "member-not-found"),
            (CallSessionNotFoundError("c-1"), 404, "call-not-found"),
            (MemberNotEligibleError(3, "pending"), 422, "member-not-eligible"),
            (ActiveCallExistsError(3, 9), 409, "call-in-progress"),
            (ProviderFailureError(), 502, "provider-failure"),
            (InvalidEventError(), 400, "invalid-event"),
            (InternalError(), 500, "internal-error"),
        ],
    )
    def test_status_and_type(self, error: AppError, status: int, problem: str) -> None:
        details = error.problem_details()

        assert details["status"] == status
        assert details["type"] == f"/errors/{problem}"
        assert details["detail"] == error.message
        assert details["title"]

    def test_internal_error_hides_details(self) -> None:
        assert InternalError().problem_details()["detail"] == "An unexpected error occurred"

    def test_member_not_found_message(self) -> None:
        assert MemberNotFoundError(12).message == "Member with ID 12 not found"


class TestKeyedLocks:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self) -> None:
        locks = KeyedLocks()
        order: list[str] = []

        async def worker(name: str) -> None:
            async with locks.hold("conn-1"):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))

        assert order in (
            ["a-in", "a-out", "b-in", "b-out"],
            ["b-in", "b-out", "a-in", "a-out"],
        )

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self) -> None:
        locks = KeyedLocks()
        both_inside = asyncio.Event()
        inside = 0

        async def worker(key: str) -> None:
            nonlocal inside
            async with locks.hold(key):
                inside += 1
                if inside == 2:
                    both_inside.set()
                await asyncio.wait_for(both_inside.wait(), timeout=1)

        await asyncio.gather(worker("a"), worker("b"))

        assert both_inside.is_set()

    @pytest.mark.asyncio
    async def test_unused_locks_are_dropped(self) -> None:
        locks = KeyedLocks()

        async with locks.hold(1):
            assert len(locks) == 1

        assert len(locks) == 0


class TestRunToCompletion:
    @pytest.mark.asyncio
    async def test_returns_result(self) -> None:
        async def work() -> int:
            return 42

        assert await run_to_completion(work()) == 42

    @pytest.mark.asyncio
    async def test_cancelled_caller_waits_for_work(self) -> None:
        started = asyncio.Event()
        finished = False

        async def work() -> None:
            nonlocal finished
            started.set()
            await asyncio.sleep(0.05)
            finished = True

        caller = asyncio.ensure_future(run_to_completion(work()))
        await started.wait()
        caller.cancel()

        with pytest.raises(asyncio.CancelledError):
            await caller

        assert finished is True


class TestStructuredFormatter:
    def test_includes_extra_fields_and_correlation_id(self) -> None:
        record = logging.LogRecord(
            name="outreach.test",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Call placed",
            args=(),
            exc_info=None,
        )
        record.call_session_id = 7
        token = correlation_id_var.set("corr-1")
        try:
            payload = json.loads(StructuredFormatter().format(record))
        finally:
            correlation_id_var.reset(token)

        assert payload["message"] == "Call placed"
        assert payload["level"] == "INFO"
        assert payload["call_session_id"] == 7
        assert payload["correlation_id"] == "corr-1"
