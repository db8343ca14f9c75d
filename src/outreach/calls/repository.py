"""
Repositories for call session and call response database operations.
"""

from collections.abc import Sequence
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from outreach.calls.models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    CallResponse,
    CallSession,
    CallStatus,
    statuses_leading_to,
)


class CallSessionRepository:
    """Repository for call session database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def create(self, member_id: int) -> CallSession:
        """Create a new call session in ``Initiated`` status.

        Args:
            member_id: Member being called.

        Returns:
            Created CallSession instance.
        """
        now = datetime.now(timezone.utc)
        call_session = CallSession(
            member_id=member_id,
            status=CallStatus.INITIATED,
            start_time=now,
            created_at=now,
            updated_at=now,
        )
        self._session.add(call_session)
        await self._session.flush()
        await self._session.refresh(call_session)
        return call_session

    async def get_by_id(self, call_session_id: int) -> CallSession | None:
        return await self._session.get(CallSession, call_session_id)

    async def get_by_connection_id(self, call_connection_id: str) -> CallSession | None:
        """Get call session by provider connection ID.

        The member and the recorded responses are loaded with the session and
        refreshed if the instance is already in the identity map.

        Args:
            call_connection_id: Provider-assigned connection identifier.

        Returns:
            CallSession if found, None otherwise.
        """
        stmt = (
            select(CallSession)
            .where(CallSession.call_connection_id == call_connection_id)
            .options(
                selectinload(CallSession.member),
                selectinload(CallSession.responses),
            )
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_member(self, member_id: int) -> Sequence[CallSession]:
        """List a member's call sessions, newest first."""
        stmt = (
            select(CallSession)
            .where(CallSession.member_id == member_id)
            .order_by(CallSession.start_time.desc(), CallSession.id.desc())
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def get_active_for_member(self, member_id: int) -> CallSession | None:
        """Get the member's call session in a non-terminal status, if any."""
        stmt = (
            select(CallSession)
            .where(
                CallSession.member_id == member_id,
                CallSession.status.in_(ACTIVE_STATUSES),
            )
            .order_by(CallSession.id.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def transition(
        self,
        call_session: CallSession,
        new_status: CallStatus,
        at: datetime | None = None,
    ) -> bool:
        """Move a session to a new status if the status machine allows it.

        The check and the write are one conditional UPDATE, so a writer
        holding a stale copy cannot overwrite a status committed by another
        unit of work. Entering a terminal status stamps ``end_time`` unless
        one is already set. The instance is refreshed afterwards and carries
        the stored status whether or not the update applied.

        Args:
            call_session: Session to move.
            new_status: Target status.
            at: Transition time; defaults to now.

        Returns:
            True if this call changed the stored status.
        """
        now = at or datetime.now(timezone.utc)
        values: dict[str, object] = {"status": new_status, "updated_at": now}
        if new_status in TERMINAL_STATUSES:
            values["end_time"] = func.coalesce(CallSession.end_time, now)

        stmt = (
            update(CallSession)
            .where(
                CallSession.id == call_session.id,
                CallSession.status.in_(statuses_leading_to(new_status)),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        await self._session.refresh(call_session)
        return result.rowcount == 1

    async def save(self, call_session: CallSession) -> CallSession:
        """Flush pending changes on a session already tracked by this unit of work."""
        call_session.updated_at = datetime.now(timezone.utc)
        self._session.add(call_session)
        await self._session.flush()
        return call_session


class CallResponseRepository:
    """Repository for recorded questionnaire answers."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        call_session_id: int,
        question_number: int,
        question_text: str,
        affirmative: bool,
    ) -> CallResponse:
        """Record an answer.

        Raises:
            sqlalchemy.exc.IntegrityError: If the question already has an answer
                for this session.
        """
        response = CallResponse(
            call_session_id=call_session_id,
            question_number=question_number,
            question_text=question_text,
            affirmative=affirmative,
            answered_at=datetime.now(timezone.utc),
        )
        self._session.add(response)
        await self._session.flush()
        await self._session.refresh(response)
        return response

    async def get_by_question(
        self,
        call_session_id: int,
        question_number: int,
    ) -> CallResponse | None:
        stmt = select(CallResponse).where(
            CallResponse.call_session_id == call_session_id,
            CallResponse.question_number == question_number,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_session(self, call_session_id: int) -> Sequence[CallResponse]:
        """List answers for a session ordered by question number."""
        stmt = (
            select(CallResponse)
            .where(CallResponse.call_session_id == call_session_id)
            .order_by(CallResponse.question_number)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()
