"""
Call lifecycle management: initiation and terminal status transitions.
"""

from functools import lru_cache

from sqlalchemy.ext.asyncio import AsyncSession

from outreach.calls.models import CallSession, CallStatus
from outreach.calls.repository import CallSessionRepository
from outreach.dialogue.flow import FlowController
from outreach.members.models import MemberStatus
from outreach.members.repository import MemberRepository
from outreach.shared.exceptions import (
    ActiveCallExistsError,
    MemberNotEligibleError,
    MemberNotFoundError,
    ProviderFailureError,
)
from outreach.shared.locks import KeyedLocks
from outreach.shared.logging import get_logger
from outreach.telephony.config import TelephonyConfig
from outreach.telephony.interface import (
    CallPlacementRequest,
    TelephonyProvider,
    TelephonyProviderError,
)

logger = get_logger(__name__)


@lru_cache(maxsize=1)
def get_member_locks() -> KeyedLocks:
    """Process-wide per-member locks guarding the one-active-call check."""
    return KeyedLocks()


class CallLifecycleManager:
    """Owns call placement and the provider-driven status changes of a call.

    The manager commits its own writes. Per-call conversation handling is
    delegated to the ``FlowController``.
    """

    def __init__(
        self,
        session: AsyncSession,
        provider: TelephonyProvider,
        flow: FlowController,
        telephony_config: TelephonyConfig,
        member_locks: KeyedLocks | None = None,
    ) -> None:
        self._session = session
        self._members = MemberRepository(session)
        self._sessions = CallSessionRepository(session)
        self._provider = provider
        self._flow = flow
        self._telephony_config = telephony_config
        self._member_locks = member_locks if member_locks is not None else get_member_locks()

    async def initiate(self, member_id: int) -> CallSession:
        """Place an outbound call to a member.

        The session is stored as ``Initiated`` before the provider is asked
        to dial. If dialing fails the session is stored as ``Failed`` first
        and only then is the error raised. A placed call that cannot be
        recorded is hung up and stored as ``Failed`` with its connection ID.

        Args:
            member_id: Member to call.

        Returns:
            The new CallSession, carrying the provider connection ID.

        Raises:
            MemberNotFoundError: No such member.
            MemberNotEligibleError: Member status is not active.
            ActiveCallExistsError: Member already has a non-terminal call.
            ProviderFailureError: The provider refused to place the call.
        """
        async with self._member_locks.hold(member_id):
            member = await self._members.get_by_id(member_id)
            if member is None:
                raise MemberNotFoundError(member_id)
            if member.status != MemberStatus.ACTIVE:
                raise MemberNotEligibleError(member_id, member.status.value)

            active = await self._sessions.get_active_for_member(member_id)
            if active is not None:
                raise ActiveCallExistsError(member_id, active.id)

            call_session = await self._sessions.create(member_id)
            await self._session.commit()
            call_session_id = call_session.id

            logger.info(
                "Call session created",
                extra={"call_session_id": call_session_id, "member_id": member_id},
            )

            request = CallPlacementRequest(
                to=member.phone_number,
                from_number=self._telephony_config.from_number,
                callback_url=self._telephony_config.get_callback_url(),
                call_session_id=call_session_id,
            )

            try:
                placed = await self._provider.create_call(request)
            except TelephonyProviderError as e:
                logger.error(
                    "Call placement failed",
                    extra={
                        "call_session_id": call_session_id,
                        "member_id": member_id,
                        "error_code": e.error_code,
                        "error": str(e),
                    },
                )
                await self._mark_failed(call_session_id)
                raise ProviderFailureError() from e
            except Exception:
                logger.exception(
                    "Call initiation aborted",
                    extra={"call_session_id": call_session_id, "member_id": member_id},
                )
                await self._mark_failed(call_session_id)
                raise

            try:
                call_session.call_connection_id = placed.call_connection_id
                await self._sessions.save(call_session)
                await self._session.commit()
            except Exception:
                logger.exception(
                    "Recording placed call failed; hanging up",
                    extra={
                        "call_session_id": call_session_id,
                        "member_id": member_id,
                        "call_connection_id": placed.call_connection_id,
                    },
                )
                await self._hang_up_orphan(placed.call_connection_id)
                await self._mark_failed(call_session_id, placed.call_connection_id)
                raise

        logger.info(
            "Call placed",
            extra={
                "call_session_id": call_session_id,
                "member_id": member_id,
                "call_connection_id": call_session.call_connection_id,
            },
        )
        return call_session

    async def _hang_up_orphan(self, call_connection_id: str) -> None:
        try:
            await self._provider.hang_up(call_connection_id)
        except TelephonyProviderError as e:
            logger.error(
                "Hang-up of unrecorded call failed",
                extra={
                    "call_connection_id": call_connection_id,
                    "error_code": e.error_code,
                    "error": str(e),
                },
            )

    async def _mark_failed(
        self,
        call_session_id: int,
        call_connection_id: str | None = None,
    ) -> None:
        """Store the session as ``Failed``, keeping the connection ID of a placed call."""
        await self._session.rollback()
        call_session = await self._sessions.get_by_id(call_session_id)
        if call_session is None:
            return
        if call_connection_id is not None:
            call_session.call_connection_id = call_connection_id
            await self._sessions.save(call_session)
        await self._apply(call_session, CallStatus.FAILED)
        await self._session.commit()

    async def on_connected(self, call_connection_id: str) -> None:
        """Mark the call connected and start person detection."""
        call_session = await self._load(call_connection_id, "connected")
        if call_session is None:
            return
        if not await self._apply(call_session, CallStatus.CONNECTED):
            return
        await self._session.commit()
        await self._flow.start(call_session)

    async def on_disconnected(self, call_connection_id: str) -> None:
        """Record the provider-side end of a call.

        A session already concluded by the flow (completed, voicemail, ...)
        keeps its status and end time, including one concluded after this
        handler loaded it.
        """
        call_session = await self._load(call_connection_id, "disconnected")
        if call_session is not None:
            if call_session.is_terminal:
                logger.info(
                    "Disconnect after terminal status; status preserved",
                    extra={
                        "call_connection_id": call_connection_id,
                        "status": call_session.status.value,
                    },
                )
            else:
                await self._apply(call_session, CallStatus.DISCONNECTED)
                await self._session.commit()
        await self._flow.end(call_connection_id)

    async def on_no_answer(self, call_connection_id: str) -> None:
        await self._finish(call_connection_id, CallStatus.NO_ANSWER)

    async def on_failed(self, call_connection_id: str, reason: str) -> None:
        logger.warning(
            "Call failed",
            extra={"call_connection_id": call_connection_id, "reason": reason},
        )
        await self._finish(call_connection_id, CallStatus.FAILED)

    async def _finish(self, call_connection_id: str, status: CallStatus) -> None:
        call_session = await self._load(call_connection_id, status.value)
        if call_session is not None:
            await self._apply(call_session, status)
            await self._session.commit()
        await self._flow.end(call_connection_id)

    async def _load(self, call_connection_id: str, signal: str) -> CallSession | None:
        call_session = await self._sessions.get_by_connection_id(call_connection_id)
        if call_session is None:
            logger.warning(
                "No call session for connection",
                extra={"call_connection_id": call_connection_id, "signal": signal},
            )
        return call_session

    async def _apply(self, call_session: CallSession, status: CallStatus) -> bool:
        previous = call_session.status
        if await self._sessions.transition(call_session, status):
            logger.info(
                "Call status changed",
                extra={
                    "call_session_id": call_session.id,
                    "call_connection_id": call_session.call_connection_id,
                    "from_status": previous.value,
                    "to_status": status.value,
                },
            )
            return True
        logger.info(
            "Call status transition skipped",
            extra={
                "call_session_id": call_session.id,
                "call_connection_id": call_session.call_connection_id,
                "current_status": call_session.status.value,
                "requested_status": status.value,
            },
        )
        return False
