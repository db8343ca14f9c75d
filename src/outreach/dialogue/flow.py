"""
DTMF questionnaire flow controller.

Drives one connected call from person detection through the fixed
questionnaire. The controller never waits on the caller: each public
method reacts to one provider signal (tones, silence, playback end),
stores the next ``CallState`` and issues at most one media command.

Cursor semantics (N = number of questions)::

    0        person detection ("press 1 if you can hear this")
    1..N     asking question k
    N+1      complete; completion message playing, hang-up pending

Silence during detection is treated as an answering machine and is
never retried. Silence during a question is retried once.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from outreach.calls.models import CallSession, CallStatus
from outreach.calls.repository import CallResponseRepository, CallSessionRepository
from outreach.config import Settings
from outreach.dialogue.questions import (
    CALLBACK_MESSAGE,
    COMPLETION_MESSAGE,
    INVALID_INPUT_NOTICE,
    PERSON_DETECTION_PROMPT,
    QUESTIONS,
    TIMEOUT_NOTICE,
    parse_answer,
    question_text,
)
from outreach.dialogue.state import CallState, CallStateStore, FlowPhase
from outreach.shared.locks import KeyedLocks
from outreach.shared.logging import get_logger
from outreach.telephony.interface import (
    RecognitionRequest,
    TelephonyProvider,
    TelephonyProviderError,
)

logger = get_logger(__name__)

DETECTION_CONTEXT = "person-detection"


@dataclass(frozen=True)
class FlowConfig:
    """Timing and retry limits for the questionnaire."""

    detection_timeout_seconds: int = 5
    question_timeout_seconds: int = 10
    inter_tone_timeout_seconds: int = 2
    max_invalid_retries: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> FlowConfig:
        return cls(
            detection_timeout_seconds=settings.detection_timeout_seconds,
            question_timeout_seconds=settings.question_timeout_seconds,
            inter_tone_timeout_seconds=settings.inter_tone_timeout_seconds,
            max_invalid_retries=settings.max_invalid_retries,
        )


@lru_cache(maxsize=1)
def get_call_locks() -> KeyedLocks:
    """Process-wide per-connection locks serializing flow steps of one call."""
    return KeyedLocks()


class FlowController:
    """Question-progression state machine for connected calls."""

    def __init__(
        self,
        session: AsyncSession,
        provider: TelephonyProvider,
        call_states: CallStateStore,
        config: FlowConfig | None = None,
        call_locks: KeyedLocks | None = None,
        questions: tuple[str, ...] = QUESTIONS,
    ) -> None:
        """Initialize the controller.

        Args:
            session: Async database session; the controller commits its own writes.
            provider: Telephony provider for media commands.
            call_states: Ephemeral call state store.
            config: Timeouts and retry limits.
            call_locks: Per-connection locks; defaults to the process-wide set.
            questions: Questionnaire wording, in order.
        """
        self._session = session
        self._sessions = CallSessionRepository(session)
        self._responses = CallResponseRepository(session)
        self._provider = provider
        self._states = call_states
        self._config = config or FlowConfig()
        self._locks = call_locks if call_locks is not None else get_call_locks()
        self._questions = questions

    @property
    def question_count(self) -> int:
        return len(self._questions)

    # ------------------------------------------------------------------
    # Provider signals
    # ------------------------------------------------------------------

    async def start(self, call_session: CallSession) -> None:
        """Begin person detection on a freshly connected call."""
        conn = call_session.call_connection_id
        if conn is None:
            logger.warning(
                "Cannot start flow without connection ID",
                extra={"call_session_id": call_session.id},
            )
            return

        async with self._locks.hold(conn):
            self._states.create(conn, call_session.id)
            logger.info(
                "Call flow started",
                extra={"call_connection_id": conn, "call_session_id": call_session.id},
            )
            await self._recognize(
                conn,
                PERSON_DETECTION_PROMPT,
                self._config.detection_timeout_seconds,
                DETECTION_CONTEXT,
            )

    async def on_tones(self, call_connection_id: str, tones: str) -> None:
        """Handle collected DTMF tones.

        A recognition that completed without any tone counts as no input.
        """
        async with self._locks.hold(call_connection_id):
            state = self._active_state(call_connection_id, "tones")
            if state is None:
                return
            if not tones:
                await self._handle_no_input(call_connection_id, state)
                return

            match state.phase(self.question_count):
                case FlowPhase.DETECTING:
                    logger.info(
                        "Person detected",
                        extra={"call_connection_id": call_connection_id, "tones": tones},
                    )
                    await self._advance(call_connection_id)
                case FlowPhase.ASKING:
                    await self._handle_answer(call_connection_id, state, tones)
                case FlowPhase.COMPLETE:
                    logger.info(
                        "Tones after questionnaire ignored",
                        extra={"call_connection_id": call_connection_id},
                    )

    async def on_recognition_failed(self, call_connection_id: str) -> None:
        """Handle a recognition that ended without valid input.

        Every recognition failure is treated as silence.
        """
        async with self._locks.hold(call_connection_id):
            state = self._active_state(call_connection_id, "recognition failure")
            if state is None:
                return
            await self._handle_no_input(call_connection_id, state)

    async def on_playback_finished(self, call_connection_id: str) -> None:
        """Hang up once a closing message has finished playing."""
        async with self._locks.hold(call_connection_id):
            state = self._states.get(call_connection_id)
            if state is None or not state.hang_up_after_playback:
                return
            self._states.remove(call_connection_id)
            await self._hang_up(call_connection_id)

    async def end(self, call_connection_id: str) -> None:
        """Discard call state after the provider reported the call ended."""
        async with self._locks.hold(call_connection_id):
            if self._states.remove(call_connection_id) is not None:
                logger.info(
                    "Call state discarded",
                    extra={"call_connection_id": call_connection_id},
                )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _active_state(self, call_connection_id: str, signal: str) -> CallState | None:
        state = self._states.get(call_connection_id)
        if state is None:
            logger.warning(
                "No call state for signal",
                extra={"call_connection_id": call_connection_id, "signal": signal},
            )
            return None
        if state.hang_up_after_playback:
            logger.info(
                "Signal ignored while call is closing",
                extra={"call_connection_id": call_connection_id, "signal": signal},
            )
            return None
        return state

    async def _handle_answer(self, conn: str, state: CallState, tones: str) -> None:
        answer = parse_answer(tones)
        if answer is None:
            state = self._states.update(conn, lambda s, now: s.with_invalid_input(now))
            if state is None:
                return
            if state.retry_count > self._config.max_invalid_retries:
                logger.info(
                    "Invalid input limit reached; skipping question",
                    extra={"call_connection_id": conn, "question_number": state.cursor},
                )
                await self._advance(conn)
            else:
                logger.info(
                    "Invalid input; repeating question",
                    extra={
                        "call_connection_id": conn,
                        "question_number": state.cursor,
                        "retry_count": state.retry_count,
                        "tones": tones,
                    },
                )
                await self._ask_question(conn, state.cursor, INVALID_INPUT_NOTICE)
            return

        await self._record_answer(conn, state, answer)
        await self._advance(conn)

    async def _handle_no_input(self, conn: str, state: CallState) -> None:
        match state.phase(self.question_count):
            case FlowPhase.DETECTING:
                await self._leave_callback_message(conn)
            case FlowPhase.ASKING if not state.timeout_retried:
                self._states.update(conn, lambda s, now: s.with_timeout_retry(now))
                logger.info(
                    "No response; repeating question once",
                    extra={"call_connection_id": conn, "question_number": state.cursor},
                )
                await self._ask_question(conn, state.cursor, TIMEOUT_NOTICE)
            case FlowPhase.ASKING:
                logger.info(
                    "No response after repeat; ending call",
                    extra={"call_connection_id": conn, "question_number": state.cursor},
                )
                await self._abandon(conn, "no response after repeated question")
            case FlowPhase.COMPLETE:
                pass

    async def _advance(self, conn: str) -> None:
        state = self._states.update(conn, lambda s, now: s.advanced(now))
        if state is None:
            return
        if state.cursor <= self.question_count:
            await self._ask_question(conn, state.cursor)
        else:
            await self._complete(conn)

    async def _record_answer(self, conn: str, state: CallState, affirmative: bool) -> None:
        question_number = state.cursor
        existing = await self._responses.get_by_question(state.call_session_id, question_number)
        if existing is not None:
            logger.info(
                "Response already recorded",
                extra={"call_connection_id": conn, "question_number": question_number},
            )
            return

        try:
            await self._responses.create(
                call_session_id=state.call_session_id,
                question_number=question_number,
                question_text=question_text(question_number, self._questions),
                affirmative=affirmative,
            )
            await self._session.commit()
        except IntegrityError:
            await self._session.rollback()
            logger.warning(
                "Concurrent response for question already stored",
                extra={"call_connection_id": conn, "question_number": question_number},
            )
            return

        logger.info(
            "Response recorded",
            extra={
                "call_connection_id": conn,
                "call_session_id": state.call_session_id,
                "question_number": question_number,
                "affirmative": affirmative,
            },
        )

    async def _complete(self, conn: str) -> None:
        await self._set_status(conn, CallStatus.COMPLETED)
        self._states.update(conn, lambda s, now: s.closing(now))
        logger.info("Questionnaire complete", extra={"call_connection_id": conn})
        await self._play_then_hang_up(conn, COMPLETION_MESSAGE)

    async def _leave_callback_message(self, conn: str) -> None:
        logger.info("No person detected; leaving callback message", extra={"call_connection_id": conn})
        await self._set_status(conn, CallStatus.VOICEMAIL_MESSAGE)
        self._states.update(conn, lambda s, now: s.closing(now))
        await self._play_then_hang_up(conn, CALLBACK_MESSAGE)

    async def _abandon(self, conn: str, reason: str) -> None:
        """End the call as disconnected and drop its state."""
        await self._set_status(conn, CallStatus.DISCONNECTED)
        self._states.remove(conn)
        logger.info("Call abandoned", extra={"call_connection_id": conn, "reason": reason})
        await self._hang_up(conn)

    async def _set_status(self, conn: str, status: CallStatus) -> None:
        call_session = await self._sessions.get_by_connection_id(conn)
        if call_session is None:
            logger.warning(
                "Call session missing during flow",
                extra={"call_connection_id": conn, "status": status.value},
            )
            return
        applied = await self._sessions.transition(call_session, status)
        await self._session.commit()
        if not applied:
            logger.info(
                "Status transition skipped",
                extra={
                    "call_connection_id": conn,
                    "current_status": call_session.status.value,
                    "requested_status": status.value,
                },
            )

    # ------------------------------------------------------------------
    # Media commands
    # ------------------------------------------------------------------

    async def _ask_question(self, conn: str, number: int, notice: str | None = None) -> None:
        prompt = question_text(number, self._questions)
        if notice:
            prompt = f"{notice} {prompt}"
        await self._recognize(
            conn,
            prompt,
            self._config.question_timeout_seconds,
            f"question-{number}",
        )

    async def _recognize(self, conn: str, prompt: str, timeout: int, context: str) -> None:
        request = RecognitionRequest(
            prompt=prompt,
            initial_silence_timeout_seconds=timeout,
            inter_tone_timeout_seconds=self._config.inter_tone_timeout_seconds,
            max_tones=1,
            operation_context=context,
        )
        try:
            await self._provider.start_recognition(conn, request)
        except TelephonyProviderError as e:
            logger.warning(
                "Recognition command failed",
                extra={"call_connection_id": conn, "context": context, "error": str(e)},
            )
            await self._abandon(conn, "provider rejected recognition")

    async def _play_then_hang_up(self, conn: str, message: str) -> None:
        try:
            await self._provider.play_message(conn, message)
        except TelephonyProviderError as e:
            logger.warning(
                "Closing message failed; hanging up",
                extra={"call_connection_id": conn, "error": str(e)},
            )
            self._states.remove(conn)
            await self._hang_up(conn)

    async def _hang_up(self, conn: str) -> None:
        try:
            await self._provider.hang_up(conn)
        except TelephonyProviderError as e:
            logger.warning(
                "Hang-up failed",
                extra={"call_connection_id": conn, "error": str(e)},
            )
