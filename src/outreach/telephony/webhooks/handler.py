"""
Inbound call event routing.

Parses, deduplicates and dispatches provider events to the call
lifecycle manager and the questionnaire flow controller.
"""

from dataclasses import dataclass

from outreach.calls.lifecycle import CallLifecycleManager
from outreach.dialogue.flow import FlowController
from outreach.shared.exceptions import InvalidEventError
from outreach.shared.logging import get_logger
from outreach.shared.tasks import run_to_completion
from outreach.telephony.events import CallEvent, CallEventKind, parse_event_envelope
from outreach.telephony.webhooks.dedup import ProcessedEventRegistry

logger = get_logger(__name__)


@dataclass(frozen=True)
class EventOutcome:
    """Acknowledgement for one delivered event."""

    event_id: str
    processed: bool
    reason: str | None = None


class EventRouter:
    """Entry point for provider call events.

    Events with an already-seen ID are acknowledged without side effects.
    An ID is recorded as processed only after its dispatch succeeded.
    """

    def __init__(
        self,
        registry: ProcessedEventRegistry,
        lifecycle: CallLifecycleManager,
        flow: FlowController,
    ) -> None:
        self._registry = registry
        self._lifecycle = lifecycle
        self._flow = flow

    async def handle(self, body: bytes) -> EventOutcome:
        """Handle one raw event body.

        Raises:
            InvalidRequestError: Empty or unparseable body.
            InvalidEventError: Event without a connection ID.
        """
        event = parse_event_envelope(body)
        log_extra = {
            "event_id": event.event_id,
            "event_type": event.event_type,
            "call_connection_id": event.call_connection_id,
        }

        if event.kind == CallEventKind.UNRECOGNIZED:
            logger.info("Unhandled event type ignored", extra=log_extra)
            return EventOutcome(event.event_id, processed=False, reason="ignored")

        conn = event.call_connection_id
        if conn is None:
            logger.warning("CallConnectionId not found in event", extra=log_extra)
            raise InvalidEventError()

        if not self._registry.try_claim(event.event_id):
            logger.info("Duplicate event skipped", extra=log_extra)
            return EventOutcome(event.event_id, processed=False, reason="duplicate")

        await run_to_completion(self._process(event, conn))
        logger.info("Event processed", extra=log_extra)
        return EventOutcome(event.event_id, processed=True)

    async def _process(self, event: CallEvent, conn: str) -> None:
        # Runs shielded: a dispatch that completed is always marked processed.
        try:
            await self._dispatch(event, conn)
        except BaseException:
            self._registry.release(event.event_id)
            raise
        self._registry.mark_processed(event.event_id)

    async def _dispatch(self, event: CallEvent, conn: str) -> None:
        match event.kind:
            case CallEventKind.CONNECTED:
                await self._lifecycle.on_connected(conn)
            case CallEventKind.DISCONNECTED:
                await self._lifecycle.on_disconnected(conn)
            case CallEventKind.CALL_FAILED if event.is_no_answer:
                await self._lifecycle.on_no_answer(conn)
            case CallEventKind.CALL_FAILED:
                await self._lifecycle.on_failed(conn, event.failure_reason)
            case CallEventKind.PLAYBACK_FINISHED:
                await self._flow.on_playback_finished(conn)
            case CallEventKind.RECOGNITION_SUCCEEDED:
                await self._flow.on_tones(conn, event.tones)
            case CallEventKind.RECOGNITION_FAILED:
                logger.info(
                    "Recognition failed",
                    extra={
                        "call_connection_id": conn,
                        "result_code": event.result_code,
                        "result_sub_code": event.result_sub_code,
                    },
                )
                await self._flow.on_recognition_failed(conn)
            case CallEventKind.UNRECOGNIZED:
                pass
