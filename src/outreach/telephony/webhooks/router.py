"""
FastAPI router for inbound telephony call events.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from outreach.calls.dependencies import get_event_router
from outreach.shared.exceptions import AppError, InternalError
from outreach.shared.logging import get_logger
from outreach.telephony.webhooks.handler import EventRouter

logger = get_logger(__name__)

router = APIRouter(prefix="/api/calls", tags=["webhooks"])


class EventAcknowledgement(BaseModel):
    """Acknowledgement returned to the provider for a delivered event."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    event_id: str
    processed: bool
    reason: str | None = None


@router.post(
    "/events",
    response_model=EventAcknowledgement,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
)
async def receive_call_event(
    request: Request,
    event_router: Annotated[EventRouter, Depends(get_event_router)],
) -> EventAcknowledgement:
    body = await request.body()
    try:
        outcome = await event_router.handle(body)
    except AppError:
        raise
    except Exception as e:
        logger.exception("Call event processing failed")
        raise InternalError() from e

    return EventAcknowledgement(
        event_id=outcome.event_id,
        processed=outcome.processed,
        reason=outcome.reason,
    )
