"""
FastAPI router for call initiation and status.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from outreach.calls.dependencies import get_lifecycle_manager
from outreach.calls.lifecycle import CallLifecycleManager
from outreach.calls.repository import CallSessionRepository
from outreach.calls.schemas import CallStatusResponse, InitiateCallResponse
from outreach.shared.database import get_db_session
from outreach.shared.exceptions import (
    AppError,
    CallSessionNotFoundError,
    InternalError,
    InvalidRequestError,
)
from outreach.shared.logging import get_logger
from outreach.shared.tasks import run_to_completion
from outreach.telephony.config import TelephonyConfig
from outreach.telephony.factory import get_telephony_config

logger = get_logger(__name__)

router = APIRouter(prefix="/api/calls", tags=["calls"])


@router.post(
    "/initiate/{member_id}",
    response_model=InitiateCallResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def initiate_call(
    member_id: int,
    lifecycle: Annotated[CallLifecycleManager, Depends(get_lifecycle_manager)],
    telephony_config: Annotated[TelephonyConfig, Depends(get_telephony_config)],
) -> InitiateCallResponse:
    """Place an outbound call to a member."""
    if member_id <= 0:
        raise InvalidRequestError("Member ID must be a positive integer")

    try:
        call_session = await run_to_completion(lifecycle.initiate(member_id))
    except AppError:
        raise
    except Exception as e:
        logger.exception("Call initiation failed", extra={"member_id": member_id})
        raise InternalError() from e

    return InitiateCallResponse.from_session(call_session, telephony_config.get_callback_url())


@router.get("/status/{call_connection_id}", response_model=CallStatusResponse)
async def get_call_status(
    call_connection_id: str,
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> CallStatusResponse:
    """Return a call's status and its recorded answers."""
    call_session = await CallSessionRepository(session).get_by_connection_id(call_connection_id)
    if call_session is None:
        raise CallSessionNotFoundError(call_connection_id)
    return CallStatusResponse.from_session(call_session)
