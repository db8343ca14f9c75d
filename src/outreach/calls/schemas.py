"""
Pydantic schemas for the calls API.

Responses are serialized with camelCase keys.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from outreach.calls.models import CallResponse, CallSession, CallStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitiateCallResponse(_CamelModel):
    """Accepted call initiation."""

    call_session_id: int
    member_id: int
    call_connection_id: str | None = None
    status: CallStatus
    start_time: datetime
    callback_url: str = Field(..., description="Address the provider posts call events to")

    @classmethod
    def from_session(cls, call_session: CallSession, callback_url: str) -> "InitiateCallResponse":
        return cls(
            call_session_id=call_session.id,
            member_id=call_session.member_id,
            call_connection_id=call_session.call_connection_id,
            status=call_session.status,
            start_time=call_session.start_time,
            callback_url=callback_url,
        )


class CallResponseItem(_CamelModel):
    """One recorded answer."""

    question_number: int
    question_text: str
    response: str = Field(..., description="Yes or No")
    responded_at: datetime

    @classmethod
    def from_model(cls, response: CallResponse) -> "CallResponseItem":
        return cls(
            question_number=response.question_number,
            question_text=response.question_text,
            response=response.response_text,
            responded_at=response.answered_at,
        )


class CallStatusResponse(_CamelModel):
    """Status of a call session with its recorded answers."""

    call_session_id: int
    member_id: int
    member_name: str | None = None
    call_connection_id: str | None = None
    status: CallStatus
    start_time: datetime
    end_time: datetime | None = None
    duration_seconds: float | None = None
    responses: list[CallResponseItem] = Field(default_factory=list)

    @classmethod
    def from_session(cls, call_session: CallSession) -> "CallStatusResponse":
        return cls(
            call_session_id=call_session.id,
            member_id=call_session.member_id,
            member_name=call_session.member.full_name if call_session.member else None,
            call_connection_id=call_session.call_connection_id,
            status=call_session.status,
            start_time=call_session.start_time,
            end_time=call_session.end_time,
            duration_seconds=call_session.duration_seconds,
            responses=[
                CallResponseItem.from_model(r)
                for r in sorted(call_session.responses, key=lambda r: r.question_number)
            ],
        )

