"""
Inbound telephony event models and envelope parsing.

Provider notifications arrive as CloudEvents-style JSON objects::

    {"id": "...", "type": "Microsoft.Communication.CallConnected",
     "time": "...", "data": {"callConnectionId": "...", ...}}

They are normalized into a ``CallEvent`` whose ``kind`` is one of a
closed set of categories.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from outreach.shared.exceptions import InvalidRequestError

TYPE_NAMESPACE = "Microsoft.Communication."

# Result codes on a failed call meaning the callee never picked up.
NO_ANSWER_RESULT_CODES: frozenset[int] = frozenset({408, 480, 487})

DTMF_TONE_NAMES: dict[str, str] = {
    "zero": "0",
    "one": "1",
    "two": "2",
    "three": "3",
    "four": "4",
    "five": "5",
    "six": "6",
    "seven": "7",
    "eight": "8",
    "nine": "9",
    "pound": "#",
    "asterisk": "*",
    "a": "A",
    "b": "B",
    "c": "C",
    "d": "D",
}


class CallEventKind(str, Enum):
    """Categories of inbound call events."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    CALL_FAILED = "call_failed"
    PLAYBACK_FINISHED = "playback_finished"
    RECOGNITION_SUCCEEDED = "recognition_succeeded"
    RECOGNITION_FAILED = "recognition_failed"
    UNRECOGNIZED = "unrecognized"


EVENT_KINDS: dict[str, CallEventKind] = {
    "CallConnected": CallEventKind.CONNECTED,
    "CallDisconnected": CallEventKind.DISCONNECTED,
    "CreateCallFailed": CallEventKind.CALL_FAILED,
    "ConnectFailed": CallEventKind.CALL_FAILED,
    "PlayCompleted": CallEventKind.PLAYBACK_FINISHED,
    "PlayFailed": CallEventKind.PLAYBACK_FINISHED,
    "PlayCanceled": CallEventKind.PLAYBACK_FINISHED,
    "RecognizeCompleted": CallEventKind.RECOGNITION_SUCCEEDED,
    "RecognizeFailed": CallEventKind.RECOGNITION_FAILED,
}


class EventEnvelope(BaseModel):
    """Raw provider event envelope."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    time: datetime | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class CallEvent(BaseModel):
    """Normalized inbound call event."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(..., description="Provider-unique event identifier")
    event_type: str = Field(..., description="Event type without provider namespace")
    kind: CallEventKind
    call_connection_id: str | None = None
    tones: str = Field(default="", description="Collected DTMF tones as characters")
    result_code: int | None = None
    result_sub_code: int | None = None
    result_message: str | None = None
    occurred_at: datetime | None = None

    @property
    def is_no_answer(self) -> bool:
        return self.kind == CallEventKind.CALL_FAILED and self.result_code in NO_ANSWER_RESULT_CODES

    @property
    def failure_reason(self) -> str:
        if self.result_message:
            return self.result_message
        if self.result_code is not None:
            return f"{self.event_type} (code {self.result_code}/{self.result_sub_code})"
        return self.event_type


def classify(event_type: str) -> tuple[str, CallEventKind]:
    """Strip the provider namespace and map a type tag to its category."""
    short = event_type.removeprefix(TYPE_NAMESPACE)
    return short, EVENT_KINDS.get(short, CallEventKind.UNRECOGNIZED)


def normalize_tone(tone: Any) -> str:
    text = str(tone).strip()
    return DTMF_TONE_NAMES.get(text.lower(), text)


def _extract_tones(data: dict[str, Any]) -> str:
    result = data.get("dtmfResult") or data.get("collectTonesResult") or {}
    tones = result.get("tones") if isinstance(result, dict) else None
    if not tones:
        return ""
    if isinstance(tones, str):
        return "".join(normalize_tone(t) for t in tones.split(",") if t.strip())
    return "".join(normalize_tone(t) for t in tones)


def _int_or_none(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def to_call_event(envelope: EventEnvelope) -> CallEvent:
    """Normalize a validated envelope."""
    event_type, kind = classify(envelope.type)
    data = envelope.data
    result_info = data.get("resultInformation") or {}
    if not isinstance(result_info, dict):
        result_info = {}

    connection_id = str(data.get("callConnectionId") or "").strip()
    return CallEvent(
        event_id=envelope.id,
        event_type=event_type,
        kind=kind,
        call_connection_id=connection_id or None,
        tones=_extract_tones(data) if kind == CallEventKind.RECOGNITION_SUCCEEDED else "",
        result_code=_int_or_none(result_info.get("code")),
        result_sub_code=_int_or_none(result_info.get("subCode")),
        result_message=result_info.get("message"),
        occurred_at=envelope.time,
    )


def parse_event_envelope(body: bytes) -> CallEvent:
    """Parse a raw request body into a ``CallEvent``.

    Raises:
        InvalidRequestError: Empty body, invalid JSON, or a payload that is
            not an event envelope.
    """
    if not body or not body.strip():
        raise InvalidRequestError("Request body is empty")

    try:
        payload = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidRequestError("Request body is not valid JSON") from e

    # Event Grid style deliveries wrap events in an array.
    if isinstance(payload, list) and len(payload) == 1:
        payload = payload[0]
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a single event object")

    try:
        envelope = EventEnvelope.model_validate(payload)
    except ValidationError as e:
        raise InvalidRequestError("Event payload could not be parsed") from e

    return to_call_event(envelope)
