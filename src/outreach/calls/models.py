"""
SQLAlchemy models for call sessions and recorded responses.
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from outreach.members.models import Member
from outreach.shared.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CallStatus(str, Enum):
    """Call session status."""

    INITIATED = "initiated"
    RINGING = "ringing"
    CONNECTED = "connected"
    COMPLETED = "completed"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    NO_ANSWER = "no_answer"
    VOICEMAIL_MESSAGE = "voicemail_message"


ACTIVE_STATUSES: frozenset[CallStatus] = frozenset(
    {CallStatus.INITIATED, CallStatus.RINGING, CallStatus.CONNECTED}
)

TERMINAL_STATUSES: frozenset[CallStatus] = frozenset(
    {
        CallStatus.COMPLETED,
        CallStatus.DISCONNECTED,
        CallStatus.FAILED,
        CallStatus.NO_ANSWER,
        CallStatus.VOICEMAIL_MESSAGE,
    }
)

# Initiated/Ringing -> Disconnected covers a hang-up reported before the
# connected event; without it the session would stay active forever.
VALID_STATUS_TRANSITIONS: dict[CallStatus, set[CallStatus]] = {
    CallStatus.INITIATED: {
        CallStatus.RINGING,
        CallStatus.CONNECTED,
        CallStatus.FAILED,
        CallStatus.NO_ANSWER,
        CallStatus.DISCONNECTED,
    },
    CallStatus.RINGING: {
        CallStatus.CONNECTED,
        CallStatus.NO_ANSWER,
        CallStatus.FAILED,
        CallStatus.DISCONNECTED,
    },
    CallStatus.CONNECTED: {
        CallStatus.COMPLETED,
        CallStatus.DISCONNECTED,
        CallStatus.VOICEMAIL_MESSAGE,
    },
    CallStatus.COMPLETED: set(),  # Terminal state
    CallStatus.DISCONNECTED: set(),  # Terminal state
    CallStatus.FAILED: set(),  # Terminal state
    CallStatus.NO_ANSWER: set(),  # Terminal state
    CallStatus.VOICEMAIL_MESSAGE: set(),  # Terminal state
}


def statuses_leading_to(new_status: CallStatus) -> frozenset[CallStatus]:
    """Statuses from which ``new_status`` may be entered."""
    return frozenset(
        status for status, targets in VALID_STATUS_TRANSITIONS.items() if new_status in targets
    )


_status_column = SQLEnum(
    CallStatus,
    name="call_status",
    native_enum=False,
    length=32,
    values_callable=lambda e: [m.value for m in e],
)


class CallSession(Base):
    """One outbound call attempt to a member."""

    __tablename__ = "call_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("members.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    call_connection_id: Mapped[str | None] = mapped_column(
        String(200),
        nullable=True,
        unique=True,
    )
    status: Mapped[CallStatus] = mapped_column(
        _status_column,
        nullable=False,
        default=CallStatus.INITIATED,
        index=True,
    )
    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        index=True,
    )
    end_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    # Relationships
    member: Mapped[Member] = relationship(Member)
    responses: Mapped[list["CallResponse"]] = relationship(
        "CallResponse",
        back_populates="call_session",
        order_by="CallResponse.question_number",
        cascade="all, delete-orphan",
    )

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_seconds(self) -> float | None:
        """Elapsed seconds between start and end, None while the call is open."""
        if self.end_time is None:
            return None
        return (_as_utc(self.end_time) - _as_utc(self.start_time)).total_seconds()

    def can_transition_to(self, new_status: CallStatus) -> bool:
        """Check if transition to new status is valid.

        Args:
            new_status: Target status to transition to.

        Returns:
            True if transition is valid, False otherwise.
        """
        return new_status in VALID_STATUS_TRANSITIONS.get(self.status, set())

    def __repr__(self) -> str:
        return (
            f"<CallSession(id={self.id}, member_id={self.member_id}, "
            f"connection={self.call_connection_id}, status={self.status})>"
        )


class CallResponse(Base):
    """Answer to one question within one call session."""

    __tablename__ = "call_responses"
    __table_args__ = (
        UniqueConstraint(
            "call_session_id",
            "question_number",
            name="uq_call_responses_session_question",
        ),
        CheckConstraint("question_number >= 1", name="ck_call_responses_question_number"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    call_session_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("call_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_number: Mapped[int] = mapped_column(Integer, nullable=False)
    question_text: Mapped[str] = mapped_column(String(500), nullable=False)
    affirmative: Mapped[bool] = mapped_column(Boolean, nullable=False)
    answered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    call_session: Mapped["CallSession"] = relationship(
        "CallSession",
        back_populates="responses",
    )

    @property
    def response_text(self) -> str:
        return "Yes" if self.affirmative else "No"

    def __repr__(self) -> str:
        return (
            f"<CallResponse(session={self.call_session_id}, "
            f"question={self.question_number}, answer={self.response_text})>"
        )
