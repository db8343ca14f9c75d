"""
SQLAlchemy models for members.
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import DateTime, Enum as SQLEnum, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from outreach.shared.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemberStatus(str, Enum):
    """Member eligibility status."""

    ACTIVE = "active"
    PENDING = "pending"
    INACTIVE = "inactive"


class Member(Base):
    """Program enrollee reachable for outreach calls."""

    __tablename__ = "members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
    )
    program: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[MemberStatus] = mapped_column(
        SQLEnum(
            MemberStatus,
            name="member_status",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=MemberStatus.PENDING,
        index=True,
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

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_eligible(self) -> bool:
        return self.status == MemberStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<Member(id={self.id}, phone={self.phone_number}, status={self.status})>"
