"""
Repository for member database operations.
"""

from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from outreach.members.models import Member, MemberStatus


class MemberRepository:
    """Repository for member database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def get_by_id(self, member_id: int) -> Member | None:
        """Get member by ID.

        Args:
            member_id: Member primary key.

        Returns:
            Member if found, None otherwise.
        """
        return await self._session.get(Member, member_id)

    async def get_by_phone_number(self, phone_number: str) -> Member | None:
        stmt = select(Member).where(Member.phone_number == phone_number)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_active(self) -> Sequence[Member]:
        """List members eligible for outreach, ordered by ID."""
        stmt = (
            select(Member)
            .where(Member.status == MemberStatus.ACTIVE)
            .order_by(Member.id)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def create(
        self,
        first_name: str,
        last_name: str,
        phone_number: str,
        program: str,
        status: MemberStatus = MemberStatus.PENDING,
    ) -> Member:
        """Create a new member record.

        Raises:
            sqlalchemy.exc.IntegrityError: If the phone number is already enrolled.
        """
        member = Member(
            first_name=first_name,
            last_name=last_name,
            phone_number=phone_number,
            program=program,
            status=status,
        )
        self._session.add(member)
        await self._session.flush()
        await self._session.refresh(member)
        return member
