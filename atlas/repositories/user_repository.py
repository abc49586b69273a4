"""
User repository.

Data access layer for User model.
"""

from collections.abc import Iterable
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.models.enums import UserStatus
from atlas.models.user import User
from atlas.repositories.base import BaseRepository


class UserRepository(BaseRepository[User]):
    """User repository with specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize user repository."""
        super().__init__(User, session)

    async def get_by_email(self, email: str) -> User | None:
        """
        Get user by email (case-insensitive).

        Args:
            email: Email address

        Returns:
            User or None
        """
        if not email:
            return None
        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_referral_code(self, referral_code: str) -> User | None:
        """Get user by referral code."""
        return await self.get_by(referral_code=referral_code)

    async def lock_many(self, user_ids: Iterable[int]) -> dict[int, User]:
        """
        Lock several users with SELECT FOR UPDATE.

        Rows are locked in ascending id order so that concurrent callers
        locking overlapping sets cannot deadlock.

        Args:
            user_ids: User IDs to lock

        Returns:
            Mapping of user id to locked User (missing ids are absent)
        """
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        stmt = await self._locked(
            select(User).where(User.id.in_(ids)).order_by(User.id)
        )
        result = await self.session.execute(stmt)
        return {user.id: user for user in result.scalars().all()}

    async def count_active_referrals(self, user_id: int) -> int:
        """
        Count direct referrals with ACTIVE status.

        Args:
            user_id: Referrer ID

        Returns:
            Number of active direct referrals
        """
        stmt = select(func.count(User.id)).where(
            User.referrer_id == user_id,
            User.status == UserStatus.ACTIVE,
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def count_active_referrals_bulk(
        self, user_ids: Iterable[int]
    ) -> dict[int, int]:
        """
        Count active direct referrals for many users in one query.

        Args:
            user_ids: Referrer IDs

        Returns:
            Mapping of referrer id to count (zero counts omitted)
        """
        ids = list(set(user_ids))
        if not ids:
            return {}
        stmt = (
            select(User.referrer_id, func.count(User.id))
            .where(User.referrer_id.in_(ids), User.status == UserStatus.ACTIVE)
            .group_by(User.referrer_id)
        )
        result = await self.session.execute(stmt)
        return {referrer_id: count for referrer_id, count in result.all()}

    async def get_referrer_id(self, user_id: int) -> int | None:
        """Get referrer ID of a user without loading the row."""
        stmt = select(User.referrer_id).where(User.id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def sum_balances(self) -> Decimal:
        """Sum of all user balances."""
        stmt = select(func.coalesce(func.sum(User.balance), 0))
        result = await self.session.execute(stmt)
        return Decimal(str(result.scalar() or 0))
