"""
Level repository.

Data access layer for Level model.
"""

from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.config.levels import LEVELS
from atlas.models.level import Level
from atlas.repositories.base import BaseRepository


class LevelRepository(BaseRepository[Level]):
    """Level repository with specific queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize level repository."""
        super().__init__(Level, session)

    async def get_by_number(
        self, level_number: int, for_update: bool = False
    ) -> Level | None:
        """
        Get level by its number.

        Args:
            level_number: Level number (1-10)
            for_update: Lock the row for the rest of the transaction

        Returns:
            Level or None if not seeded
        """
        stmt = select(Level).where(Level.level_number == level_number)
        if for_update:
            stmt = await self._locked(stmt)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_all_ordered(self) -> list[Level]:
        """All levels ordered by number."""
        stmt = select(Level).order_by(Level.level_number)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def sum_cash(self) -> Decimal:
        """Sum of cash balances across all levels."""
        stmt = select(func.coalesce(func.sum(Level.cash_balance), 0))
        result = await self.session.execute(stmt)
        return Decimal(str(result.scalar() or 0))

    async def seed(self) -> int:
        """
        Create missing level rows from the level table.

        Existing rows are left untouched.

        Returns:
            Number of rows created
        """
        existing = {level.level_number for level in await self.get_all_ordered()}
        created = 0
        for number, config in LEVELS.items():
            if number in existing:
                continue
            self.session.add(
                Level(
                    level_number=number,
                    entry_value=config.entry_value,
                    reward_value=config.reward_value,
                    bonus_value=config.bonus_value,
                    cash_balance=Decimal("0"),
                )
            )
            created += 1
        if created:
            await self.session.flush()
        return created
