"""
System funds repository.

Data access for the SystemFunds and JupiterPool singletons.
"""

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.config.constants import JUPITER_POOL_ID, SYSTEM_FUNDS_ID
from atlas.models.system_funds import JupiterPool, SystemFunds
from atlas.repositories.base import BaseRepository


class SystemFundsRepository(BaseRepository[SystemFunds]):
    """Repository for the SystemFunds and JupiterPool rows."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize system funds repository."""
        super().__init__(SystemFunds, session)

    async def get_funds(self, for_update: bool = False) -> SystemFunds:
        """
        Get the SystemFunds singleton.

        Args:
            for_update: Lock the row for the rest of the transaction

        Returns:
            SystemFunds row

        Raises:
            RuntimeError: If the row was never seeded
        """
        funds = await self.get_by_id(SYSTEM_FUNDS_ID, for_update=for_update)
        if funds is None:
            raise RuntimeError(
                "SystemFunds row is missing; run scripts/init_database.py"
            )
        return funds

    async def get_pool(self, for_update: bool = False) -> JupiterPool:
        """
        Get the JupiterPool singleton.

        Args:
            for_update: Lock the row for the rest of the transaction

        Returns:
            JupiterPool row
        """
        stmt = select(JupiterPool).where(JupiterPool.id == JUPITER_POOL_ID)
        if for_update:
            stmt = await self._locked(stmt)
        result = await self.session.execute(stmt)
        pool = result.scalar_one_or_none()
        if pool is None:
            raise RuntimeError(
                "JupiterPool row is missing; run scripts/init_database.py"
            )
        return pool

    async def seed(self) -> bool:
        """
        Create the singleton rows if missing.

        Returns:
            True if anything was created
        """
        created = False
        if await self.session.get(SystemFunds, SYSTEM_FUNDS_ID) is None:
            self.session.add(SystemFunds(id=SYSTEM_FUNDS_ID))
            created = True
        if await self.session.get(JupiterPool, JUPITER_POOL_ID) is None:
            self.session.add(
                JupiterPool(
                    id=JUPITER_POOL_ID,
                    balance=Decimal("0"),
                    total_deposits=Decimal("0"),
                    total_withdrawals=Decimal("0"),
                )
            )
            created = True
        if created:
            await self.session.flush()
        return created
