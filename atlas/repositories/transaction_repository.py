"""
Transaction repository.

Append-only writes and reads for ledger transactions, cycle history,
bonus history and internal transfers.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.models.enums import CycleRole, TransactionType
from atlas.models.history import BonusHistory, CycleHistory
from atlas.models.internal_transfer import InternalTransfer
from atlas.models.transaction import Transaction
from atlas.repositories.base import BaseRepository
from atlas.utils.datetime_utils import utc_now


class TransactionRepository(BaseRepository[Transaction]):
    """Transaction repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize transaction repository."""
        super().__init__(Transaction, session)

    def record(
        self,
        type: TransactionType,
        amount: Decimal,
        user_id: int | None = None,
        level_number: int | None = None,
        reference_id: str | None = None,
        description: str | None = None,
    ) -> Transaction:
        """
        Stage a ledger transaction in the current unit of work.

        The row is flushed together with the balance mutations it
        describes.

        Returns:
            Pending Transaction
        """
        tx = Transaction(
            type=type,
            amount=amount,
            user_id=user_id,
            level_number=level_number,
            reference_id=reference_id,
            description=description,
        )
        self.session.add(tx)
        return tx

    async def find_by_reference(self, reference_id: str) -> list[Transaction]:
        """Transactions written for a cycle or transfer."""
        stmt = (
            select(Transaction)
            .where(Transaction.reference_id == reference_id)
            .order_by(Transaction.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_for_user(
        self, user_id: int, type: TransactionType | None = None, limit: int = 50
    ) -> list[Transaction]:
        """Latest transactions of a user."""
        stmt = select(Transaction).where(Transaction.user_id == user_id)
        if type is not None:
            stmt = stmt.where(Transaction.type == type)
        stmt = stmt.order_by(Transaction.id.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class CycleHistoryRepository(BaseRepository[CycleHistory]):
    """Cycle and bonus history repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize cycle history repository."""
        super().__init__(CycleHistory, session)

    def record_position(
        self,
        cycle_id: str,
        level_number: int,
        user_id: int,
        queue_entry_id: int,
        position: int,
        role: CycleRole,
        amount: Decimal = Decimal("0"),
        created_at: datetime | None = None,
    ) -> CycleHistory:
        """Stage one cycle position row."""
        row = CycleHistory(
            cycle_id=cycle_id,
            level_number=level_number,
            user_id=user_id,
            queue_entry_id=queue_entry_id,
            position=position,
            role=role,
            amount=amount,
            created_at=created_at or utc_now(),
        )
        self.session.add(row)
        return row

    def record_bonus(
        self,
        cycle_id: str,
        level_number: int,
        referrer_id: int,
        source_user_id: int,
        rate: Decimal,
        amount: Decimal,
        created_at: datetime | None = None,
    ) -> BonusHistory:
        """Stage one bonus history row."""
        row = BonusHistory(
            cycle_id=cycle_id,
            level_number=level_number,
            referrer_id=referrer_id,
            source_user_id=source_user_id,
            rate=rate,
            amount=amount,
            created_at=created_at or utc_now(),
        )
        self.session.add(row)
        return row

    async def get_cycle(self, cycle_id: str) -> list[CycleHistory]:
        """All position rows of a cycle ordered by position."""
        stmt = (
            select(CycleHistory)
            .where(CycleHistory.cycle_id == cycle_id)
            .order_by(CycleHistory.position)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_cycles(
        self, level_number: int, since: datetime | None = None
    ) -> int:
        """
        Count cycles completed at a level.

        Args:
            level_number: Level number
            since: Only cycles at or after this moment

        Returns:
            Number of RECEIVER rows (one per cycle)
        """
        stmt = select(func.count(CycleHistory.id)).where(
            CycleHistory.level_number == level_number,
            CycleHistory.role == CycleRole.RECEIVER,
        )
        if since is not None:
            stmt = stmt.where(CycleHistory.created_at >= since)
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def last_cycle_at(self, level_number: int) -> datetime | None:
        """Moment of the latest cycle at a level."""
        stmt = select(func.max(CycleHistory.created_at)).where(
            CycleHistory.level_number == level_number,
            CycleHistory.role == CycleRole.RECEIVER,
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


class InternalTransferRepository(BaseRepository[InternalTransfer]):
    """Internal transfer repository."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize internal transfer repository."""
        super().__init__(InternalTransfer, session)

    async def sent_since(self, user_id: int, since: datetime) -> tuple[int, Decimal]:
        """
        Count and total of transfers sent by a user since a moment.

        Args:
            user_id: Sender ID
            since: Window start

        Returns:
            Tuple of (count, total_amount)
        """
        stmt = select(
            func.count(InternalTransfer.id),
            func.coalesce(func.sum(InternalTransfer.amount), 0),
        ).where(
            InternalTransfer.from_user_id == user_id,
            InternalTransfer.created_at >= since,
        )
        result = await self.session.execute(stmt)
        count, total = result.one()
        return int(count or 0), Decimal(str(total or 0))
