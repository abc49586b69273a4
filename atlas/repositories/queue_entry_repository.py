"""
QueueEntry repository.

Data access layer for level queues. All ranked reads use the same total
order: score descending, then entered_at ascending, then id ascending.
"""

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.models.enums import QueueEntryStatus
from atlas.models.queue_entry import QueueEntry
from atlas.repositories.base import BaseRepository

RANKING_ORDER = (
    QueueEntry.score.desc(),
    QueueEntry.entered_at.asc(),
    QueueEntry.id.asc(),
)


class QueueEntryRepository(BaseRepository[QueueEntry]):
    """Queue entry repository with ranking queries."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize queue entry repository."""
        super().__init__(QueueEntry, session)

    async def count_waiting(self, level_number: int) -> int:
        """
        Count entries waiting in a level queue.

        Args:
            level_number: Level number

        Returns:
            Number of WAITING entries
        """
        stmt = select(func.count(QueueEntry.id)).where(
            QueueEntry.level_number == level_number,
            QueueEntry.status == QueueEntryStatus.WAITING,
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def count_user_waiting(self, user_id: int, level_number: int) -> int:
        """Count a user's WAITING quotas at a level."""
        stmt = select(func.count(QueueEntry.id)).where(
            QueueEntry.user_id == user_id,
            QueueEntry.level_number == level_number,
            QueueEntry.status == QueueEntryStatus.WAITING,
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def next_quota_number(self, user_id: int, level_number: int) -> int:
        """
        Next quota sequence number for a user at a level.

        Counts completed entries too so numbers are never reused.
        """
        stmt = select(func.coalesce(func.max(QueueEntry.quota_number), 0)).where(
            QueueEntry.user_id == user_id,
            QueueEntry.level_number == level_number,
        )
        result = await self.session.execute(stmt)
        return int(result.scalar() or 0) + 1

    async def select_top(
        self,
        level_number: int,
        limit: int,
        for_update: bool = False,
    ) -> list[QueueEntry]:
        """
        Highest ranked WAITING entries of a level.

        Args:
            level_number: Level number
            limit: Number of entries
            for_update: Lock selected rows until the transaction ends

        Returns:
            Entries in ranking order
        """
        stmt = (
            select(QueueEntry)
            .where(
                QueueEntry.level_number == level_number,
                QueueEntry.status == QueueEntryStatus.WAITING,
            )
            .order_by(*RANKING_ORDER)
            .limit(limit)
        )
        if for_update:
            stmt = await self._locked(stmt)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_waiting(
        self,
        level_number: int | None = None,
        skip_locked: bool = False,
        for_update: bool = False,
    ) -> list[QueueEntry]:
        """
        All WAITING entries, optionally for one level.

        Args:
            level_number: Restrict to a level (None for all levels)
            skip_locked: Lock rows and skip those held by another transaction
            for_update: Lock every row, waiting for other holders

        Returns:
            Entries ordered by id
        """
        stmt = select(QueueEntry).where(QueueEntry.status == QueueEntryStatus.WAITING)
        if level_number is not None:
            stmt = stmt.where(QueueEntry.level_number == level_number)
        stmt = stmt.order_by(QueueEntry.id)
        if skip_locked or for_update:
            stmt = await self._locked(stmt, skip_locked=skip_locked)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_user_waiting(
        self, user_id: int, level_number: int
    ) -> list[QueueEntry]:
        """A user's WAITING entries at a level, by quota number."""
        stmt = (
            select(QueueEntry)
            .where(
                QueueEntry.user_id == user_id,
                QueueEntry.level_number == level_number,
                QueueEntry.status == QueueEntryStatus.WAITING,
            )
            .order_by(QueueEntry.quota_number)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_ahead(self, entry: QueueEntry) -> int:
        """
        Count WAITING entries ranked before the given one.

        Args:
            entry: Queue entry

        Returns:
            Number of entries that would be selected first
        """
        stmt = select(func.count(QueueEntry.id)).where(
            QueueEntry.level_number == entry.level_number,
            QueueEntry.status == QueueEntryStatus.WAITING,
            or_(
                QueueEntry.score > entry.score,
                and_(
                    QueueEntry.score == entry.score,
                    QueueEntry.entered_at < entry.entered_at,
                ),
                and_(
                    QueueEntry.score == entry.score,
                    QueueEntry.entered_at == entry.entered_at,
                    QueueEntry.id < entry.id,
                ),
            ),
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def get_ranked_page(
        self, level_number: int, page: int = 1, per_page: int = 10
    ) -> tuple[list[QueueEntry], int]:
        """
        Page of a level queue in ranking order.

        Args:
            level_number: Level number
            page: Page number (1-indexed)
            per_page: Items per page

        Returns:
            Tuple of (entries, total_count)
        """
        total = await self.count_waiting(level_number)
        offset = (max(page, 1) - 1) * per_page
        stmt = (
            select(QueueEntry)
            .where(
                QueueEntry.level_number == level_number,
                QueueEntry.status == QueueEntryStatus.WAITING,
            )
            .order_by(*RANKING_ORDER)
            .offset(offset)
            .limit(per_page)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all()), total

    async def get_oldest_waiting(self, level_number: int) -> QueueEntry | None:
        """Entry with the earliest entered_at in a level queue."""
        stmt = (
            select(QueueEntry)
            .where(
                QueueEntry.level_number == level_number,
                QueueEntry.status == QueueEntryStatus.WAITING,
            )
            .order_by(QueueEntry.entered_at.asc(), QueueEntry.id.asc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
