"""
Queue service.

Admission of new queue entries and read-only queue statistics.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from atlas.config.levels import CYCLE_SIZE, get_level_config
from atlas.models.enums import QueueEntryOrigin, QueueEntryStatus
from atlas.models.level import Level
from atlas.models.queue_entry import QueueEntry
from atlas.repositories.level_repository import LevelRepository
from atlas.repositories.queue_entry_repository import QueueEntryRepository
from atlas.repositories.transaction_repository import CycleHistoryRepository
from atlas.services.base_service import BaseService
from atlas.services.matrix.score_engine import ScoreEngine
from atlas.utils.datetime_utils import ensure_aware, start_of_day, utc_now
from atlas.utils.formatters import format_wait

STATS_WINDOW_DAYS = 30


@dataclass
class QueuePosition:
    """Where a user's entry stands in a level queue."""

    entry_id: int
    level_number: int
    position: int
    total_in_queue: int
    percentile: int
    score: Decimal
    entered_at: datetime
    reentries: int
    quota_number: int
    estimated_wait: str


@dataclass
class LevelStats:
    """Aggregate figures for a level."""

    level_number: int
    entry_value: Decimal
    reward_value: Decimal
    cash_balance: Decimal
    total_cycles: int
    total_users: int
    cycles_today: int
    avg_cycles_per_day: float
    avg_wait_minutes: int
    total_in_queue: int
    oldest_entered_at: datetime | None
    is_halted: bool


@dataclass
class QueueListItem:
    """One row of a paged queue listing."""

    rank: int
    entry_id: int
    user_id: int
    quota_number: int
    score: Decimal
    reentries: int
    entered_at: datetime
    is_current_user: bool


@dataclass
class QueuePage:
    items: list[QueueListItem]
    page: int
    per_page: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.per_page - 1) // self.per_page if self.per_page else 0


def estimate_wait_days(position: int, avg_cycles_per_day: float) -> float | None:
    """
    Days until a queue position is reached.

    Each cycle consumes seven entries from the front of the queue.

    Args:
        position: 1-based queue position
        avg_cycles_per_day: Recent cycle throughput of the level

    Returns:
        Estimated days, or None without throughput data
    """
    if avg_cycles_per_day <= 0:
        return None
    cycles_needed = -(-position // CYCLE_SIZE)
    return cycles_needed / avg_cycles_per_day


def estimate_wait(position: int, avg_cycles_per_day: float) -> str:
    """Human-readable wait estimate for a queue position."""
    return format_wait(estimate_wait_days(position, avg_cycles_per_day))


class QueueService(BaseService):
    """Queue admission and statistics."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Initialize queue service.

        Args:
            session: Database session
            clock: Source of the current time
        """
        super().__init__(session)
        self.clock = clock
        self.queue_repo = QueueEntryRepository(session)
        self.level_repo = LevelRepository(session)
        self.history_repo = CycleHistoryRepository(session)
        self.score_engine = ScoreEngine(session, clock)

    async def add_to_queue(
        self,
        user_id: int,
        level_number: int,
        origin: QueueEntryOrigin = QueueEntryOrigin.PURCHASE,
        reentries: int = 0,
        level: Level | None = None,
    ) -> QueueEntry:
        """
        Insert a new entry with a freshly computed score.

        No money moves here; purchase and advance handling book cash
        themselves.

        Args:
            user_id: Owner
            level_number: Target level
            origin: PURCHASE or ADVANCE
            reentries: Initial reentry count carried by the entry
            level: Already locked level row (locked here when omitted)

        Returns:
            Created queue entry

        Raises:
            InvalidLevel: If level_number is outside 1..10
        """
        get_level_config(level_number)
        if level is None:
            level = await self.level_repo.get_by_number(level_number, for_update=True)
            if level is None:
                raise RuntimeError(f"Level {level_number} is not seeded")

        now = self.clock()
        entry = QueueEntry(
            user_id=user_id,
            level_number=level_number,
            quota_number=await self.queue_repo.next_quota_number(user_id, level_number),
            entered_at=now,
            reentries=reentries,
            status=QueueEntryStatus.WAITING,
            origin=origin,
            cycles_completed=0,
            total_earned=Decimal("0"),
        )
        entry.score = await self.score_engine.score_for_user(entry, user_id, now)
        self.session.add(entry)
        level.total_users += 1
        await self.session.flush()

        self.logger.debug(
            "Queue entry admitted",
            extra={
                "user_id": user_id,
                "level": level_number,
                "quota_number": entry.quota_number,
                "origin": str(origin),
                "score": str(entry.score),
            },
        )
        return entry

    async def get_user_position(
        self, user_id: int, level_number: int
    ) -> QueuePosition | None:
        """
        Position of a user's best-ranked waiting entry at a level.

        Args:
            user_id: User ID
            level_number: Level number

        Returns:
            QueuePosition or None if the user has no waiting entry
        """
        get_level_config(level_number)
        entries = await self.queue_repo.get_user_waiting(user_id, level_number)
        if not entries:
            return None
        positions = [await self._position_of(entry) for entry in entries]
        return min(positions, key=lambda p: p.position)

    async def get_all_user_positions(
        self, user_id: int, level_number: int
    ) -> list[QueuePosition]:
        """Positions of every waiting entry a user holds at a level."""
        get_level_config(level_number)
        entries = await self.queue_repo.get_user_waiting(user_id, level_number)
        return [await self._position_of(entry) for entry in entries]

    async def _position_of(self, entry: QueueEntry) -> QueuePosition:
        ahead = await self.queue_repo.count_ahead(entry)
        total = await self.queue_repo.count_waiting(entry.level_number)
        position = ahead + 1
        avg = await self._avg_cycles_per_day(entry.level_number)
        return QueuePosition(
            entry_id=entry.id,
            level_number=entry.level_number,
            position=position,
            total_in_queue=total,
            percentile=round(position / total * 100) if total else 0,
            score=entry.score,
            entered_at=entry.entered_at,
            reentries=entry.reentries,
            quota_number=entry.quota_number,
            estimated_wait=estimate_wait(position, avg),
        )

    async def _avg_cycles_per_day(self, level_number: int) -> float:
        since = self.clock() - timedelta(days=STATS_WINDOW_DAYS)
        recent = await self.history_repo.count_cycles(level_number, since=since)
        return recent / STATS_WINDOW_DAYS

    async def get_level_stats(self, level_number: int) -> LevelStats:
        """
        Aggregate statistics of a level.

        Args:
            level_number: Level number

        Returns:
            LevelStats
        """
        get_level_config(level_number)
        level = await self.level_repo.get_by_number(level_number)
        if level is None:
            raise RuntimeError(f"Level {level_number} is not seeded")

        now = self.clock()
        avg = await self._avg_cycles_per_day(level_number)
        oldest = await self.queue_repo.get_oldest_waiting(level_number)
        return LevelStats(
            level_number=level_number,
            entry_value=level.entry_value,
            reward_value=level.reward_value,
            cash_balance=level.cash_balance,
            total_cycles=level.total_cycles,
            total_users=level.total_users,
            cycles_today=await self.history_repo.count_cycles(
                level_number, since=start_of_day(now)
            ),
            avg_cycles_per_day=avg,
            avg_wait_minutes=round(CYCLE_SIZE / avg * 24 * 60) if avg > 0 else 0,
            total_in_queue=await self.queue_repo.count_waiting(level_number),
            oldest_entered_at=ensure_aware(oldest.entered_at) if oldest else None,
            is_halted=level.is_halted,
        )

    async def get_all_levels_stats(self) -> list[LevelStats]:
        """Statistics for every seeded level."""
        levels = await self.level_repo.get_all_ordered()
        return [await self.get_level_stats(level.level_number) for level in levels]

    async def get_queue_list(
        self,
        level_number: int,
        page: int = 1,
        per_page: int = 10,
        current_user_id: int | None = None,
    ) -> QueuePage:
        """
        Paged queue listing in ranking order.

        Scores are not recomputed here; they are as fresh as the last
        scheduled update.

        Args:
            level_number: Level number
            page: Page number (1-indexed)
            per_page: Items per page
            current_user_id: Marks rows owned by this user

        Returns:
            QueuePage
        """
        get_level_config(level_number)
        page = max(page, 1)
        entries, total = await self.queue_repo.get_ranked_page(level_number, page, per_page)
        offset = (page - 1) * per_page
        items = [
            QueueListItem(
                rank=offset + i + 1,
                entry_id=entry.id,
                user_id=entry.user_id,
                quota_number=entry.quota_number,
                score=entry.score,
                reentries=entry.reentries,
                entered_at=entry.entered_at,
                is_current_user=entry.user_id == current_user_id,
            )
            for i, entry in enumerate(entries)
        ]
        return QueuePage(items=items, page=page, per_page=per_page, total=total)
