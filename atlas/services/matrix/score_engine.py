"""
Score engine.

Ranks queue entries for cycle selection. The score combines:
- time waiting since the entry (re)joined the queue, uncapped, so an old
  entry always ends up at the front;
- reentry points, capped so that repeated cycling cannot inflate
  priority without bound;
- referral points of the owner, progressive and capped.

Ties are broken by entered_at, then by entry id, giving a total order.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from atlas.config.constants import (
    REFERRAL_SCORE_CAP,
    REFERRAL_SCORE_TIERS,
    SCORE_PRECISION,
    SCORE_REENTRY_CAP,
    SCORE_REENTRY_WEIGHT,
    SCORE_TIME_WEIGHT,
)
from atlas.models.queue_entry import QueueEntry
from atlas.repositories.queue_entry_repository import QueueEntryRepository
from atlas.repositories.user_repository import UserRepository
from atlas.services.base_service import BaseService
from atlas.utils.datetime_utils import ensure_aware, utc_now

SECONDS_PER_HOUR = Decimal("3600")


class ScoreSnapshot(Protocol):
    """Fields of a queue entry that the score depends on."""

    entered_at: datetime
    reentries: int


@dataclass(frozen=True)
class EntrySnapshot:
    """Detached score input, e.g. for API previews and tests."""

    entered_at: datetime
    reentries: int = 0
    id: int = 0


def referral_points(active_referrals: int) -> Decimal:
    """
    Progressive referral points.

    Referrals 1-10 earn 10 points each, 11-30 earn 5, 31-50 earn 2,
    51-100 earn 1; the total never exceeds 290.

    Args:
        active_referrals: Active direct referrals of the entry owner

    Returns:
        Referral points
    """
    points = Decimal("0")
    lower = 0
    for upper, weight in REFERRAL_SCORE_TIERS:
        if active_referrals <= lower:
            break
        points += (min(active_referrals, upper) - lower) * weight
        lower = upper
    return min(points, REFERRAL_SCORE_CAP)


def reentry_points(reentries: int) -> Decimal:
    """Reentry points with ceiling."""
    return min(Decimal(max(reentries, 0)) * SCORE_REENTRY_WEIGHT, SCORE_REENTRY_CAP)


def hours_waiting(entered_at: datetime, now: datetime) -> Decimal:
    """Whole and fractional hours since entered_at; never negative."""
    delta = ensure_aware(now) - ensure_aware(entered_at)
    seconds = Decimal(str(delta.total_seconds()))
    return max(seconds / SECONDS_PER_HOUR, Decimal("0"))


def calculate_score(
    entry: ScoreSnapshot,
    now: datetime | None = None,
    active_referrals: int = 0,
) -> Decimal:
    """
    Compute the ranking score of a queue entry.

    Args:
        entry: Queue entry or snapshot with entered_at and reentries
        now: Evaluation moment (defaults to current UTC time)
        active_referrals: Active direct referrals of the owner

    Returns:
        Score quantized to 4 places; higher is selected first
    """
    now = now or utc_now()
    score = (
        hours_waiting(entry.entered_at, now) * SCORE_TIME_WEIGHT
        + reentry_points(entry.reentries)
        + referral_points(active_referrals)
    )
    return score.quantize(SCORE_PRECISION, rounding=ROUND_HALF_UP)


def ranking_key(entry: QueueEntry) -> tuple[Decimal, datetime, int]:
    """
    Sort key matching the database ranking order.

    Usage:
        sorted(entries, key=ranking_key)
    """
    return (-entry.score, ensure_aware(entry.entered_at), entry.id)


class ScoreEngine(BaseService):
    """Persists entry scores."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Initialize score engine.

        Args:
            session: Database session
            clock: Source of the current time
        """
        super().__init__(session)
        self.clock = clock
        self.queue_repo = QueueEntryRepository(session)
        self.user_repo = UserRepository(session)

    async def score_for_user(
        self, entry: ScoreSnapshot, user_id: int, now: datetime | None = None
    ) -> Decimal:
        """Score of one entry, loading the owner's referral count."""
        active = await self.user_repo.count_active_referrals(user_id)
        return calculate_score(entry, now or self.clock(), active)

    async def refresh(
        self, entries: Iterable[QueueEntry], now: datetime | None = None
    ) -> int:
        """
        Recompute and assign scores of the given entries.

        Args:
            entries: Loaded queue entries
            now: Evaluation moment

        Returns:
            Number of entries whose score changed
        """
        entries = list(entries)
        if not entries:
            return 0
        now = now or self.clock()
        referrals = await self.user_repo.count_active_referrals_bulk(
            entry.user_id for entry in entries
        )
        changed = 0
        for entry in entries:
            score = calculate_score(entry, now, referrals.get(entry.user_id, 0))
            if score != entry.score:
                entry.score = score
                changed += 1
        await self.session.flush()
        return changed

    async def update_all_queue_scores(self, now: datetime | None = None) -> int:
        """
        Recompute and persist the score of every waiting entry.

        Rows locked by an in-flight cycle are skipped and picked up by the
        next run. The caller commits.

        Args:
            now: Evaluation moment (defaults to the engine clock)

        Returns:
            Number of entries recomputed
        """
        now = now or self.clock()
        entries = await self.queue_repo.get_waiting(skip_locked=True)
        changed = await self.refresh(entries, now)
        self.logger.info(
            "Queue scores updated",
            extra={"entries": len(entries), "changed": changed},
        )
        return len(entries)
