"""
QueueEntry model.

One purchased quota waiting in a level queue.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from atlas.models.base import Base
from atlas.models.enums import QueueEntryOrigin, QueueEntryStatus
from atlas.models.types import MoneyType, ScoreType

if TYPE_CHECKING:
    from atlas.models.user import User


class QueueEntry(Base):
    """
    QueueEntry entity.

    Reentry positions keep their row (same id and quota number) and only
    bump ``reentries``. RECEIVER, BONUS SOURCE and ADVANCE positions are
    marked COMPLETED; an ADVANCE creates a fresh row at the next level.
    """

    __tablename__ = "queue_entries"
    __table_args__ = (
        CheckConstraint("reentries >= 0", name="check_queue_entry_reentries"),
        UniqueConstraint(
            "user_id", "level_number", "quota_number", name="uq_queue_entry_quota"
        ),
        Index(
            "idx_queue_entries_ranking",
            "level_number",
            "status",
            "score",
            "entered_at",
        ),
        Index("idx_queue_entries_user_level", "user_id", "level_number", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    level_number: Mapped[int] = mapped_column(
        ForeignKey("levels.level_number"), nullable=False
    )
    quota_number: Mapped[int] = mapped_column(Integer, nullable=False)

    entered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    reentries: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    score: Mapped[Decimal] = mapped_column(ScoreType, default=Decimal("0"), nullable=False)
    cycles_completed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_earned: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(32), default=QueueEntryStatus.WAITING, nullable=False
    )
    origin: Mapped[str] = mapped_column(
        String(32), default=QueueEntryOrigin.PURCHASE, nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    user: Mapped["User"] = relationship("User", back_populates="queue_entries")

    @property
    def is_waiting(self) -> bool:
        return self.status == QueueEntryStatus.WAITING

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<QueueEntry(id={self.id}, user_id={self.user_id}, "
            f"level={self.level_number}, quota={self.quota_number}, "
            f"score={self.score}, reentries={self.reentries})>"
        )
