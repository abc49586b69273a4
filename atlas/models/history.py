"""
Cycle and bonus history models.

Append-only audit records written by the cycle processor.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from atlas.models.base import Base
from atlas.models.types import MoneyType, RateType


class CycleHistory(Base):
    """
    CycleHistory entity.

    Seven rows per cycle sharing ``cycle_id``, one per position.
    """

    __tablename__ = "cycle_history"
    __table_args__ = (
        Index("idx_cycle_history_level_role", "level_number", "role", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    cycle_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    level_number: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    queue_entry_id: Mapped[int] = mapped_column(
        ForeignKey("queue_entries.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<CycleHistory(cycle={self.cycle_id}, level={self.level_number}, "
            f"position={self.position}, role={self.role}, user_id={self.user_id})>"
        )


class BonusHistory(Base):
    """Referral bonus paid from a cycle's BONUS SOURCE position."""

    __tablename__ = "bonus_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    referrer_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    source_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    level_number: Mapped[int] = mapped_column(Integer, nullable=False)
    cycle_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    rate: Mapped[Decimal] = mapped_column(RateType, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<BonusHistory(referrer_id={self.referrer_id}, "
            f"level={self.level_number}, amount={self.amount})>"
        )
