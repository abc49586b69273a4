"""
Level model.

One row per matrix level, seeded once from the level table.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from atlas.models.base import Base
from atlas.models.types import MoneyType


class Level(Base):
    """
    Level entity.

    Entry, reward and bonus values are copied from the level table at seed
    time and never mutated afterwards. Only counters, the cash balance and
    the halt flag change.

    Attributes:
        level_number: Level number (1-10)
        entry_value: Quota price
        reward_value: Payout of the RECEIVER position
        bonus_value: Maximum referral bonus of the BONUS SOURCE position
        cash_balance: Money held by the level
        total_cycles: Cycles completed
        total_users: Entries ever admitted
        is_halted: Cycle processing stopped after an integrity failure
        version: Optimistic lock counter
    """

    __tablename__ = "levels"
    __table_args__ = (
        CheckConstraint("cash_balance >= 0", name="check_level_cash_non_negative"),
        CheckConstraint(
            "level_number >= 1 AND level_number <= 10", name="check_level_number_range"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    level_number: Mapped[int] = mapped_column(
        Integer, unique=True, index=True, nullable=False
    )

    entry_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    reward_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    bonus_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    cash_balance: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )
    total_cycles: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_users: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_halted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    halted_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    halted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_cycle_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Level(number={self.level_number}, cash={self.cash_balance}, "
            f"cycles={self.total_cycles}, halted={self.is_halted})>"
        )
