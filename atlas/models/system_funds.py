"""
SystemFunds and JupiterPool models.

Process-wide ledger aggregates. Each table holds a single row (id=1).
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from atlas.models.base import Base
from atlas.models.types import MoneyType


class SystemFunds(Base):
    """
    SystemFunds singleton.

    Attributes:
        reserve: Reserve allocation
        operational: Operational allocation
        profit: Profit allocation
        total_in: Value that entered the matrix (quota purchases, pool funding)
        total_out: Value that left the matrix (rewards and bonuses paid to users)
        external_in: Value that entered the system (user deposits, pool funding)
        external_out: Value that left the system (user withdrawals)
    """

    __tablename__ = "system_funds"
    __table_args__ = (
        CheckConstraint("reserve >= 0", name="check_funds_reserve_non_negative"),
        CheckConstraint(
            "operational >= 0", name="check_funds_operational_non_negative"
        ),
        CheckConstraint("profit >= 0", name="check_funds_profit_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    reserve: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    operational: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )
    profit: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)

    total_in: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_out: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    external_in: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )
    external_out: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def allocated(self) -> Decimal:
        """Reserve + operational + profit."""
        return self.reserve + self.operational + self.profit

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<SystemFunds(in={self.total_in}, out={self.total_out}, "
            f"reserve={self.reserve}, operational={self.operational}, "
            f"profit={self.profit})>"
        )


class JupiterPool(Base):
    """Jupiter Pool singleton: liquidity that covers level shortfalls."""

    __tablename__ = "jupiter_pool"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="check_pool_balance_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    balance: Mapped[Decimal] = mapped_column(MoneyType, default=Decimal("0"), nullable=False)
    total_deposits: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )
    total_withdrawals: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return f"<JupiterPool(balance={self.balance})>"
