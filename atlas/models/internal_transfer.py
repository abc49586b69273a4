"""
InternalTransfer model.

PIN-gated balance transfer between two users.
"""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from atlas.models.base import Base
from atlas.models.types import MoneyType


class InternalTransfer(Base):
    """InternalTransfer entity (append-only)."""

    __tablename__ = "internal_transfers"
    __table_args__ = (
        CheckConstraint("amount > 0", name="check_transfer_amount_positive"),
        CheckConstraint("from_user_id != to_user_id", name="check_transfer_not_self"),
        Index("idx_internal_transfers_sender_day", "from_user_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    to_user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<InternalTransfer(id={self.id}, from={self.from_user_id}, "
            f"to={self.to_user_id}, amount={self.amount})>"
        )
