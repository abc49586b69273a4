"""
Transaction model.

Append-only ledger of every balance movement.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from atlas.models.base import Base
from atlas.models.types import MoneyType

if TYPE_CHECKING:
    from atlas.models.user import User


class Transaction(Base):
    """
    Transaction entity.

    ``user_id`` is NULL for system movements such as Jupiter Pool deposits.
    Rows are never updated after insert.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        Index("idx_transactions_user_type", "user_id", "type"),
        Index("idx_transactions_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    level_number: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reference_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, index=True, comment="Cycle id or transfer id"
    )
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    user: Mapped["User | None"] = relationship("User", back_populates="transactions")

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<Transaction(id={self.id}, type={self.type}, "
            f"user_id={self.user_id}, amount={self.amount})>"
        )
