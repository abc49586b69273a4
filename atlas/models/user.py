"""
User model.

Represents a matrix participant holding a spendable balance.
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import bcrypt
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from atlas.config.constants import PIN_BCRYPT_ROUNDS
from atlas.models.base import Base
from atlas.models.enums import UserStatus
from atlas.models.types import MoneyType

if TYPE_CHECKING:
    from atlas.models.queue_entry import QueueEntry
    from atlas.models.transaction import Transaction


class User(Base):
    """User model - matrix participants."""

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="check_user_balance_non_negative"),
        CheckConstraint(
            "total_earned >= 0", name="check_user_total_earned_non_negative"
        ),
        CheckConstraint(
            "total_bonus >= 0", name="check_user_total_bonus_non_negative"
        ),
        CheckConstraint(
            "referrer_id IS NULL OR referrer_id != id",
            name="check_user_not_self_referred",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    wallet_address: Mapped[str | None] = mapped_column(
        String(255), nullable=True, unique=True
    )
    referral_code: Mapped[str | None] = mapped_column(
        String(20), nullable=True, unique=True, index=True
    )

    # Balances
    balance: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )
    total_deposited: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0"),
        nullable=False,
        comment="Total spent on quota purchases",
    )
    total_earned: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )
    total_bonus: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )
    total_withdrawn: Mapped[Decimal] = mapped_column(
        MoneyType, default=Decimal("0"), nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(32), default=UserStatus.PENDING, nullable=False, index=True
    )
    is_kyc_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Referral (back-reference only)
    referrer_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Transfer PIN with progressive lockout
    pin_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    pin_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    pin_locked_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    referrer: Mapped[Optional["User"]] = relationship(
        "User",
        remote_side=[id],
        back_populates="referrals",
        foreign_keys=[referrer_id],
    )
    referrals: Mapped[list["User"]] = relationship(
        "User", back_populates="referrer", foreign_keys=[referrer_id]
    )
    queue_entries: Mapped[list["QueueEntry"]] = relationship(
        "QueueEntry", back_populates="user"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="user"
    )

    @property
    def is_active(self) -> bool:
        """Whether the user may purchase quotas and transfer funds."""
        return self.status == UserStatus.ACTIVE

    @property
    def has_pin(self) -> bool:
        return bool(self.pin_hash)

    def set_pin(self, pin: str) -> None:
        """
        Set transfer PIN with bcrypt hashing.

        Args:
            pin: Plain text PIN (format validated by the caller)
        """
        self.pin_hash = bcrypt.hashpw(
            pin.encode(), bcrypt.gensalt(rounds=PIN_BCRYPT_ROUNDS)
        ).decode()
        self.pin_attempts = 0
        self.pin_locked_until = None

    def verify_pin(self, pin: str) -> bool:
        """
        Verify transfer PIN against stored hash.

        Args:
            pin: Plain text PIN to verify

        Returns:
            True if PIN matches, False otherwise
        """
        if not self.pin_hash:
            return False
        return bcrypt.checkpw(pin.encode(), self.pin_hash.encode())

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<User(id={self.id}, email={self.email}, "
            f"status={self.status}, balance={self.balance})>"
        )
