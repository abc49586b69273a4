"""
Model enumerations.

Stored as plain strings in String(32) columns.
"""

from enum import StrEnum


class UserStatus(StrEnum):
    """User account status."""

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class QueueEntryStatus(StrEnum):
    """Queue entry lifecycle."""

    WAITING = "WAITING"
    COMPLETED = "COMPLETED"


class QueueEntryOrigin(StrEnum):
    """How the entry was admitted to its level."""

    PURCHASE = "PURCHASE"
    ADVANCE = "ADVANCE"


class CycleRole(StrEnum):
    """Role assigned to a position in a cycle."""

    RECEIVER = "RECEIVER"
    REENTRY = "REENTRY"
    ADVANCE = "ADVANCE"
    BONUS_SOURCE = "BONUS_SOURCE"


class TransactionType(StrEnum):
    """Ledger transaction types."""

    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    QUOTA_PURCHASE = "QUOTA_PURCHASE"
    CYCLE_REWARD = "CYCLE_REWARD"
    REFERRAL_BONUS = "REFERRAL_BONUS"
    INTERNAL_TRANSFER_IN = "INTERNAL_TRANSFER_IN"
    INTERNAL_TRANSFER_OUT = "INTERNAL_TRANSFER_OUT"
    JUPITER_POOL_DEPOSIT = "JUPITER_POOL_DEPOSIT"
    JUPITER_POOL_WITHDRAWAL = "JUPITER_POOL_WITHDRAWAL"
    SURPLUS_ALLOCATION = "SURPLUS_ALLOCATION"
