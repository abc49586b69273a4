"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from atlas.models.base import Base
from atlas.models.enums import (
    CycleRole,
    QueueEntryOrigin,
    QueueEntryStatus,
    TransactionType,
    UserStatus,
)
from atlas.models.history import BonusHistory, CycleHistory
from atlas.models.internal_transfer import InternalTransfer
from atlas.models.level import Level
from atlas.models.queue_entry import QueueEntry
from atlas.models.system_funds import JupiterPool, SystemFunds
from atlas.models.transaction import Transaction
from atlas.models.user import User

__all__ = [
    "Base",
    "BonusHistory",
    "CycleHistory",
    "CycleRole",
    "InternalTransfer",
    "JupiterPool",
    "Level",
    "QueueEntry",
    "QueueEntryOrigin",
    "QueueEntryStatus",
    "SystemFunds",
    "Transaction",
    "TransactionType",
    "User",
    "UserStatus",
]
