"""
Repositories.

Data access layer.
"""

from atlas.repositories.base import BaseRepository
from atlas.repositories.funds_repository import SystemFundsRepository
from atlas.repositories.level_repository import LevelRepository
from atlas.repositories.queue_entry_repository import QueueEntryRepository
from atlas.repositories.transaction_repository import (
    CycleHistoryRepository,
    InternalTransferRepository,
    TransactionRepository,
)
from atlas.repositories.user_repository import UserRepository

__all__ = [
    "BaseRepository",
    "CycleHistoryRepository",
    "InternalTransferRepository",
    "LevelRepository",
    "QueueEntryRepository",
    "SystemFundsRepository",
    "TransactionRepository",
    "UserRepository",
]
