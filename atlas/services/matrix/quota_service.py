"""
Quota service.

Governs quota purchase: entry-value debit, queue admission and the
per-level quota cap. Several quotas can be bought in one transaction.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from atlas.config.constants import MAX_QUOTAS_PER_PURCHASE
from atlas.config.levels import get_level_config
from atlas.config.settings import settings
from atlas.models.enums import QueueEntryOrigin, TransactionType
from atlas.models.queue_entry import QueueEntry
from atlas.models.user import User
from atlas.repositories.funds_repository import SystemFundsRepository
from atlas.repositories.level_repository import LevelRepository
from atlas.repositories.queue_entry_repository import QueueEntryRepository
from atlas.repositories.transaction_repository import TransactionRepository
from atlas.repositories.user_repository import UserRepository
from atlas.services.base_service import BaseService
from atlas.services.funds.ledger import FundsDelta
from atlas.services.matrix.queue_service import QueueService
from atlas.utils.datetime_utils import utc_now
from atlas.utils.exceptions import (
    BusinessRuleError,
    InsufficientBalance,
    InvalidQuantity,
    QuotaLimitExceeded,
    UserNotActive,
    UserNotFound,
)
from atlas.utils.formatters import quantize_money


@dataclass
class QuotaCheck:
    """Result of a purchase pre-check."""

    allowed: bool
    reason: str | None = None
    error_code: str | None = None


def validate_quantity(quantity: int) -> int:
    """Reject batch sizes outside 1..MAX_QUOTAS_PER_PURCHASE."""
    if not isinstance(quantity, int) or not 1 <= quantity <= MAX_QUOTAS_PER_PURCHASE:
        raise InvalidQuantity(quantity)
    return quantity


class QuotaService(BaseService):
    """Quota purchase and counting."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
        max_quotas_per_level: int | None = None,
    ) -> None:
        """
        Initialize quota service.

        Args:
            session: Database session
            clock: Source of the current time
            max_quotas_per_level: Override of the configured cap
        """
        super().__init__(session)
        self.max_quotas = max_quotas_per_level or settings.max_quotas_per_level
        self.user_repo = UserRepository(session)
        self.level_repo = LevelRepository(session)
        self.queue_repo = QueueEntryRepository(session)
        self.funds_repo = SystemFundsRepository(session)
        self.tx_repo = TransactionRepository(session)
        self.queue_service = QueueService(session, clock)

    async def count_user_quotas(self, user_id: int, level_number: int) -> int:
        """
        Count a user's waiting quotas at a level.

        Args:
            user_id: User ID
            level_number: Level number

        Returns:
            Number of WAITING entries
        """
        get_level_config(level_number)
        return await self.queue_repo.count_user_waiting(user_id, level_number)

    async def _check(
        self, user: User | None, user_id: int, level_number: int, quantity: int = 1
    ) -> None:
        """Raise the first purchase rule the user violates."""
        cost = get_level_config(level_number).entry_value * quantity
        if user is None:
            raise UserNotFound(user_id)
        if not user.is_active:
            raise UserNotActive(f"User {user_id} is {user.status}, must be ACTIVE")
        if user.balance < cost:
            raise InsufficientBalance(user.balance, cost)
        held = await self.queue_repo.count_user_waiting(user_id, level_number)
        if held + quantity > self.max_quotas:
            raise QuotaLimitExceeded(level_number, self.max_quotas)

    async def can_purchase_quota(
        self, user_id: int, level_number: int, quantity: int = 1
    ) -> QuotaCheck:
        """
        Check whether a purchase would be accepted now.

        Read-only; ``purchase_quotas`` checks again under lock.

        Args:
            user_id: User ID
            level_number: Level number
            quantity: Quotas to buy at once

        Returns:
            QuotaCheck with reason when rejected

        Raises:
            InvalidLevel: If level_number is outside 1..10
            InvalidQuantity: If quantity is outside 1..10
        """
        get_level_config(level_number)
        validate_quantity(quantity)
        user = await self.user_repo.get_by_id(user_id)
        try:
            await self._check(user, user_id, level_number, quantity)
        except BusinessRuleError as e:
            return QuotaCheck(allowed=False, reason=e.reason, error_code=e.code)
        return QuotaCheck(allowed=True)

    async def purchase_quota(self, user_id: int, level_number: int) -> QueueEntry:
        """Buy a single quota. See ``purchase_quotas``."""
        entries = await self.purchase_quotas(user_id, level_number, 1)
        return entries[0]

    async def purchase_quotas(
        self, user_id: int, level_number: int, quantity: int
    ) -> list[QueueEntry]:
        """
        Buy one or more quotas and join the level queue.

        Locks the level, the user and the funds row, re-validates every
        rule for the whole batch, then debits the entry value per quota,
        admits one entry each and books the total into level cash and
        total_in. The caller commits; on any error the caller's rollback
        leaves balances and queue unchanged, so a batch is all or nothing.

        Args:
            user_id: User ID
            level_number: Level number
            quantity: Quotas to buy, 1..10

        Returns:
            Created queue entries in quota number order

        Raises:
            InvalidLevel, InvalidQuantity, UserNotFound, UserNotActive,
            InsufficientBalance, QuotaLimitExceeded
        """
        config = get_level_config(level_number)
        validate_quantity(quantity)
        level = await self.level_repo.get_by_number(level_number, for_update=True)
        if level is None:
            raise RuntimeError(f"Level {level_number} is not seeded")

        user = await self.user_repo.get_by_id(user_id, for_update=True)
        await self._check(user, user_id, level_number, quantity)

        funds = await self.funds_repo.get_funds(for_update=True)
        amount = config.entry_value
        total = amount * quantity

        user.balance = quantize_money(user.balance - total)
        user.total_deposited = quantize_money(user.total_deposited + total)

        entries = []
        for _ in range(quantity):
            entry = await self.queue_service.add_to_queue(
                user_id, level_number, origin=QueueEntryOrigin.PURCHASE, level=level
            )
            self.tx_repo.record(
                TransactionType.QUOTA_PURCHASE,
                amount,
                user_id=user_id,
                level_number=level_number,
                reference_id=str(entry.id),
                description=f"Quota #{entry.quota_number} at level {level_number}",
            )
            entries.append(entry)

        level.cash_balance = quantize_money(level.cash_balance + total)
        FundsDelta(total_in=total).apply(funds)
        await self.session.flush()

        self.logger.info(
            "Quota purchased",
            extra={
                "user_id": user_id,
                "level": level_number,
                "entry_ids": [entry.id for entry in entries],
                "amount": str(total),
                "balance_after": str(user.balance),
            },
        )
        return entries
