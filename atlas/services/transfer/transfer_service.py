"""
Transfer service.

PIN-gated internal balance transfers between users. The PIN check runs
and commits in its own transaction, releasing the sender row, and only
then are both user rows locked together in id order, the same order the
cycle processor uses. A transfer and a cycle touching the same users
serialize instead of deadlocking.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from atlas.config.settings import settings
from atlas.models.enums import TransactionType
from atlas.models.internal_transfer import InternalTransfer
from atlas.models.user import User
from atlas.repositories.transaction_repository import (
    InternalTransferRepository,
    TransactionRepository,
)
from atlas.repositories.user_repository import UserRepository
from atlas.services.base_service import BaseService, log_operation, transaction
from atlas.services.transfer.pin_service import PinService
from atlas.utils.datetime_utils import start_of_day, utc_now
from atlas.utils.exceptions import (
    InsufficientBalance,
    InvalidAmount,
    SelfTransfer,
    TransferLimitExceeded,
    UserNotActive,
    UserNotFound,
)
from atlas.utils.formatters import quantize_money


@dataclass
class TransferLimits:
    """Daily transfer allowance of a sender."""

    min_amount: Decimal
    daily_limit: Decimal
    sent_today: Decimal
    transfers_today: int
    max_transfers_per_day: int

    @property
    def remaining_amount(self) -> Decimal:
        return max(self.daily_limit - self.sent_today, Decimal("0"))

    @property
    def remaining_transfers(self) -> int:
        return max(self.max_transfers_per_day - self.transfers_today, 0)


class TransferService(BaseService):
    """Internal transfers."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """
        Initialize transfer service.

        Args:
            session: Database session
            clock: Source of the current time
        """
        super().__init__(session)
        self.clock = clock
        self.user_repo = UserRepository(session)
        self.transfer_repo = InternalTransferRepository(session)
        self.tx_repo = TransactionRepository(session)
        self.pin_service = PinService(session, clock)

    async def get_transfer_limits(self, user: User) -> TransferLimits:
        """Allowance left for today, KYC-verified users get the higher limit."""
        count, total = await self.transfer_repo.sent_since(
            user.id, start_of_day(self.clock())
        )
        return TransferLimits(
            min_amount=settings.transfer_min_amount,
            daily_limit=(
                settings.transfer_daily_limit_kyc
                if user.is_kyc_verified
                else settings.transfer_daily_limit_no_kyc
            ),
            sent_today=total,
            transfers_today=count,
            max_transfers_per_day=settings.transfer_max_per_day,
        )

    def _validate(self, from_user_id: int, to_user_id: int, amount: Decimal) -> Decimal:
        amount = quantize_money(Decimal(amount))
        if amount <= 0:
            raise InvalidAmount(f"Amount must be positive, got {amount}")
        if amount < settings.transfer_min_amount:
            raise InvalidAmount(f"Minimum transfer is {settings.transfer_min_amount}")
        if from_user_id == to_user_id:
            raise SelfTransfer()
        return amount

    @log_operation
    async def transfer(
        self,
        from_user_id: int,
        to_user_id: int,
        amount: Decimal,
        pin: str,
    ) -> InternalTransfer:
        """
        Move balance from one user to another.

        Input is validated first, then the PIN (its attempt counter is
        committed on its own and no row lock outlives the check), then
        the transfer runs in one transaction that locks both users.

        Args:
            from_user_id: Sender ID
            to_user_id: Recipient ID
            amount: Amount to move
            pin: Sender's transfer PIN

        Returns:
            Created InternalTransfer

        Raises:
            InvalidAmount, SelfTransfer, PinNotSet, PinLocked, InvalidPin,
            UserNotFound, UserNotActive, TransferLimitExceeded,
            InsufficientBalance
        """
        amount = self._validate(from_user_id, to_user_id, amount)
        await self.pin_service.verify_pin(from_user_id, pin)
        return await self._execute(from_user_id, to_user_id, amount)

    @transaction
    async def _execute(
        self, from_user_id: int, to_user_id: int, amount: Decimal
    ) -> InternalTransfer:
        users = await self.user_repo.lock_many([from_user_id, to_user_id])
        for user_id in (from_user_id, to_user_id):
            if user_id not in users:
                raise UserNotFound(user_id)
            if not users[user_id].is_active:
                raise UserNotActive(f"User {user_id} is {users[user_id].status}")
        sender = users[from_user_id]
        recipient = users[to_user_id]

        limits = await self.get_transfer_limits(sender)
        if limits.remaining_transfers <= 0:
            raise TransferLimitExceeded(
                f"At most {limits.max_transfers_per_day} transfers per day"
            )
        if amount > limits.remaining_amount:
            raise TransferLimitExceeded(
                f"Daily limit {limits.daily_limit}, {limits.remaining_amount} left today"
            )
        if sender.balance < amount:
            raise InsufficientBalance(sender.balance, amount)

        sender.balance = quantize_money(sender.balance - amount)
        recipient.balance = quantize_money(recipient.balance + amount)

        record = InternalTransfer(
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            amount=amount,
            created_at=self.clock(),
        )
        self.session.add(record)
        await self.session.flush()

        reference = f"transfer:{record.id}"
        self.tx_repo.record(
            TransactionType.INTERNAL_TRANSFER_OUT,
            amount,
            user_id=from_user_id,
            reference_id=reference,
            description=f"Transfer to user {to_user_id}",
        )
        self.tx_repo.record(
            TransactionType.INTERNAL_TRANSFER_IN,
            amount,
            user_id=to_user_id,
            reference_id=reference,
            description=f"Transfer from user {from_user_id}",
        )
        await self.session.flush()

        self.logger.info(
            "Internal transfer completed",
            extra={
                "transfer_id": record.id,
                "from_user_id": from_user_id,
                "to_user_id": to_user_id,
                "amount": str(amount),
            },
        )
        return record
