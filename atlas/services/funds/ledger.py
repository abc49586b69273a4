"""
System funds ledger.

Owns every mutation of SystemFunds and the Jupiter Pool and the
reconciliation that proves no value leaks:

    matrix:  sum(level cash) + reserve + operational + profit + pool
             == total_in - total_out
    system:  sum(user balances) + matrix holdings
             == external_in - external_out

Callers run inside their own transaction; nothing here commits except
the halt/resume helpers.
"""

from dataclasses import dataclass, field, fields
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.config.constants import (
    SURPLUS_OPERATIONAL_SHARE,
    SURPLUS_POOL_SHARE,
    SURPLUS_PROFIT_SHARE,
    SURPLUS_RESERVE_SHARE,
)
from atlas.config.settings import settings
from atlas.models.enums import TransactionType
from atlas.models.level import Level
from atlas.models.system_funds import JupiterPool, SystemFunds
from atlas.models.user import User
from atlas.repositories.funds_repository import SystemFundsRepository
from atlas.repositories.level_repository import LevelRepository
from atlas.repositories.queue_entry_repository import QueueEntryRepository
from atlas.repositories.transaction_repository import TransactionRepository
from atlas.repositories.user_repository import UserRepository
from atlas.services.base_service import BaseService
from atlas.utils.datetime_utils import utc_now
from atlas.utils.exceptions import (
    InsufficientBalance,
    InsufficientLiquidity,
    InvalidAmount,
    LedgerIntegrityError,
    UserNotFound,
)
from atlas.utils.formatters import quantize_money

ZERO = Decimal("0")


@dataclass(frozen=True)
class FundsDelta:
    """
    Change applied to the SystemFunds aggregate.

    Deltas compose with ``+`` and are applied in one step, so a whole
    cycle or purchase moves the aggregate from one state to the next.
    """

    reserve: Decimal = ZERO
    operational: Decimal = ZERO
    profit: Decimal = ZERO
    total_in: Decimal = ZERO
    total_out: Decimal = ZERO
    external_in: Decimal = ZERO
    external_out: Decimal = ZERO

    def __add__(self, other: "FundsDelta") -> "FundsDelta":
        return FundsDelta(
            **{f.name: getattr(self, f.name) + getattr(other, f.name) for f in fields(self)}
        )

    @property
    def is_zero(self) -> bool:
        return all(getattr(self, f.name) == ZERO for f in fields(self))

    def apply(self, funds: SystemFunds) -> SystemFunds:
        """Add this delta to a SystemFunds row in place."""
        for f in fields(self):
            value = getattr(self, f.name)
            if value:
                setattr(funds, f.name, quantize_money(getattr(funds, f.name) + value))
        return funds


@dataclass
class LedgerSnapshot:
    """Totals that enter the reconciliation equations."""

    user_balances: Decimal
    level_cash: Decimal
    reserve: Decimal
    operational: Decimal
    profit: Decimal
    pool: Decimal
    total_in: Decimal
    total_out: Decimal
    external_in: Decimal
    external_out: Decimal

    @property
    def matrix_holdings(self) -> Decimal:
        return self.level_cash + self.reserve + self.operational + self.profit + self.pool

    @property
    def matrix_difference(self) -> Decimal:
        """Holdings minus net matrix inflow; zero when balanced."""
        return quantize_money(self.matrix_holdings - (self.total_in - self.total_out))

    @property
    def system_difference(self) -> Decimal:
        """All holdings minus net external inflow; zero when balanced."""
        return quantize_money(
            self.user_balances
            + self.matrix_holdings
            - (self.external_in - self.external_out)
        )


@dataclass
class LedgerReport:
    """Reconciliation outcome."""

    snapshot: LedgerSnapshot
    issues: list[str] = field(default_factory=list)

    @property
    def balanced(self) -> bool:
        return not self.issues


@dataclass
class SurplusSweep:
    """Level cash moved out by the surplus policy."""

    level_number: int
    amount: Decimal
    to_pool: Decimal
    to_reserve: Decimal
    to_operational: Decimal
    to_profit: Decimal


class SystemFundsLedger(BaseService):
    """Mutations and reconciliation of the process-wide ledger."""

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize ledger.

        Args:
            session: Database session
        """
        super().__init__(session)
        self.funds_repo = SystemFundsRepository(session)
        self.level_repo = LevelRepository(session)
        self.user_repo = UserRepository(session)
        self.queue_repo = QueueEntryRepository(session)
        self.tx_repo = TransactionRepository(session)

    # ------------------------------------------------------------------
    # Boundary flows
    # ------------------------------------------------------------------

    async def credit_deposit(
        self, user_id: int, amount: Decimal, description: str | None = None
    ) -> User:
        """
        Credit externally verified funds to a user balance.

        Args:
            user_id: User ID
            amount: Deposit amount
            description: Free text for the transaction row

        Returns:
            Updated user
        """
        amount = self._positive(amount)
        user = await self.user_repo.get_by_id(user_id, for_update=True)
        if user is None:
            raise UserNotFound(user_id)
        funds = await self.funds_repo.get_funds(for_update=True)

        user.balance = quantize_money(user.balance + amount)
        FundsDelta(external_in=amount).apply(funds)
        self.tx_repo.record(
            TransactionType.DEPOSIT, amount, user_id=user_id, description=description
        )
        await self.session.flush()

        self.logger.info(
            "Deposit credited",
            extra={"user_id": user_id, "amount": str(amount), "balance": str(user.balance)},
        )
        return user

    async def debit_withdrawal(
        self, user_id: int, amount: Decimal, description: str | None = None
    ) -> User:
        """
        Debit a user balance for an external withdrawal.

        Raises:
            InsufficientBalance: If balance is lower than amount
        """
        amount = self._positive(amount)
        user = await self.user_repo.get_by_id(user_id, for_update=True)
        if user is None:
            raise UserNotFound(user_id)
        if user.balance < amount:
            raise InsufficientBalance(user.balance, amount)
        funds = await self.funds_repo.get_funds(for_update=True)

        user.balance = quantize_money(user.balance - amount)
        user.total_withdrawn = quantize_money(user.total_withdrawn + amount)
        FundsDelta(external_out=amount).apply(funds)
        self.tx_repo.record(
            TransactionType.WITHDRAWAL, amount, user_id=user_id, description=description
        )
        await self.session.flush()

        self.logger.info(
            "Withdrawal debited",
            extra={"user_id": user_id, "amount": str(amount), "balance": str(user.balance)},
        )
        return user

    async def fund_pool(self, amount: Decimal, description: str | None = None) -> JupiterPool:
        """
        Inject external liquidity into the Jupiter Pool.

        Args:
            amount: Amount added to the pool

        Returns:
            Updated pool
        """
        amount = self._positive(amount)
        funds = await self.funds_repo.get_funds(for_update=True)
        pool = await self.funds_repo.get_pool(for_update=True)

        pool.balance = quantize_money(pool.balance + amount)
        pool.total_deposits = quantize_money(pool.total_deposits + amount)
        FundsDelta(total_in=amount, external_in=amount).apply(funds)
        self.tx_repo.record(
            TransactionType.JUPITER_POOL_DEPOSIT,
            amount,
            description=description or "External pool funding",
        )
        await self.session.flush()

        self.logger.info(
            "Jupiter Pool funded",
            extra={"amount": str(amount), "pool_balance": str(pool.balance)},
        )
        return pool

    # ------------------------------------------------------------------
    # Pool movements used by the cycle processor
    # ------------------------------------------------------------------

    async def withdraw_from_pool(
        self, level: Level, amount: Decimal, reference_id: str | None = None
    ) -> Decimal:
        """
        Move pool liquidity into a level's cash to cover a shortfall.

        Args:
            level: Locked level row
            amount: Shortfall
            reference_id: Cycle id

        Returns:
            Amount withdrawn

        Raises:
            InsufficientLiquidity: If the pool holds less than amount
        """
        amount = quantize_money(amount)
        pool = await self.funds_repo.get_pool(for_update=True)
        if pool.balance < amount:
            raise InsufficientLiquidity(
                f"Level {level.level_number} needs {amount} from the Jupiter Pool, "
                f"which holds {pool.balance}"
            )

        pool.balance = quantize_money(pool.balance - amount)
        pool.total_withdrawals = quantize_money(pool.total_withdrawals + amount)
        level.cash_balance = quantize_money(level.cash_balance + amount)
        self.tx_repo.record(
            TransactionType.JUPITER_POOL_WITHDRAWAL,
            amount,
            level_number=level.level_number,
            reference_id=reference_id,
            description=f"Shortfall cover for level {level.level_number}",
        )

        self.logger.warning(
            "Jupiter Pool intervention",
            extra={
                "level": level.level_number,
                "amount": str(amount),
                "pool_balance": str(pool.balance),
            },
        )
        return amount

    async def deposit_to_pool(
        self, level: Level, amount: Decimal, reference_id: str | None = None
    ) -> Decimal:
        """
        Move level cash into the Jupiter Pool.

        Args:
            level: Locked level row
            amount: Amount to move
            reference_id: Cycle id

        Returns:
            Amount deposited
        """
        amount = quantize_money(amount)
        if amount > level.cash_balance:
            raise InsufficientLiquidity(
                f"Level {level.level_number} holds {level.cash_balance}, "
                f"cannot deposit {amount}"
            )
        pool = await self.funds_repo.get_pool(for_update=True)

        level.cash_balance = quantize_money(level.cash_balance - amount)
        pool.balance = quantize_money(pool.balance + amount)
        pool.total_deposits = quantize_money(pool.total_deposits + amount)
        self.tx_repo.record(
            TransactionType.JUPITER_POOL_DEPOSIT,
            amount,
            level_number=level.level_number,
            reference_id=reference_id,
            description=f"Surplus from level {level.level_number}",
        )
        return amount

    def surplus_threshold(self, level: Level, waiting_entries: int) -> Decimal:
        """Cash a level keeps to back its waiting entries."""
        return quantize_money(
            level.entry_value * waiting_entries * settings.jupiter_reserve_multiplier
        )

    async def sweep_surplus(
        self, level: Level, funds: SystemFunds, reference_id: str | None = None
    ) -> SurplusSweep | None:
        """
        Move level cash above the reserve threshold out of the level.

        The surplus is split between reserve, operational, profit and the
        Jupiter Pool. Does nothing when there is no surplus.

        Args:
            level: Locked level row
            funds: Locked SystemFunds row
            reference_id: Cycle id

        Returns:
            SurplusSweep or None
        """
        waiting = await self.queue_repo.count_waiting(level.level_number)
        surplus = quantize_money(level.cash_balance - self.surplus_threshold(level, waiting))
        if surplus <= ZERO:
            return None

        to_reserve = quantize_money(surplus * SURPLUS_RESERVE_SHARE)
        to_operational = quantize_money(surplus * SURPLUS_OPERATIONAL_SHARE)
        to_profit = quantize_money(surplus * SURPLUS_PROFIT_SHARE)
        # Pool takes the rounding remainder
        to_pool = surplus - to_reserve - to_operational - to_profit
        allocated = to_reserve + to_operational + to_profit

        level.cash_balance = quantize_money(level.cash_balance - allocated)
        FundsDelta(
            reserve=to_reserve, operational=to_operational, profit=to_profit
        ).apply(funds)
        self.tx_repo.record(
            TransactionType.SURPLUS_ALLOCATION,
            allocated,
            level_number=level.level_number,
            reference_id=reference_id,
            description=(
                f"reserve={to_reserve} operational={to_operational} profit={to_profit}"
            ),
        )
        if to_pool > ZERO:
            await self.deposit_to_pool(level, to_pool, reference_id)

        self.logger.info(
            "Level surplus swept",
            extra={
                "level": level.level_number,
                "surplus": str(surplus),
                "to_pool": str(to_pool),
            },
        )
        return SurplusSweep(
            level_number=level.level_number,
            amount=surplus,
            to_pool=to_pool,
            to_reserve=to_reserve,
            to_operational=to_operational,
            to_profit=to_profit,
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def snapshot(self) -> LedgerSnapshot:
        """Read every total that enters the reconciliation equations."""
        funds = await self.funds_repo.get_funds()
        pool = await self.funds_repo.get_pool()
        return LedgerSnapshot(
            user_balances=quantize_money(await self.user_repo.sum_balances()),
            level_cash=quantize_money(await self.level_repo.sum_cash()),
            reserve=funds.reserve,
            operational=funds.operational,
            profit=funds.profit,
            pool=pool.balance,
            total_in=funds.total_in,
            total_out=funds.total_out,
            external_in=funds.external_in,
            external_out=funds.external_out,
        )

    async def reconcile(self) -> LedgerReport:
        """
        Check both leakage equations.

        Returns:
            LedgerReport listing every mismatch
        """
        snapshot = await self.snapshot()
        report = LedgerReport(snapshot=snapshot)

        if snapshot.matrix_difference != ZERO:
            report.issues.append(
                f"Matrix holdings differ from total_in - total_out by "
                f"{snapshot.matrix_difference}"
            )
        if snapshot.system_difference != ZERO:
            report.issues.append(
                f"System holdings differ from external_in - external_out by "
                f"{snapshot.system_difference}"
            )

        if report.balanced:
            self.logger.debug("Ledger balanced")
        else:
            self.logger.critical(
                "Ledger reconciliation mismatch",
                extra={"issues": report.issues},
            )
        return report

    async def assert_balanced(self) -> LedgerReport:
        """
        Reconcile and raise on mismatch.

        Raises:
            LedgerIntegrityError: If any equation does not hold
        """
        report = await self.reconcile()
        if not report.balanced:
            raise LedgerIntegrityError("; ".join(report.issues))
        return report

    # ------------------------------------------------------------------
    # Level halt
    # ------------------------------------------------------------------

    async def halt_level(self, level_number: int, reason: str) -> None:
        """
        Stop cycle processing for a level and commit immediately.

        Args:
            level_number: Level to halt
            reason: Integrity failure description
        """
        await self.session.execute(
            update(Level)
            .where(Level.level_number == level_number)
            .values(
                is_halted=True,
                halted_reason=reason[:500],
                halted_at=utc_now(),
                version=Level.version + 1,
            )
        )
        await self.session.commit()
        self.logger.critical(
            f"Level {level_number} halted",
            extra={"level": level_number, "reason": reason},
        )

    async def resume_level(self, level_number: int) -> None:
        """Operator action: allow cycles again after investigation."""
        await self.session.execute(
            update(Level)
            .where(Level.level_number == level_number)
            .values(
                is_halted=False,
                halted_reason=None,
                halted_at=None,
                version=Level.version + 1,
            )
        )
        await self.session.commit()
        self.logger.warning(f"Level {level_number} resumed", extra={"level": level_number})

    @staticmethod
    def _positive(amount: Decimal) -> Decimal:
        amount = quantize_money(Decimal(amount))
        if amount <= ZERO:
            raise InvalidAmount(f"Amount must be positive, got {amount}")
        return amount
