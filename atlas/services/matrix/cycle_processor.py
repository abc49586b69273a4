"""
Cycle processor.

Executes one cycle of a level inside the caller's transaction:

    position 0        RECEIVER      exits, paid the level reward
    positions 1, 3, 6 REENTRY       stay in the queue, reentries + 1
    positions 2, 4    ADVANCE       exit, join the next level queue
    position 5        BONUS SOURCE  exits, its referrer may earn a bonus

Lock order is level, its waiting entries, next level, users (by id),
system funds, pool. Waiting entries are rescored before the seven are
selected. The cycle verifies that its own ledger movements balance before returning;
a mismatch raises LedgerIntegrityError.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from atlas.config.constants import (
    POSITION_BONUS_SOURCE,
    POSITION_RECEIVER,
    POSITIONS_ADVANCE,
    POSITIONS_REENTRY,
)
from atlas.config.levels import CYCLE_SIZE, MAX_LEVEL, get_level_config, next_level
from atlas.config.settings import settings
from atlas.models.enums import (
    CycleRole,
    QueueEntryOrigin,
    QueueEntryStatus,
    TransactionType,
)
from atlas.models.level import Level
from atlas.models.queue_entry import QueueEntry
from atlas.models.system_funds import JupiterPool, SystemFunds
from atlas.models.user import User
from atlas.repositories.funds_repository import SystemFundsRepository
from atlas.repositories.level_repository import LevelRepository
from atlas.repositories.queue_entry_repository import QueueEntryRepository
from atlas.repositories.transaction_repository import (
    CycleHistoryRepository,
    TransactionRepository,
)
from atlas.repositories.user_repository import UserRepository
from atlas.services.base_service import BaseService
from atlas.services.funds.ledger import FundsDelta, SurplusSweep, SystemFundsLedger
from atlas.services.matrix.queue_service import QueueService
from atlas.services.matrix.score_engine import ScoreEngine
from atlas.services.referral.bonus_rate import ReferralBonusRate, TieredReferralBonusRate
from atlas.utils.datetime_utils import utc_now
from atlas.utils.exceptions import (
    CycleAborted,
    InsufficientLiquidity,
    LedgerIntegrityError,
    LevelHalted,
)
from atlas.utils.formatters import quantize_money

ZERO = Decimal("0")

ROLE_BY_POSITION: dict[int, CycleRole] = {
    POSITION_RECEIVER: CycleRole.RECEIVER,
    POSITION_BONUS_SOURCE: CycleRole.BONUS_SOURCE,
    **{p: CycleRole.REENTRY for p in POSITIONS_REENTRY},
    **{p: CycleRole.ADVANCE for p in POSITIONS_ADVANCE},
}


@dataclass
class PositionResult:
    """Outcome of one cycle position."""

    position: int
    role: CycleRole
    entry_id: int
    user_id: int
    amount: Decimal = ZERO
    new_entry_id: int | None = None


@dataclass
class CycleResult:
    """Outcome of a processed cycle."""

    cycle_id: str
    level_number: int
    positions: list[PositionResult]
    reward_paid: Decimal
    bonus_paid: Decimal
    bonus_referrer_id: int | None
    pool_withdrawal: Decimal
    sweep: SurplusSweep | None = None
    processed_at: datetime | None = None

    @property
    def receiver(self) -> PositionResult:
        return self.positions[POSITION_RECEIVER]

    def by_role(self, role: CycleRole) -> list[PositionResult]:
        return [p for p in self.positions if p.role == role]


@dataclass
class _Holdings:
    """Balances touched by a cycle, captured before and after."""

    users: Decimal
    level_cash: Decimal
    pool: Decimal
    funds: dict[str, Decimal] = field(default_factory=dict)


class CycleProcessor(BaseService):
    """Eligibility check and execution of level cycles."""

    def __init__(
        self,
        session: AsyncSession,
        bonus_rate: ReferralBonusRate | None = None,
        clock: Callable[[], datetime] = utc_now,
        sweep_surplus: bool | None = None,
    ) -> None:
        """
        Initialize cycle processor.

        Args:
            session: Database session
            bonus_rate: Referral bonus predicate (tiered rule by default)
            clock: Source of the current time
            sweep_surplus: Override of the configured surplus sweep policy
        """
        super().__init__(session)
        self.bonus_rate = bonus_rate or TieredReferralBonusRate()
        self.clock = clock
        self.sweep_surplus = (
            settings.jupiter_surplus_sweep_enabled if sweep_surplus is None else sweep_surplus
        )
        self.level_repo = LevelRepository(session)
        self.queue_repo = QueueEntryRepository(session)
        self.user_repo = UserRepository(session)
        self.funds_repo = SystemFundsRepository(session)
        self.tx_repo = TransactionRepository(session)
        self.history_repo = CycleHistoryRepository(session)
        self.ledger = SystemFundsLedger(session)
        self.queue_service = QueueService(session, clock)
        self.score_engine = ScoreEngine(session, clock)

    async def can_process_cycle(self, level_number: int) -> bool:
        """
        Whether a level currently holds a full cycle of waiting entries.

        Pure read of committed state.

        Args:
            level_number: Level number

        Returns:
            True if at least seven entries wait and the level is not halted

        Raises:
            InvalidLevel: If level_number is outside 1..10
        """
        get_level_config(level_number)
        level = await self.level_repo.get_by_number(level_number)
        if level is None or level.is_halted:
            return False
        return await self.queue_repo.count_waiting(level_number) >= CYCLE_SIZE

    async def process_cycle(self, level_number: int) -> CycleResult:
        """
        Run one cycle of a level.

        The caller owns the transaction: commit after success, roll back
        on any exception.

        Args:
            level_number: Level number

        Returns:
            CycleResult

        Raises:
            InvalidLevel: If level_number is outside 1..10
            LevelHalted: If the level was halted by an integrity failure
            CycleAborted: If fewer than seven entries are eligible or the
                payout cannot be funded
            LedgerIntegrityError: If the cycle's movements do not balance
        """
        config = get_level_config(level_number)
        level = await self.level_repo.get_by_number(level_number, for_update=True)
        if level is None:
            raise RuntimeError(f"Level {level_number} is not seeded")
        if level.is_halted:
            raise LevelHalted(level_number, level.halted_reason)

        now = self.clock()
        # Rank on scores as of this cycle
        waiting = await self.queue_repo.get_waiting(level_number, for_update=True)
        await self.score_engine.refresh(waiting, now)

        selected = await self.queue_repo.select_top(level_number, CYCLE_SIZE, for_update=True)
        if len(selected) < CYCLE_SIZE:
            raise CycleAborted(
                f"Level {level_number} has {len(selected)} eligible entries, "
                f"{CYCLE_SIZE} required"
            )

        target_number = next_level(level_number)
        advances_to_next = level_number < MAX_LEVEL
        target_level = None
        if advances_to_next:
            target_level = await self.level_repo.get_by_number(target_number, for_update=True)
            if target_level is None:
                raise RuntimeError(f"Level {target_number} is not seeded")

        source_entry = selected[POSITION_BONUS_SOURCE]
        referrer_id = await self.user_repo.get_referrer_id(source_entry.user_id)
        user_ids = {entry.user_id for entry in selected}
        if referrer_id is not None:
            user_ids.add(referrer_id)
        users = await self.user_repo.lock_many(user_ids)
        funds = await self.funds_repo.get_funds(for_update=True)
        pool = await self.funds_repo.get_pool(for_update=True)

        before = self._holdings(users, level, pool, funds)
        cycle_id = uuid.uuid4().hex

        # Outflow and funding
        reward = config.reward_value
        bonus_rate = ZERO
        bonus = ZERO
        referrer = users.get(referrer_id) if referrer_id is not None else None
        if referrer is not None:
            bonus_rate = await self.bonus_rate(self.session, referrer.id, level_number)
            bonus = min(quantize_money(config.entry_value * bonus_rate), config.bonus_value)

        pool_withdrawal = ZERO
        shortfall = reward + bonus - level.cash_balance
        if shortfall > ZERO:
            try:
                pool_withdrawal = await self.ledger.withdraw_from_pool(level, shortfall, cycle_id)
            except InsufficientLiquidity as e:
                raise CycleAborted(e.reason) from e

        delta = FundsDelta()
        positions: list[PositionResult] = []

        for position, entry in enumerate(selected):
            role = ROLE_BY_POSITION[position]
            owner = users[entry.user_id]
            entry.cycles_completed += 1
            result = PositionResult(
                position=position, role=role, entry_id=entry.id, user_id=entry.user_id
            )

            if role == CycleRole.RECEIVER:
                delta += self._pay_receiver(level, entry, owner, reward, cycle_id, now)
                result.amount = reward
            elif role == CycleRole.REENTRY:
                self._reenter(entry, now)
            elif role == CycleRole.ADVANCE:
                if advances_to_next:
                    self._complete(entry, now)
                    new_entry = await self.queue_service.add_to_queue(
                        entry.user_id,
                        target_number,
                        origin=QueueEntryOrigin.ADVANCE,
                        level=target_level,
                    )
                    result.new_entry_id = new_entry.id
                else:
                    # Terminal level: stay in level 10 as a reentry
                    self._reenter(entry, now)
            else:
                self._complete(entry, now)
                if referrer is not None and bonus > ZERO:
                    delta += self._pay_bonus(
                        level, referrer, owner, bonus, bonus_rate, cycle_id, now
                    )
                    result.amount = bonus

            self.history_repo.record_position(
                cycle_id=cycle_id,
                level_number=level_number,
                user_id=entry.user_id,
                queue_entry_id=entry.id,
                position=position,
                role=role,
                amount=result.amount,
                created_at=now,
            )
            positions.append(result)

        delta.apply(funds)
        level.total_cycles += 1
        level.last_cycle_at = now

        # New scores of the reentered rows use their reset entered_at
        await self.score_engine.refresh(
            [entry for entry in selected if entry.status == QueueEntryStatus.WAITING], now
        )

        # Sweep threshold counts waiting rows, so completed ones must be flushed
        await self.session.flush()
        sweep = None
        if self.sweep_surplus:
            sweep = await self.ledger.sweep_surplus(level, funds, cycle_id)
            await self.session.flush()
        self._verify_conservation(before, self._holdings(users, level, pool, funds), level_number)

        self.logger.info(
            f"Cycle completed at level {level_number}",
            extra={
                "cycle_id": cycle_id,
                "level": level_number,
                "receiver_user_id": selected[POSITION_RECEIVER].user_id,
                "reward": str(reward),
                "bonus": str(bonus),
                "pool_withdrawal": str(pool_withdrawal),
            },
        )
        return CycleResult(
            cycle_id=cycle_id,
            level_number=level_number,
            positions=positions,
            reward_paid=reward,
            bonus_paid=bonus if referrer is not None else ZERO,
            bonus_referrer_id=referrer.id if referrer is not None and bonus > ZERO else None,
            pool_withdrawal=pool_withdrawal,
            sweep=sweep,
            processed_at=now,
        )

    # ------------------------------------------------------------------
    # Position effects
    # ------------------------------------------------------------------

    def _pay_receiver(
        self,
        level: Level,
        entry: QueueEntry,
        owner: User,
        reward: Decimal,
        cycle_id: str,
        now: datetime,
    ) -> FundsDelta:
        self._complete(entry, now)
        entry.total_earned = quantize_money(entry.total_earned + reward)
        owner.balance = quantize_money(owner.balance + reward)
        owner.total_earned = quantize_money(owner.total_earned + reward)
        level.cash_balance = quantize_money(level.cash_balance - reward)
        self.tx_repo.record(
            TransactionType.CYCLE_REWARD,
            reward,
            user_id=owner.id,
            level_number=level.level_number,
            reference_id=cycle_id,
            description=f"Cycle reward at level {level.level_number}",
        )
        return FundsDelta(total_out=reward)

    def _pay_bonus(
        self,
        level: Level,
        referrer: User,
        source: User,
        amount: Decimal,
        rate: Decimal,
        cycle_id: str,
        now: datetime,
    ) -> FundsDelta:
        referrer.balance = quantize_money(referrer.balance + amount)
        referrer.total_bonus = quantize_money(referrer.total_bonus + amount)
        level.cash_balance = quantize_money(level.cash_balance - amount)
        self.tx_repo.record(
            TransactionType.REFERRAL_BONUS,
            amount,
            user_id=referrer.id,
            level_number=level.level_number,
            reference_id=cycle_id,
            description=f"Referral bonus from user {source.id} at level {level.level_number}",
        )
        self.history_repo.record_bonus(
            cycle_id=cycle_id,
            level_number=level.level_number,
            referrer_id=referrer.id,
            source_user_id=source.id,
            rate=rate,
            amount=amount,
            created_at=now,
        )
        return FundsDelta(total_out=amount)

    @staticmethod
    def _reenter(entry: QueueEntry, now: datetime) -> None:
        entry.reentries += 1
        entry.entered_at = now

    @staticmethod
    def _complete(entry: QueueEntry, now: datetime) -> None:
        entry.status = QueueEntryStatus.COMPLETED
        entry.completed_at = now

    # ------------------------------------------------------------------
    # Conservation check
    # ------------------------------------------------------------------

    @staticmethod
    def _holdings(
        users: dict[int, User], level: Level, pool: JupiterPool, funds: SystemFunds
    ) -> _Holdings:
        return _Holdings(
            users=sum((u.balance for u in users.values()), ZERO),
            level_cash=level.cash_balance,
            pool=pool.balance,
            funds={
                name: getattr(funds, name)
                for name in (
                    "reserve",
                    "operational",
                    "profit",
                    "total_in",
                    "total_out",
                    "external_in",
                    "external_out",
                )
            },
        )

    def _verify_conservation(
        self, before: _Holdings, after: _Holdings, level_number: int
    ) -> None:
        """
        Check that the cycle moved value without creating or losing any.

        Raises:
            LedgerIntegrityError: If either equation changed balance
        """
        d = {name: after.funds[name] - before.funds[name] for name in after.funds}
        d_matrix = (
            (after.level_cash - before.level_cash)
            + (after.pool - before.pool)
            + d["reserve"]
            + d["operational"]
            + d["profit"]
        )
        d_users = after.users - before.users

        matrix_gap = quantize_money(d_matrix - (d["total_in"] - d["total_out"]))
        system_gap = quantize_money(
            d_users + d_matrix - (d["external_in"] - d["external_out"])
        )
        if matrix_gap != ZERO or system_gap != ZERO:
            self.logger.critical(
                "Cycle ledger movements do not balance",
                extra={
                    "level": level_number,
                    "matrix_gap": str(matrix_gap),
                    "system_gap": str(system_gap),
                },
            )
            raise LedgerIntegrityError(
                f"Cycle at level {level_number} is unbalanced: "
                f"matrix gap {matrix_gap}, system gap {system_gap}"
            )
