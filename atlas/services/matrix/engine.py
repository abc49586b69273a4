"""
Matrix engine.

Entry point for callers outside a request transaction (scheduled jobs,
admin tooling). Each operation runs in its own session; transient
concurrency failures are retried with backoff, integrity failures halt
the affected level.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TypeVar

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from atlas.config.database import async_session_maker
from atlas.config.levels import MAX_LEVEL, MIN_LEVEL
from atlas.config.settings import settings
from atlas.models.queue_entry import QueueEntry
from atlas.services.funds.ledger import LedgerReport, SystemFundsLedger
from atlas.services.matrix.cycle_processor import CycleProcessor, CycleResult
from atlas.services.matrix.quota_service import QuotaService
from atlas.services.matrix.score_engine import ScoreEngine
from atlas.services.referral.bonus_rate import ReferralBonusRate, TieredReferralBonusRate
from atlas.utils.datetime_utils import utc_now
from atlas.utils.exceptions import (
    ConcurrencyConflict,
    CycleAborted,
    LedgerIntegrityError,
    MatrixError,
    is_retryable,
)

T = TypeVar("T")


@dataclass
class CycleRunReport:
    """Summary of one scheduled cycle run."""

    results: list[CycleResult] = field(default_factory=list)
    errors: dict[int, MatrixError] = field(default_factory=dict)
    capped: bool = False

    @property
    def processed(self) -> int:
        return len(self.results)

    def cycles_by_level(self) -> dict[int, int]:
        counts: dict[int, int] = {}
        for result in self.results:
            counts[result.level_number] = counts.get(result.level_number, 0) + 1
        return counts


class MatrixEngine:
    """Session-owning facade over the matrix services."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        bonus_rate: ReferralBonusRate | None = None,
        clock: Callable[[], datetime] = utc_now,
        retry_attempts: int | None = None,
        retry_backoff_ms: int | None = None,
        sweep_surplus: bool | None = None,
    ) -> None:
        self.session_maker = session_maker or async_session_maker
        self.bonus_rate = bonus_rate or TieredReferralBonusRate()
        self.clock = clock
        self.retry_attempts = retry_attempts or settings.cycle_retry_attempts
        self.retry_backoff_ms = (
            settings.cycle_retry_backoff_ms if retry_backoff_ms is None else retry_backoff_ms
        )
        self.sweep_surplus = sweep_surplus
        self.logger = logger.bind(service=self.__class__.__name__)

    def _processor(self, session: AsyncSession) -> CycleProcessor:
        return CycleProcessor(
            session,
            bonus_rate=self.bonus_rate,
            clock=self.clock,
            sweep_surplus=self.sweep_surplus,
        )

    async def _with_retry(
        self,
        operation: str,
        work: Callable[[AsyncSession], Awaitable[T]],
        level_number: int | None = None,
    ) -> T:
        """
        Run work in a fresh session per attempt and commit on success.

        MatrixError subclasses are final and propagate unchanged. Transient
        database failures are retried; other failures propagate.

        Raises:
            ConcurrencyConflict: If every attempt hit a transient failure
        """
        last_error: Exception | None = None
        for attempt in range(1, self.retry_attempts + 1):
            async with self.session_maker() as session:
                try:
                    result = await work(session)
                    await session.commit()
                    return result
                except LedgerIntegrityError as e:
                    await session.rollback()
                    if level_number is not None:
                        await self.halt_level(level_number, e.reason)
                    raise
                except MatrixError:
                    await session.rollback()
                    raise
                except Exception as e:
                    await session.rollback()
                    if not is_retryable(e):
                        raise
                    last_error = e
                    self.logger.warning(
                        f"{operation} conflict, attempt {attempt}/{self.retry_attempts}",
                        extra={"level": level_number, "error": str(e)},
                    )
            if attempt < self.retry_attempts:
                await asyncio.sleep(self.retry_backoff_ms * attempt / 1000)

        raise ConcurrencyConflict(
            f"{operation} gave up after {self.retry_attempts} attempts: {last_error}"
        ) from last_error

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    async def can_process_cycle(self, level_number: int) -> bool:
        """Whether the level holds a full cycle of waiting entries."""
        async with self.session_maker() as session:
            return await self._processor(session).can_process_cycle(level_number)

    async def process_cycle(self, level_number: int) -> CycleResult:
        """
        Process one cycle of a level in its own transaction.

        Args:
            level_number: Level number

        Returns:
            CycleResult of the committed cycle

        Raises:
            InvalidLevel, LevelHalted, LedgerIntegrityError (level halted),
            ConcurrencyConflict (retries exhausted), CycleAborted
        """

        async def work(session: AsyncSession) -> CycleResult:
            return await self._processor(session).process_cycle(level_number)

        try:
            return await self._with_retry("Cycle", work, level_number=level_number)
        except MatrixError:
            raise
        except Exception as e:
            self.logger.error(
                f"Cycle at level {level_number} failed",
                extra={"level": level_number, "error": str(e)},
                exc_info=True,
            )
            raise CycleAborted(f"Cycle at level {level_number} failed: {e}") from e

    async def run_scheduled_cycles(self, max_cycles: int | None = None) -> CycleRunReport:
        """
        Drain every level that has a full cycle, lowest level first.

        A failure on one level is recorded and the run moves on to the
        next level.

        Args:
            max_cycles: Cap on cycles processed in this run

        Returns:
            CycleRunReport
        """
        max_cycles = max_cycles or settings.max_cycles_per_run
        report = CycleRunReport()

        for level_number in range(MIN_LEVEL, MAX_LEVEL + 1):
            while report.processed < max_cycles:
                if not await self.can_process_cycle(level_number):
                    break
                try:
                    report.results.append(await self.process_cycle(level_number))
                except MatrixError as e:
                    report.errors[level_number] = e
                    self.logger.error(
                        f"Level {level_number} skipped: {e.code}",
                        extra={"level": level_number, "reason": e.reason},
                    )
                    break
            if report.processed >= max_cycles:
                report.capped = True
                break

        self.logger.info(
            f"Scheduled cycle run processed {report.processed} cycles",
            extra={
                "by_level": report.cycles_by_level(),
                "errors": {level: e.code for level, e in report.errors.items()},
                "capped": report.capped,
            },
        )
        return report

    # ------------------------------------------------------------------
    # Quotas, scores, funds
    # ------------------------------------------------------------------

    async def purchase_quota(self, user_id: int, level_number: int) -> QueueEntry:
        """Buy a quota in its own transaction, retrying on conflicts."""

        async def work(session: AsyncSession) -> QueueEntry:
            return await QuotaService(session, self.clock).purchase_quota(user_id, level_number)

        return await self._with_retry("Quota purchase", work)

    async def purchase_quotas(
        self, user_id: int, level_number: int, quantity: int
    ) -> list[QueueEntry]:
        """Buy several quotas in one transaction, retrying on conflicts."""

        async def work(session: AsyncSession) -> list[QueueEntry]:
            return await QuotaService(session, self.clock).purchase_quotas(
                user_id, level_number, quantity
            )

        return await self._with_retry("Quota purchase", work)

    async def update_all_queue_scores(self) -> int:
        """Recompute and commit every waiting entry's score."""

        async def work(session: AsyncSession) -> int:
            return await ScoreEngine(session, self.clock).update_all_queue_scores()

        return await self._with_retry("Score update", work)

    async def credit_deposit(self, user_id: int, amount: Decimal) -> None:
        async def work(session: AsyncSession) -> None:
            await SystemFundsLedger(session).credit_deposit(user_id, amount)

        await self._with_retry("Deposit", work)

    async def fund_pool(self, amount: Decimal) -> None:
        async def work(session: AsyncSession) -> None:
            await SystemFundsLedger(session).fund_pool(amount)

        await self._with_retry("Pool funding", work)

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    async def halt_level(self, level_number: int, reason: str) -> None:
        async with self.session_maker() as session:
            await SystemFundsLedger(session).halt_level(level_number, reason)

    async def resume_level(self, level_number: int) -> None:
        async with self.session_maker() as session:
            await SystemFundsLedger(session).resume_level(level_number)

    async def reconcile(self) -> LedgerReport:
        """
        Check the global ledger equations.

        A mismatch halts every level that is not already halted, so that
        no further cycle moves value until an operator resumes them.

        Returns:
            LedgerReport
        """
        async with self.session_maker() as session:
            ledger = SystemFundsLedger(session)
            report = await ledger.reconcile()
            if report.balanced:
                return report

            reason = "; ".join(report.issues)
            for level in await ledger.level_repo.get_all_ordered():
                if not level.is_halted:
                    await ledger.halt_level(level.level_number, reason)
            return report
