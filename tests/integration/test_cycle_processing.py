"""
Integration tests for cycle processing.

Tests cover:
- Position roles of a level 1 cycle
- Referral bonus tiers and the bonus cap
- Jupiter Pool shortfall cover and liquidity failure
- Terminal level advance
- Surplus sweep
- Atomic rollback and level halt on integrity failure
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from atlas.models import BonusHistory, CycleHistory, QueueEntry, User
from atlas.models.enums import CycleRole, QueueEntryOrigin, QueueEntryStatus, UserStatus
from atlas.repositories.funds_repository import SystemFundsRepository
from atlas.repositories.level_repository import LevelRepository
from atlas.services.matrix.cycle_processor import CycleProcessor
from atlas.services.matrix.engine import MatrixEngine
from atlas.utils.datetime_utils import ensure_aware
from atlas.utils.exceptions import (
    CycleAborted,
    InvalidLevel,
    LedgerIntegrityError,
    LevelHalted,
)


class TestCycleRoles:
    """Test what each of the seven positions does."""

    @pytest.mark.asyncio
    async def test_level_one_cycle(
        self, fill_level, matrix_engine, session_maker, load, clock, reconcile
    ):
        entries = await fill_level(7)

        result = await matrix_engine.process_cycle(1)

        assert [p.entry_id for p in result.positions] == [e.id for e in entries]
        assert [p.role for p in result.positions] == [
            CycleRole.RECEIVER,
            CycleRole.REENTRY,
            CycleRole.ADVANCE,
            CycleRole.REENTRY,
            CycleRole.ADVANCE,
            CycleRole.BONUS_SOURCE,
            CycleRole.REENTRY,
        ]
        assert result.reward_paid == Decimal("20")
        assert result.bonus_paid == Decimal("0")
        assert result.pool_withdrawal == Decimal("0")

        # Receiver
        receiver_entry = await load(QueueEntry, entries[0].id)
        assert receiver_entry.status == QueueEntryStatus.COMPLETED
        assert receiver_entry.total_earned == Decimal("20")
        receiver = await load(User, entries[0].user_id)
        assert receiver.balance == Decimal("20")
        assert receiver.total_earned == Decimal("20")

        # Reentries stay with a fresh entered_at
        for index in (1, 3, 6):
            entry = await load(QueueEntry, entries[index].id)
            assert entry.status == QueueEntryStatus.WAITING
            assert entry.reentries == 1
            assert entry.cycles_completed == 1
            assert ensure_aware(entry.entered_at) == clock()

        # Advances leave level 1 and join level 2 without cash
        for index in (2, 4):
            entry = await load(QueueEntry, entries[index].id)
            assert entry.status == QueueEntryStatus.COMPLETED
        async with session_maker() as session:
            advanced = (
                await session.execute(select(QueueEntry).where(QueueEntry.level_number == 2))
            ).scalars().all()
            assert sorted(e.user_id for e in advanced) == sorted(
                [entries[2].user_id, entries[4].user_id]
            )
            assert all(e.origin == QueueEntryOrigin.ADVANCE for e in advanced)

            level_one = await LevelRepository(session).get_by_number(1)
            level_two = await LevelRepository(session).get_by_number(2)
            assert level_one.cash_balance == Decimal("50")
            assert level_one.total_cycles == 1
            assert level_two.cash_balance == Decimal("0")

            history = (
                await session.execute(
                    select(CycleHistory).where(CycleHistory.cycle_id == result.cycle_id)
                )
            ).scalars().all()
            assert len(history) == 7

        # Bonus source exits without a referrer to pay
        source = await load(QueueEntry, entries[5].id)
        assert source.status == QueueEntryStatus.COMPLETED

        assert (await reconcile()).balanced
        assert await matrix_engine.can_process_cycle(1) is False

    @pytest.mark.asyncio
    async def test_reentries_rank_ahead(self, fill_level, matrix_engine):
        entries = await fill_level(14)

        await matrix_engine.process_cycle(1)
        second = await matrix_engine.process_cycle(1)

        # Reentered rows outrank purchases a few minutes old; ties go to lower id
        assert second.receiver.entry_id == entries[1].id
        assert [p.entry_id for p in second.positions[:3]] == [
            entries[1].id,
            entries[3].id,
            entries[6].id,
        ]

    @pytest.mark.asyncio
    async def test_long_wait_outranks_fresh_reentry(self, fill_level, matrix_engine, clock):
        entries = await fill_level(14)
        # Stored scores are stale: no scheduled refresh runs in between
        clock.advance(hours=10)

        first = await matrix_engine.process_cycle(1)
        second = await matrix_engine.process_cycle(1)

        assert [p.entry_id for p in first.positions] == [e.id for e in entries[:7]]
        assert [p.entry_id for p in second.positions] == [e.id for e in entries[7:]]

    @pytest.mark.asyncio
    async def test_not_enough_entries(self, fill_level, matrix_engine, waiting_count):
        await fill_level(6)

        assert await matrix_engine.can_process_cycle(1) is False
        with pytest.raises(CycleAborted):
            await matrix_engine.process_cycle(1)
        assert await waiting_count(1) == 6

    @pytest.mark.asyncio
    async def test_invalid_level(self, matrix_engine):
        with pytest.raises(InvalidLevel):
            await matrix_engine.process_cycle(11)


class TestReferralBonus:
    """Test the bonus paid from the BONUS SOURCE position."""

    @pytest.mark.asyncio
    async def test_ten_referrals_pay_full_bonus(
        self, make_user, fill_level, matrix_engine, session_maker, load, reconcile
    ):
        referrer = await make_user()
        for _ in range(3):
            await make_user(referrer_id=referrer.id)
        entries = await fill_level(7, referrer_id=referrer.id)

        result = await matrix_engine.process_cycle(1)

        assert result.bonus_paid == Decimal("4")
        assert result.bonus_referrer_id == referrer.id
        assert result.by_role(CycleRole.BONUS_SOURCE)[0].amount == Decimal("4")
        assert (await load(User, referrer.id)).balance == Decimal("4")
        assert (await load(User, referrer.id)).total_bonus == Decimal("4")

        async with session_maker() as session:
            bonus = (await session.execute(select(BonusHistory))).scalar_one()
            assert bonus.source_user_id == entries[5].user_id
            assert bonus.rate == Decimal("0.40")

            level = await LevelRepository(session).get_by_number(1)
            assert level.cash_balance == Decimal("46")

        assert (await reconcile()).balanced

    @pytest.mark.asyncio
    async def test_five_referrals_pay_partial_bonus(
        self, make_user, fill_level, matrix_engine, load
    ):
        referrer = await make_user()
        await fill_level(7, referrer_id=referrer.id)

        result = await matrix_engine.process_cycle(1)

        assert result.bonus_paid == Decimal("2")
        assert (await load(User, referrer.id)).balance == Decimal("2")

    @pytest.mark.asyncio
    async def test_inactive_referrer_earns_nothing(
        self, make_user, fill_level, matrix_engine, session_maker
    ):
        referrer = await make_user(status=UserStatus.SUSPENDED)
        await fill_level(7, referrer_id=referrer.id)

        result = await matrix_engine.process_cycle(1)

        assert result.bonus_paid == Decimal("0")
        assert result.bonus_referrer_id is None
        async with session_maker() as session:
            count = (await session.execute(select(func.count(BonusHistory.id)))).scalar()
            assert count == 0

    @pytest.mark.asyncio
    async def test_custom_rate_is_capped(
        self, make_user, fill_level, session_maker, clock, reconcile
    ):
        async def generous(session, referrer_id, level):
            return Decimal("1")

        referrer = await make_user()
        await fill_level(7, referrer_id=referrer.id)
        engine = MatrixEngine(session_maker, bonus_rate=generous, clock=clock)

        result = await engine.process_cycle(1)

        # min(entry value * rate, bonus value)
        assert result.bonus_paid == Decimal("4")
        assert (await reconcile()).balanced


class TestJupiterPool:
    """Test shortfall cover at a level fed only by advances."""

    @pytest.mark.asyncio
    async def test_empty_pool_aborts_cycle(
        self, seed_advanced, matrix_engine, waiting_count, load
    ):
        entries = await seed_advanced(7, level_number=2)

        with pytest.raises(CycleAborted):
            await matrix_engine.process_cycle(2)

        assert await waiting_count(2) == 7
        assert (await load(User, entries[0].user_id)).balance == Decimal("0")
        assert (await load(QueueEntry, entries[1].id)).reentries == 0

    @pytest.mark.asyncio
    async def test_pool_covers_shortfall(
        self, seed_advanced, matrix_engine, session_maker, load, reconcile
    ):
        entries = await seed_advanced(7, level_number=2)
        await matrix_engine.fund_pool(Decimal("100"))

        result = await matrix_engine.process_cycle(2)

        assert result.pool_withdrawal == Decimal("40")
        assert (await load(User, entries[0].user_id)).balance == Decimal("40")
        async with session_maker() as session:
            pool = await SystemFundsRepository(session).get_pool()
            level = await LevelRepository(session).get_by_number(2)
            assert pool.balance == Decimal("60")
            assert pool.total_withdrawals == Decimal("40")
            assert level.cash_balance == Decimal("0")

        assert (await reconcile()).balanced


class TestTerminalLevel:
    """Test level 10, which has no next level."""

    @pytest.mark.asyncio
    async def test_advance_becomes_reentry(
        self, fill_level, matrix_engine, waiting_count, load, reconcile
    ):
        entries = await fill_level(7, level_number=10)

        result = await matrix_engine.process_cycle(10)

        assert result.reward_paid == Decimal("10240")
        advances = result.by_role(CycleRole.ADVANCE)
        assert len(advances) == 2
        assert all(p.new_entry_id is None for p in advances)
        for index in (2, 4):
            entry = await load(QueueEntry, entries[index].id)
            assert entry.status == QueueEntryStatus.WAITING
            assert entry.reentries == 1
        assert await waiting_count(10) == 5
        assert (await reconcile()).balanced


class TestSurplusSweep:
    """Test moving level cash above the reserve threshold."""

    @pytest.mark.asyncio
    async def test_sweep_after_cycle(self, fill_level, session_maker, clock, reconcile):
        await fill_level(7)
        engine = MatrixEngine(session_maker, clock=clock, sweep_surplus=True)

        result = await engine.process_cycle(1)

        # 70 in, 20 paid, 3 waiting entries keep 30
        sweep = result.sweep
        assert sweep.amount == Decimal("20")
        assert sweep.to_reserve == Decimal("2")
        assert sweep.to_operational == Decimal("2")
        assert sweep.to_profit == Decimal("8")
        assert sweep.to_pool == Decimal("8")

        async with session_maker() as session:
            level = await LevelRepository(session).get_by_number(1)
            funds = await SystemFundsRepository(session).get_funds()
            pool = await SystemFundsRepository(session).get_pool()
            assert level.cash_balance == Decimal("30")
            assert funds.profit == Decimal("8")
            assert pool.balance == Decimal("8")

        assert (await reconcile()).balanced

    @pytest.mark.asyncio
    async def test_disabled_by_default(self, fill_level, matrix_engine):
        await fill_level(7)

        result = await matrix_engine.process_cycle(1)

        assert result.sweep is None


class TestCycleAtomicity:
    """Test that a failing cycle leaves no trace and halts the level."""

    @pytest.mark.asyncio
    async def test_integrity_failure_rolls_back_and_halts(
        self,
        fill_level,
        matrix_engine,
        session_maker,
        waiting_count,
        load,
        reconcile,
        monkeypatch,
    ):
        entries = await fill_level(7)

        def unbalanced(self, before, after, level_number):
            raise LedgerIntegrityError("forced mismatch")

        monkeypatch.setattr(CycleProcessor, "_verify_conservation", unbalanced)

        with pytest.raises(LedgerIntegrityError):
            await matrix_engine.process_cycle(1)

        assert await waiting_count(1) == 7
        assert await waiting_count(2) == 0
        assert (await load(User, entries[0].user_id)).balance == Decimal("0")
        async with session_maker() as session:
            level = await LevelRepository(session).get_by_number(1)
            assert level.is_halted is True
            assert "forced mismatch" in level.halted_reason
            assert level.cash_balance == Decimal("70")
            assert level.total_cycles == 0
            count = (await session.execute(select(func.count(CycleHistory.id)))).scalar()
            assert count == 0
        assert (await reconcile()).balanced

        # Halted level refuses further cycles until resumed
        assert await matrix_engine.can_process_cycle(1) is False
        with pytest.raises(LevelHalted):
            await matrix_engine.process_cycle(1)

        monkeypatch.undo()
        await matrix_engine.resume_level(1)
        result = await matrix_engine.process_cycle(1)
        assert result.receiver.user_id == entries[0].user_id
