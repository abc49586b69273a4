"""
Integration tests for quota purchase.

Tests cover:
- Successful purchase debits the user and books level cash
- Quota cap, balance and status rules
- Pre-check without side effects
- Batch purchase booked all or nothing
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from atlas.models import QueueEntry, Transaction, User
from atlas.models.enums import QueueEntryOrigin, QueueEntryStatus, TransactionType, UserStatus
from atlas.repositories.funds_repository import SystemFundsRepository
from atlas.repositories.level_repository import LevelRepository
from atlas.services.matrix.queue_service import QueueService
from atlas.services.matrix.quota_service import QuotaService
from atlas.utils.exceptions import (
    InsufficientBalance,
    InvalidLevel,
    InvalidQuantity,
    QuotaLimitExceeded,
    UserNotActive,
    UserNotFound,
)


class TestPurchaseQuota:
    """Test quota purchase bookkeeping."""

    @pytest.mark.asyncio
    async def test_purchase_books_value(self, make_user, buy_quota, session_maker, load, reconcile):
        user = await make_user(balance=Decimal("25"))

        entry = await buy_quota(user.id, 1)

        assert entry.status == QueueEntryStatus.WAITING
        assert entry.origin == QueueEntryOrigin.PURCHASE
        assert entry.quota_number == 1
        assert entry.reentries == 0

        refreshed = await load(User, user.id)
        assert refreshed.balance == Decimal("15")

        async with session_maker() as session:
            level = await LevelRepository(session).get_by_number(1)
            funds = await SystemFundsRepository(session).get_funds()
            assert level.cash_balance == Decimal("10")
            assert level.total_users == 1
            assert funds.total_in == Decimal("10")

            tx_types = (
                await session.execute(
                    select(Transaction.type).where(Transaction.user_id == user.id)
                )
            ).scalars().all()
            assert TransactionType.QUOTA_PURCHASE in tx_types

        assert (await reconcile()).balanced

    @pytest.mark.asyncio
    async def test_quota_numbers_increase(self, make_user, buy_quota):
        user = await make_user(balance=Decimal("30"))

        numbers = [(await buy_quota(user.id, 1)).quota_number for _ in range(3)]

        assert numbers == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_quota_cap(self, make_user, buy_quota, session_maker, load):
        user = await make_user(balance=Decimal("200"))
        for _ in range(10):
            await buy_quota(user.id, 1)

        with pytest.raises(QuotaLimitExceeded) as exc_info:
            await buy_quota(user.id, 1)
        assert exc_info.value.limit == 10

        # Rejected purchase left the balance untouched
        assert (await load(User, user.id)).balance == Decimal("100")

        # Other levels have their own cap
        entry = await buy_quota(user.id, 2)
        assert entry.level_number == 2

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, make_user, buy_quota, session_maker):
        user = await make_user(balance=Decimal("15"))

        with pytest.raises(InsufficientBalance) as exc_info:
            await buy_quota(user.id, 2)

        assert exc_info.value.required == Decimal("20")
        async with session_maker() as session:
            count = (await session.execute(select(func.count(QueueEntry.id)))).scalar()
            assert count == 0

    @pytest.mark.asyncio
    async def test_inactive_user_rejected(self, make_user, buy_quota):
        user = await make_user(balance=Decimal("10"), status=UserStatus.PENDING)

        with pytest.raises(UserNotActive):
            await buy_quota(user.id, 1)

    @pytest.mark.asyncio
    async def test_unknown_user(self, buy_quota):
        with pytest.raises(UserNotFound):
            await buy_quota(9999, 1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("level", [0, 11, -1])
    async def test_invalid_level(self, make_user, buy_quota, level):
        user = await make_user(balance=Decimal("10"))

        with pytest.raises(InvalidLevel):
            await buy_quota(user.id, level)


class TestCanPurchaseQuota:
    """Test the read-only pre-check."""

    @pytest.mark.asyncio
    async def test_allowed(self, make_user, session):
        user = await make_user(balance=Decimal("10"))

        check = await QuotaService(session).can_purchase_quota(user.id, 1)

        assert check.allowed is True
        assert check.reason is None

    @pytest.mark.asyncio
    async def test_rejected_with_code(self, make_user, session):
        user = await make_user(balance=Decimal("5"))

        check = await QuotaService(session).can_purchase_quota(user.id, 1)

        assert check.allowed is False
        assert check.error_code == "INSUFFICIENT_BALANCE"

    @pytest.mark.asyncio
    async def test_cap_override(self, make_user, buy_quota, session):
        user = await make_user(balance=Decimal("30"))
        await buy_quota(user.id, 1)
        await buy_quota(user.id, 1)

        service = QuotaService(session, max_quotas_per_level=2)
        check = await service.can_purchase_quota(user.id, 1)

        assert check.allowed is False
        assert check.error_code == "QUOTA_LIMIT_EXCEEDED"
        assert await service.count_user_quotas(user.id, 1) == 2

    @pytest.mark.asyncio
    async def test_invalid_level_raises(self, session):
        with pytest.raises(InvalidLevel):
            await QuotaService(session).can_purchase_quota(1, 12)


class TestPurchaseQuotas:
    """Test buying several quotas in one transaction."""

    @pytest.mark.asyncio
    async def test_batch_books_each_quota(
        self, make_user, matrix_engine, session, session_maker, load, reconcile
    ):
        user = await make_user(balance=Decimal("35"))

        entries = await matrix_engine.purchase_quotas(user.id, 1, 3)

        assert [entry.quota_number for entry in entries] == [1, 2, 3]
        assert (await load(User, user.id)).balance == Decimal("5")

        async with session_maker() as check:
            level = await LevelRepository(check).get_by_number(1)
            assert level.cash_balance == Decimal("30")
            assert level.total_users == 3
            purchases = (
                await check.execute(
                    select(func.count(Transaction.id)).where(
                        Transaction.user_id == user.id,
                        Transaction.type == TransactionType.QUOTA_PURCHASE,
                    )
                )
            ).scalar()
            assert purchases == 3

        positions = await QueueService(session).get_all_user_positions(user.id, 1)
        assert [p.entry_id for p in positions] == [entry.id for entry in entries]
        assert [p.position for p in positions] == [1, 2, 3]
        assert all(p.total_in_queue == 3 for p in positions)

        assert (await reconcile()).balanced

    @pytest.mark.asyncio
    async def test_batch_over_cap_buys_nothing(self, make_user, matrix_engine, load, session):
        user = await make_user(balance=Decimal("110"))
        await matrix_engine.purchase_quotas(user.id, 1, 8)

        with pytest.raises(QuotaLimitExceeded):
            await matrix_engine.purchase_quotas(user.id, 1, 3)

        assert (await load(User, user.id)).balance == Decimal("30")
        assert await QuotaService(session).count_user_quotas(user.id, 1) == 8

    @pytest.mark.asyncio
    async def test_batch_needs_balance_for_all(self, make_user, matrix_engine, load, session):
        user = await make_user(balance=Decimal("25"))

        with pytest.raises(InsufficientBalance):
            await matrix_engine.purchase_quotas(user.id, 1, 3)

        assert (await load(User, user.id)).balance == Decimal("25")
        assert await QuotaService(session).count_user_quotas(user.id, 1) == 0
        check = await QuotaService(session).can_purchase_quota(user.id, 1, quantity=3)
        assert check.error_code == "INSUFFICIENT_BALANCE"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, 11, -2])
    async def test_invalid_quantity(self, make_user, matrix_engine, quantity):
        user = await make_user(balance=Decimal("200"))

        with pytest.raises(InvalidQuantity):
            await matrix_engine.purchase_quotas(user.id, 1, quantity)

    @pytest.mark.asyncio
    async def test_positions_empty_without_quotas(self, make_user, session):
        user = await make_user()

        assert await QueueService(session).get_all_user_positions(user.id, 1) == []
