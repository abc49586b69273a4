"""Pytest configuration and shared fixtures for all tests."""

import os

# Minimal environment, set before atlas.config.settings is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from atlas.config.levels import level_value
from atlas.models import Base, QueueEntry, User
from atlas.models.enums import QueueEntryOrigin, QueueEntryStatus, UserStatus
from atlas.repositories.funds_repository import SystemFundsRepository
from atlas.repositories.level_repository import LevelRepository
from atlas.services.funds.ledger import SystemFundsLedger
from atlas.services.matrix.engine import MatrixEngine
from atlas.services.matrix.queue_service import QueueService
from atlas.services.matrix.quota_service import QuotaService

START = datetime(2026, 1, 5, 12, 0, tzinfo=UTC)


class FakeClock:
    """Controllable clock; advance() moves time forward."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def mock_session():
    """Mock AsyncSession for tests without a database."""
    session = AsyncMock()
    session.execute = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    return session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite database with the full schema and seeded ledger rows."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    async with maker() as session:
        await LevelRepository(session).seed()
        await SystemFundsRepository(session).seed()
        await session.commit()

    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def make_user(session_maker) -> Callable:
    """
    Factory creating a committed user, optionally funded by a deposit.

    Usage:
        user = await make_user(balance=Decimal("100"), referrer_id=other.id)
    """
    counter = {"n": 0}

    async def _make(
        balance: Decimal = Decimal("0"),
        status: UserStatus = UserStatus.ACTIVE,
        referrer_id: int | None = None,
        is_kyc_verified: bool = False,
        pin: str | None = None,
    ) -> User:
        counter["n"] += 1
        async with session_maker() as session:
            user = User(
                email=f"user{counter['n']}@example.com",
                name=f"User {counter['n']}",
                status=status,
                referrer_id=referrer_id,
                is_kyc_verified=is_kyc_verified,
            )
            if pin:
                user.set_pin(pin)
            session.add(user)
            await session.flush()
            if balance > 0:
                await SystemFundsLedger(session).credit_deposit(user.id, balance)
            await session.commit()
            return user

    return _make


@pytest.fixture
def buy_quota(session_maker, clock) -> Callable:
    """Factory buying a quota in its own committed transaction."""

    async def _buy(user_id: int, level_number: int = 1) -> QueueEntry:
        async with session_maker() as session:
            entry = await QuotaService(session, clock).purchase_quota(user_id, level_number)
            await session.commit()
            return entry

    return _buy


@pytest.fixture
def fill_level(make_user, buy_quota, clock) -> Callable:
    """
    Create funded users and buy one quota each, one minute apart.

    Earlier buyers rank first, so the returned list is in cycle order.
    """

    async def _fill(count: int = 7, level_number: int = 1, **user_kwargs) -> list[QueueEntry]:
        entries = []
        for _ in range(count):
            user = await make_user(balance=level_value(level_number), **user_kwargs)
            entries.append(await buy_quota(user.id, level_number))
            clock.advance(minutes=1)
        return entries

    return _fill


@pytest.fixture
def reconcile(session_maker) -> Callable:
    """Reconcile the ledger in a fresh session."""

    async def _reconcile():
        async with session_maker() as session:
            return await SystemFundsLedger(session).reconcile()

    return _reconcile


@pytest.fixture
def load(session_maker) -> Callable:
    """Read a row in a fresh session, e.g. ``await load(User, user.id)``."""

    async def _load(model, id: int):
        async with session_maker() as session:
            return await session.get(model, id)

    return _load


@pytest.fixture
def seed_advanced(make_user, session_maker, clock) -> Callable:
    """Admit entries by advance, which brings no cash to the level."""

    async def _seed(count: int = 7, level_number: int = 2) -> list[QueueEntry]:
        users = [await make_user() for _ in range(count)]
        entries = []
        async with session_maker() as session:
            service = QueueService(session, clock)
            for user in users:
                entries.append(
                    await service.add_to_queue(
                        user.id, level_number, origin=QueueEntryOrigin.ADVANCE
                    )
                )
                clock.advance(minutes=1)
            await session.commit()
        return entries

    return _seed


@pytest.fixture
def matrix_engine(session_maker, clock) -> MatrixEngine:
    return MatrixEngine(session_maker, clock=clock, retry_backoff_ms=0)


@pytest.fixture
def waiting_count(session_maker) -> Callable:
    """Count WAITING entries of a level in a fresh session."""

    async def _count(level_number: int) -> int:
        async with session_maker() as session:
            stmt = select(func.count(QueueEntry.id)).where(
                QueueEntry.level_number == level_number,
                QueueEntry.status == QueueEntryStatus.WAITING,
            )
            return (await session.execute(stmt)).scalar()

    return _count
