"""Unit tests for the session guard decorators."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.utils.db_decorators import commit_on_success, rollback_on_error


@pytest.fixture
def db_session():
    return AsyncMock(spec=AsyncSession)


class TestCommitOnSuccess:
    @pytest.mark.asyncio
    async def test_commits_and_returns(self, db_session):
        @commit_on_success
        async def seed(session):
            return 3

        assert await seed(db_session) == 3
        db_session.commit.assert_awaited_once()
        db_session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rolls_back_and_reraises(self, db_session):
        @commit_on_success
        async def seed(session):
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await seed(session=db_session)
        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()


class TestRollbackOnError:
    @pytest.mark.asyncio
    async def test_does_not_commit(self, db_session):
        class Holder:
            def __init__(self, session):
                self.session = session

            @rollback_on_error
            async def run(self):
                return "done"

        assert await Holder(db_session).run() == "done"
        db_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_session(self):
        @rollback_on_error
        async def orphan(value):
            return value

        with pytest.raises(TypeError):
            await orphan(1)
