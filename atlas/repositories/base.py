"""
Base repository.

Shared lookups for the matrix repositories. Every locking read goes
through ``_locked`` so that rows are reloaded from the database after
the lock is granted.
"""

from typing import Any, Generic, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Repository bound to one model and one session.

    Subclasses pass their model:
        class LevelRepository(BaseRepository[Level]):
            def __init__(self, session: AsyncSession):
                super().__init__(Level, session)
    """

    def __init__(self, model: type[ModelType], session: AsyncSession) -> None:
        self.model = model
        self.session = session

    async def _locked(self, stmt: Select, skip_locked: bool = False) -> Select:
        """
        Turn a select into SELECT ... FOR UPDATE that refreshes loaded rows.

        Pending changes are flushed first; populate_existing would
        otherwise overwrite them with the stored state.
        """
        await self.session.flush()
        return stmt.with_for_update(skip_locked=skip_locked).execution_options(
            populate_existing=True
        )

    async def get_by_id(self, id: int, for_update: bool = False) -> ModelType | None:
        """
        Fetch a row by primary key.

        Args:
            id: Row ID
            for_update: Lock the row and reload its current state

        Returns:
            Row or None
        """
        if not for_update:
            return await self.session.get(self.model, id)
        stmt = await self._locked(select(self.model).where(self.model.id == id))
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by(self, **filters: Any) -> ModelType | None:
        result = await self.session.execute(select(self.model).filter_by(**filters))
        return result.scalar_one_or_none()

    async def exists(self, **filters: Any) -> bool:
        stmt = select(self.model.id).filter_by(**filters).limit(1)
        result = await self.session.execute(stmt)
        return result.first() is not None

    async def create(self, **data: Any) -> ModelType:
        """Insert a row and flush so that its id and defaults are loaded."""
        entity = self.model(**data)
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity
