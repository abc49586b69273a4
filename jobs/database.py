"""
Database access for worker tasks.

Each worker thread runs task coroutines on its own event loop, so
connections are never shared between runs: the engine has no pool and
every task opens and closes its own connections.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from atlas.config.settings import settings
from atlas.services.matrix.engine import MatrixEngine

task_engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    poolclass=NullPool,
)

task_session_maker = async_sessionmaker(
    task_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


def task_matrix_engine() -> MatrixEngine:
    """MatrixEngine on the task session factory."""
    return MatrixEngine(task_session_maker)
