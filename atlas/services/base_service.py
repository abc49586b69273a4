"""
Base service class.

Services share one AsyncSession with the repositories they build and a
loguru logger bound to the service name. ``transaction`` makes a method
the unit of commit.
"""

import functools
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from atlas.utils.exceptions import MatrixError

T = TypeVar("T")


@dataclass
class ServiceResult:
    """Outcome of an operation that reports rejections instead of raising."""

    success: bool
    data: Any = None
    error: str | None = None
    error_code: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> "ServiceResult":
        return cls(success=True, data=data)

    @classmethod
    def from_error(cls, error: MatrixError) -> "ServiceResult":
        return cls(success=False, error=error.reason, error_code=error.code)


class BaseService:
    """Holds the session and a logger bound with ``service=<class name>``."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.logger = logger.bind(service=type(self).__name__)

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


def transaction(func: Callable[..., T]) -> Callable[..., T]:
    """
    Commit after the method returns, roll back if it raises.

    Business rejections (MatrixError) are logged at INFO with their code;
    anything else is logged with a traceback. The exception is re-raised
    either way.

    Usage:
        @transaction
        async def purchase_quota(self, user_id: int, level_number: int):
            ...
    """

    @functools.wraps(func)
    async def wrapper(self: BaseService, *args: Any, **kwargs: Any) -> Any:
        try:
            result = await func(self, *args, **kwargs)
        except MatrixError as e:
            await self.rollback()
            self.logger.info(
                f"{func.__name__} rejected: {e.code}",
                extra={"operation": func.__name__, "reason": e.reason},
            )
            raise
        except Exception:
            await self.rollback()
            self.logger.exception(f"{func.__name__} failed, transaction rolled back")
            raise
        await self.commit()
        return result

    return wrapper


def log_operation(func: Callable[..., T]) -> Callable[..., T]:
    """Log the duration of a service call at DEBUG, and failures at WARNING."""

    @functools.wraps(func)
    async def wrapper(self: BaseService, *args: Any, **kwargs: Any) -> Any:
        started = time.perf_counter()
        try:
            result = await func(self, *args, **kwargs)
        except Exception as e:
            self.logger.warning(
                f"{func.__name__} failed after {time.perf_counter() - started:.3f}s: "
                f"{type(e).__name__}"
            )
            raise
        self.logger.debug(f"{func.__name__} took {time.perf_counter() - started:.3f}s")
        return result

    return wrapper
