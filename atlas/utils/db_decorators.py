"""
Session guards for functions that receive an AsyncSession.

``rollback_on_error`` leaves committing to the caller; ``commit_on_success``
owns the whole transaction. Both re-raise the original exception after
rolling back.
"""

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


def _session_of(args: tuple[Any, ...], kwargs: dict[str, Any]) -> AsyncSession | None:
    """Session passed as ``session=``, as the first argument, or held by ``self``."""
    if isinstance(kwargs.get("session"), AsyncSession):
        return kwargs["session"]
    if not args:
        return None
    if isinstance(args[0], AsyncSession):
        return args[0]
    held = getattr(args[0], "session", None)
    return held if isinstance(held, AsyncSession) else None


def _guard(commit: bool) -> Callable[[Callable[..., T]], Callable[..., T]]:
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            session = _session_of(args, kwargs)
            if session is None:
                raise TypeError(f"{func.__name__} was called without an AsyncSession")
            try:
                result = await func(*args, **kwargs)
                if commit:
                    await session.commit()
                return result
            except Exception as e:
                await session.rollback()
                logger.info(f"Rolled back {func.__name__} after {type(e).__name__}")
                raise

        return wrapper

    return decorator


rollback_on_error = _guard(commit=False)
commit_on_success = _guard(commit=True)
