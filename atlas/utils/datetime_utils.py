"""
Datetime utilities.

Provides timezone-aware datetime functions.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone info.

    Returns:
        Current datetime in UTC with timezone awareness
    """
    return datetime.now(UTC)


def ensure_aware(value: datetime) -> datetime:
    """
    Attach UTC to naive datetimes.

    SQLite returns naive values for timezone-aware columns.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def start_of_day(value: datetime) -> datetime:
    """Midnight UTC of the given moment's day."""
    value = ensure_aware(value).astimezone(UTC)
    return value.replace(hour=0, minute=0, second=0, microsecond=0)
