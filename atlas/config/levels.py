"""
Single source of truth for the matrix level table.

Entry values double from level to level (10, 20, 40, ..., 5120). Reward and
bonus values are fixed ratios of the entry value. Every other module must
import level values from here.
"""

from decimal import Decimal
from typing import NamedTuple

from atlas.utils.exceptions import InvalidLevel

MIN_LEVEL = 1
MAX_LEVEL = 10

# Number of queue entries matched together in one cycle
CYCLE_SIZE = 7

BASE_ENTRY_VALUE = Decimal("10")
REWARD_MULTIPLIER = Decimal("2")
BONUS_RATIO = Decimal("0.40")


class LevelConfig(NamedTuple):
    """Static configuration of a matrix level."""

    level_number: int
    entry_value: Decimal  # Quota price
    reward_value: Decimal  # Paid to the RECEIVER position
    bonus_value: Decimal  # Maximum referral bonus for the BONUS SOURCE position
    display_name: str


def _build_level(level_number: int) -> LevelConfig:
    entry = BASE_ENTRY_VALUE * (2 ** (level_number - 1))
    return LevelConfig(
        level_number=level_number,
        entry_value=entry,
        reward_value=entry * REWARD_MULTIPLIER,
        bonus_value=entry * BONUS_RATIO,
        display_name=f"Level {level_number}",
    )


LEVELS: dict[int, LevelConfig] = {
    n: _build_level(n) for n in range(MIN_LEVEL, MAX_LEVEL + 1)
}


def is_valid_level(level: int) -> bool:
    """Check that level number is inside the table."""
    return isinstance(level, int) and not isinstance(level, bool) and (
        MIN_LEVEL <= level <= MAX_LEVEL
    )


def get_level_config(level: int) -> LevelConfig:
    """
    Get level configuration.

    Args:
        level: Level number (1-10)

    Returns:
        LevelConfig for the level

    Raises:
        InvalidLevel: If level is outside the table
    """
    if not is_valid_level(level):
        raise InvalidLevel(level)
    return LEVELS[level]


def level_value(level: int) -> Decimal:
    """Entry value (quota price) of a level: 10 * 2^(n-1)."""
    return get_level_config(level).entry_value


def reward_value(level: int) -> Decimal:
    """Reward paid to the receiver of a level cycle: 2 * entry value."""
    return get_level_config(level).reward_value


def bonus_value(level: int) -> Decimal:
    """Maximum referral bonus of a level cycle: 0.4 * entry value."""
    return get_level_config(level).bonus_value


def next_level(level: int) -> int:
    """
    Level that ADVANCE positions move to.

    The terminal level has no successor, so it maps onto itself.
    """
    get_level_config(level)
    return min(level + 1, MAX_LEVEL)
