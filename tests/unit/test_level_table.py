"""
Unit tests for the level table.

Tests cover:
- Entry values doubling from 10 to 5120
- Reward and bonus ratios
- Level validation
- Advance target of the terminal level
"""

from decimal import Decimal

import pytest

from atlas.config.levels import (
    LEVELS,
    MAX_LEVEL,
    bonus_value,
    get_level_config,
    is_valid_level,
    level_value,
    next_level,
    reward_value,
)
from atlas.utils.exceptions import InvalidLevel


class TestLevelValues:
    """Test level value configuration."""

    def test_ten_levels_defined(self):
        assert sorted(LEVELS) == list(range(1, 11))

    def test_entry_values_double(self):
        """Entry values are 10, 20, 40, ..., 5120."""
        expected = [Decimal(10 * 2**i) for i in range(10)]
        assert [level_value(n) for n in range(1, 11)] == expected

    def test_terminal_entry_value(self):
        assert level_value(10) == Decimal("5120")

    @pytest.mark.parametrize("level", range(1, 11))
    def test_reward_is_twice_entry(self, level):
        assert reward_value(level) == level_value(level) * 2

    @pytest.mark.parametrize("level", range(1, 11))
    def test_bonus_is_forty_percent_of_entry(self, level):
        assert bonus_value(level) == level_value(level) * Decimal("0.40")

    def test_config_fields_consistent(self):
        config = get_level_config(3)
        assert config.level_number == 3
        assert config.entry_value == Decimal("40")
        assert config.reward_value == Decimal("80")
        assert config.bonus_value == Decimal("16")


class TestLevelValidation:
    """Test level number validation."""

    @pytest.mark.parametrize("level", [0, 11, -1, 100])
    def test_out_of_range_rejected(self, level):
        assert is_valid_level(level) is False
        with pytest.raises(InvalidLevel):
            get_level_config(level)

    @pytest.mark.parametrize("level", ["1", 1.0, None, True])
    def test_non_integer_rejected(self, level):
        assert is_valid_level(level) is False
        with pytest.raises(InvalidLevel):
            level_value(level)

    def test_invalid_level_error_code(self):
        with pytest.raises(InvalidLevel) as exc_info:
            get_level_config(0)
        assert exc_info.value.code == "INVALID_LEVEL"
        assert exc_info.value.category == "validation"


class TestNextLevel:
    """Test advance targets."""

    def test_advance_moves_up_one_level(self):
        assert next_level(1) == 2
        assert next_level(9) == 10

    def test_terminal_level_maps_to_itself(self):
        assert next_level(MAX_LEVEL) == MAX_LEVEL
