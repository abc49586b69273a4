"""
Unit tests for PIN rules.

Tests cover:
- PIN format validation
- Progressive lockout durations
- PIN hashing on the user model
"""

import pytest

from atlas.models.user import User
from atlas.services.transfer.pin_service import lockout_minutes, validate_pin_format
from atlas.utils.exceptions import InvalidPinFormat


class TestPinFormat:
    """Test PIN format validation."""

    @pytest.mark.parametrize("pin", ["1234", "12345", "123456", "0000"])
    def test_valid_pins(self, pin):
        assert validate_pin_format(pin) == pin

    @pytest.mark.parametrize("pin", ["123", "1234567", "12a4", "", "12 34", "-123"])
    def test_invalid_pins(self, pin):
        with pytest.raises(InvalidPinFormat):
            validate_pin_format(pin)

    def test_non_string_rejected(self):
        with pytest.raises(InvalidPinFormat):
            validate_pin_format(1234)


class TestLockoutMinutes:
    """Test lock durations per failure count."""

    @pytest.mark.parametrize(
        "attempts,minutes",
        [(0, 0), (2, 0), (3, 15), (5, 15), (6, 60), (8, 60), (9, 1440), (15, 1440)],
    )
    def test_thresholds(self, attempts, minutes):
        assert lockout_minutes(attempts) == minutes


class TestUserPinHash:
    """Test bcrypt hashing on the model."""

    def test_set_and_verify(self):
        user = User(email="pin@example.com")
        user.set_pin("4321")
        assert user.has_pin
        assert user.pin_hash != "4321"
        assert user.verify_pin("4321") is True
        assert user.verify_pin("1234") is False

    def test_set_pin_resets_lockout(self):
        user = User(email="pin@example.com", pin_attempts=4)
        user.set_pin("4321")
        assert user.pin_attempts == 0
        assert user.pin_locked_until is None

    def test_verify_without_pin(self):
        user = User(email="pin@example.com")
        assert user.has_pin is False
        assert user.verify_pin("1234") is False
