"""Unit tests for money rounding and wait estimates."""

from decimal import Decimal

import pytest

from atlas.services.matrix.queue_service import estimate_wait, estimate_wait_days
from atlas.utils.formatters import format_money, format_wait, quantize_money


class TestQuantizeMoney:
    def test_rounds_to_eight_places(self):
        assert quantize_money(Decimal("1.123456789")) == Decimal("1.12345679")

    def test_half_up(self):
        assert quantize_money(Decimal("0.000000005")) == Decimal("0.00000001")

    def test_format_money(self):
        assert format_money(Decimal("1234.5")) == "$1,234.50"


class TestFormatWait:
    """Test human-readable wait strings."""

    @pytest.mark.parametrize(
        "days, text",
        [
            (None, "Calculating..."),
            (0.01, "< 1 hour"),
            (0.25, "~6 hours"),
            (1, "~1 day"),
            (3.4, "~3 days"),
            (14, "~2 weeks"),
        ],
    )
    def test_format(self, days, text):
        assert format_wait(days) == text


class TestEstimateWait:
    """Each cycle consumes seven entries from the front."""

    def test_no_throughput(self):
        assert estimate_wait_days(5, 0) is None
        assert estimate_wait(5, 0) == "Calculating..."

    def test_first_cycle(self):
        assert estimate_wait_days(7, 1.0) == 1.0

    def test_second_cycle(self):
        assert estimate_wait_days(8, 2.0) == 1.0

    def test_text(self):
        assert estimate_wait(21, 1.0) == "~3 days"
