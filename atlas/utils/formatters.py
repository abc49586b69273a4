"""
Formatters utility.

Utility functions for formatting money and durations.
"""

from decimal import ROUND_HALF_UP, Decimal

MONEY_QUANT = Decimal("0.00000001")


def quantize_money(amount: Decimal) -> Decimal:
    """
    Round amount to the precision of money columns (8 places).

    Args:
        amount: Raw decimal amount

    Returns:
        Rounded amount
    """
    return Decimal(amount).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal) -> str:
    """Format amount as ``$1,234.50``."""
    return f"${Decimal(amount):,.2f}"


def format_wait(days: float | None) -> str:
    """
    Human-readable waiting estimate.

    Args:
        days: Estimated days, or None when there is no cycle history

    Returns:
        Text like "< 1 hour", "~5 hours", "~3 days", "~2 weeks"
    """
    if days is None:
        return "Calculating..."
    if days < 0.04:
        return "< 1 hour"
    if days < 1:
        hours = max(1, round(days * 24))
        return f"~{hours} hour{'s' if hours > 1 else ''}"
    if days < 7:
        whole = round(days)
        return f"~{whole} day{'s' if whole > 1 else ''}"
    weeks = round(days / 7)
    return f"~{weeks} week{'s' if weeks > 1 else ''}"
