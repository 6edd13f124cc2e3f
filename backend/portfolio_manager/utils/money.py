# backend/portfolio_manager/utils/money.py
"""
Monetary helpers.

Every amount in the valuation engine is a Decimal. Values coming from
tests, CSV-derived fixtures or drivers that return floats are converted via
their string form so 0.1 stays 0.1.
"""

from decimal import Decimal, ROUND_HALF_UP

# Two decimal places for all reported amounts
MONEY_PRECISION = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Decimal | int | float | str | None) -> Decimal:
    """
    Convert a numeric value to Decimal.

    None is treated as zero (nullable numeric columns).
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Decimal | int | float) -> Decimal:
    """
    Round to two decimal places, halves away from zero.

    Examples:
        >>> round_money(Decimal("2.345"))
        Decimal('2.35')
        >>> round_money(Decimal("-2.345"))
        Decimal('-2.35')
    """
    return to_decimal(value).quantize(MONEY_PRECISION, rounding=ROUND_HALF_UP)
