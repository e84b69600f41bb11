from __future__ import annotations

from decimal import Decimal


def format_units(value: int, decimals: int) -> Decimal:
    """Convert a raw integer token amount into whole units.

    Args:
        value: Integer amount expressed with ``decimals`` decimal places.
        decimals: Token decimal precision.

    Returns:
        The amount as an exact ``Decimal``.
    """
    if decimals == 0:
        return Decimal(value)
    return Decimal(value) / (Decimal(10) ** decimals)


def percent_of(value: int, percent: int) -> int:
    """Return ``percent`` of a raw amount using integer floor division."""
    if value <= 0 or percent <= 0:
        return 0
    return value * percent // 100


def usd_value(value: int, decimals: int, price: Decimal | float) -> float:
    """Estimate the USD value of a raw token amount at ``price``."""
    return float(format_units(value, decimals) * Decimal(str(price)))
