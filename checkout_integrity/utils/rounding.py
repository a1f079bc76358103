"""Rounding shared by scores and rates."""

from decimal import ROUND_HALF_UP, Decimal


def round_half_up(value: float) -> int:
    """Nearest integer with halves rounded up (2.5 -> 3), unlike built-in round()."""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
