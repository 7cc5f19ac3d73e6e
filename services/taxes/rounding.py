"""Monetary rounding."""

from __future__ import annotations

from decimal import (
    ROUND_CEILING,
    ROUND_FLOOR,
    ROUND_HALF_DOWN,
    ROUND_HALF_EVEN,
    ROUND_HALF_UP,
    Decimal,
)
from enum import Enum


class RoundingMode(str, Enum):
    """Supported rounding modes for monetary outputs."""

    HALF_UP = "half_up"
    HALF_DOWN = "half_down"
    HALF_EVEN = "half_even"  # banker's rounding
    UP = "up"  # towards +infinity
    DOWN = "down"  # towards -infinity


_DECIMAL_ROUNDING = {
    RoundingMode.HALF_UP: ROUND_HALF_UP,
    RoundingMode.HALF_DOWN: ROUND_HALF_DOWN,
    RoundingMode.HALF_EVEN: ROUND_HALF_EVEN,
    RoundingMode.UP: ROUND_CEILING,
    RoundingMode.DOWN: ROUND_FLOOR,
}


def round_amount(
    amount: Decimal,
    precision: int = 2,
    mode: RoundingMode | str = RoundingMode.HALF_UP,
) -> Decimal:
    """
    Round a monetary amount to a number of decimal places.

    Args:
        amount: Amount to round.
        precision: Decimal places to keep (0 or more).
        mode: Rounding mode, as enum or its string value.

    Returns:
        The rounded amount.

    Raises:
        ValueError: If precision is negative or mode is unknown.
    """
    if precision < 0:
        msg = "precision cannot be negative"
        raise ValueError(msg)
    rounding = _DECIMAL_ROUNDING[RoundingMode(mode)]
    quantum = Decimal(1).scaleb(-precision)
    return amount.quantize(quantum, rounding=rounding)
