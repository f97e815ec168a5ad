"""
Money helpers

Wallet amounts are kept at 4 decimal places; ledger and safety limits work in
integer cents.
"""

import math
from typing import Any, Optional


def to_number(value: Any, fallback: Optional[float] = None) -> Optional[float]:
    """Coerce to a finite float, or return fallback."""
    if value is None or isinstance(value, bool):
        return fallback
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    return number if math.isfinite(number) else fallback


def to_money(value: Any) -> float:
    """Round to 4 decimal places (0 for non-numeric input)."""
    return round(to_number(value, 0.0), 4)


def to_cents(value: Any) -> Optional[int]:
    """Convert a money amount to integer cents."""
    number = to_number(value)
    if number is None:
        return None
    return int(round(number * 100))


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
