"""
Fixed-point money helpers.

Invariants (authoritative):
- Currency amounts are integer cents (2-decimal fixed point). Floats never
  take part in arithmetic.
- Rates (tax, percentage discounts) are percentages with 2 decimals, stored
  as integer hundredths of a percent (11.00% -> 1100 bps).
- Every rounding is half-away-from-zero and happens at each arithmetic step,
  never deferred to a final result.
"""

from __future__ import annotations

import enum
from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from typing import Any

from .validation import MAX_AMOUNT_CENTS, ValidationError


CENTS_PER_UNIT = 100
# 100.00% expressed in bps
FULL_RATE_BPS = 10_000

_TWO_PLACES = Decimal("0.01")


class PointsRounding(str, enum.Enum):
    """Rounding policy for loyalty points earned."""
    DOWN = "down"
    UP = "up"
    NEAREST = "nearest"

    @classmethod
    def parse(cls, value: Any) -> "PointsRounding":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.DOWN


def round_half_away(numerator: int, denominator: int) -> int:
    """Integer division rounded half away from zero."""
    if denominator <= 0:
        raise ValueError("denominator must be positive")
    quotient, remainder = divmod(abs(numerator), denominator)
    if remainder * 2 >= denominator:
        quotient += 1
    return quotient if numerator >= 0 else -quotient


def _to_decimal(value: Any, field: str) -> Decimal:
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        # shortest repr keeps 0.1 as 0.1 instead of its binary expansion
        result = Decimal(repr(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} is required", field=field)
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number", field=field)
    else:
        raise ValidationError(f"{field} must be a number", field=field)

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return result


def to_cents(value: Any, field: str = "amount", *, allow_negative: bool = False) -> int:
    """Parse a currency amount ("100.00", Decimal, int units) into integer cents."""
    amount = _to_decimal(value, field).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    if amount < 0 and not allow_negative:
        raise ValidationError(f"{field} must be >= 0", field=field)

    cents = int(amount * CENTS_PER_UNIT)
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {format_cents(MAX_AMOUNT_CENTS)}", field=field)
    return cents


def to_rate_bps(value: Any, field: str = "rate", *, maximum_percent: int = 100) -> int:
    """Parse a percentage with 2 decimals ("11", "11.00", Decimal("7.5")) into bps."""
    percent = _to_decimal(value, field).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    if percent < 0:
        raise ValidationError(f"{field} must be >= 0", field=field)
    if percent > maximum_percent:
        raise ValidationError(f"{field} cannot exceed {maximum_percent}%", field=field)
    return int(percent * CENTS_PER_UNIT)


def decimal_to_cents(value: Decimal) -> int:
    """Round an exact Decimal currency value to cents."""
    return int((value * CENTS_PER_UNIT).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def cents_to_decimal(cents: int) -> Decimal:
    return (Decimal(cents) / CENTS_PER_UNIT).quantize(_TWO_PLACES)


def multiply_cents(unit_cents: int, quantity: int) -> int:
    """round(unit_price * quantity, 2); exact in cents."""
    return unit_cents * quantity


def apply_rate(amount_cents: int, rate_bps: int) -> int:
    """round(amount * rate / 100, 2) with the rate stored in bps."""
    return round_half_away(amount_cents * rate_bps, FULL_RATE_BPS)


def round_points(value: Decimal, policy: PointsRounding) -> int:
    """Convert a fractional points amount to whole points per policy."""
    if policy is PointsRounding.UP:
        rounding = ROUND_CEILING
    elif policy is PointsRounding.NEAREST:
        rounding = ROUND_HALF_UP
    else:
        rounding = ROUND_FLOOR
    return int(value.to_integral_value(rounding=rounding))


def format_cents(cents: int | None) -> str | None:
    """Render cents as a plain 2-decimal string: 33300 -> '333.00'."""
    if cents is None:
        return None
    sign = "-" if cents < 0 else ""
    units, remainder = divmod(abs(cents), CENTS_PER_UNIT)
    return f"{sign}{units}.{remainder:02d}"


def format_rate_bps(rate_bps: int | None) -> str | None:
    """Render bps as a percentage string: 1100 -> '11.00'."""
    return format_cents(rate_bps)
