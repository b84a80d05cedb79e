from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import ValidationError


# Selling prices are VAT-inclusive at a single fixed rate.
VAT_RATE = Decimal("0.15")
VAT_DIVISOR = Decimal("1") + VAT_RATE
MONEY_Q = Decimal("0.01")
# Upper bound for operator-entered amounts.
MAX_AMOUNT = Decimal("1000000000000")
ZERO = Decimal("0")


def q_money(v: Decimal) -> Decimal:
    return (v or ZERO).quantize(MONEY_Q, rounding=ROUND_HALF_UP)


def to_decimal(v: Any) -> Decimal:
    # Lenient: store rows carry blanks and junk where a number should be.
    try:
        if v is None:
            return ZERO
        s = str(v).strip()
        if not s:
            return ZERO
        d = Decimal(s)
    except (InvalidOperation, ValueError):
        return ZERO
    return d if d.is_finite() else ZERO


def parse_amount(v: Any, field_name: str = "amount") -> Decimal:
    """Strict variant of to_decimal for operator input: rejects junk and negatives."""
    if isinstance(v, bool):
        raise ValidationError(f"{field_name} must be a number")
    try:
        d = Decimal(str(v).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a number") from None
    if not d.is_finite():
        raise ValidationError(f"{field_name} must be a number")
    if d < 0:
        raise ValidationError(f"{field_name} must be >= 0")
    if d > MAX_AMOUNT:
        raise ValidationError(f"{field_name} is too large")
    return d


def parse_quantity(v: Any, field_name: str = "qty") -> int:
    if isinstance(v, bool):
        raise ValidationError(f"{field_name} must be a whole number")
    if isinstance(v, int):
        return v
    try:
        d = Decimal(str(v).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a whole number") from None
    if not d.is_finite() or d != d.to_integral_value():
        raise ValidationError(f"{field_name} must be a whole number")
    return int(d)


def price_before_tax(gross: Decimal) -> Decimal:
    return to_decimal(gross) / VAT_DIVISOR


def tax_component(gross: Decimal) -> Decimal:
    gross = to_decimal(gross)
    return gross - price_before_tax(gross)
