"""Decimal helpers for cash and prices."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Round a number to whole cents (half-up)."""
    if not isinstance(value, Decimal):
        # str() keeps floats like 150.1 from turning into 150.0999999...
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_money(raw: str | None) -> Decimal | None:
    """Parse user input into a finite Decimal, or None if it isn't one."""
    if raw is None:
        return None
    text = raw.strip().replace(",", "")
    if not text:
        return None
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value
