"""Helpers for two-decimal currency amounts."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from redpacket.errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
# Exclusive bound of a NUMERIC(12, 2) column
MAX_AMOUNT = Decimal("10000000000.00")


def quantize(value: Decimal) -> Decimal:
    """Round an amount to whole cents."""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value: Any, field: str = "amount") -> Decimal:
    """
    Convert a JSON value into a positive cent amount.

    Raises:
        ValidationError: if the value is missing, not numeric, not positive,
            finer than a cent, or too large to store
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive amount")

    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite() or amount <= ZERO:
            raise ValidationError(f"{field} must be a positive amount")
        if amount >= MAX_AMOUNT:
            raise ValidationError(f"{field} must be less than {MAX_AMOUNT}")
        cents = quantize(amount)
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a positive amount") from exc

    if cents != amount:
        raise ValidationError(f"{field} must have at most two decimal places")
    return cents


def as_number(value: Optional[Decimal]) -> Optional[float]:
    """Render an amount for JSON responses."""
    if value is None:
        return None
    return float(quantize(value))
