# Overview: Quantity coercion helpers shared by the ledger services.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_FLOOR
from typing import Any

from .errors import ValidationError

# Matches db.Numeric(18, 4) on quantity columns
QUANTITY_SCALE = Decimal("0.0001")


def to_quantity(value: Any, *, field: str = "quantity") -> Decimal:
    """
    Coerce user input to a Decimal quantity.

    Accepts int, Decimal, float and numeric strings. Rejects booleans,
    NaN/Infinity and anything finer than four decimal places.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    if isinstance(value, Decimal):
        qty = value
    elif isinstance(value, (int, float, str)):
        try:
            qty = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not qty.is_finite():
        raise ValidationError(f"{field} must be a finite number")

    if qty != qty.quantize(QUANTITY_SCALE):
        raise ValidationError(f"{field} supports at most 4 decimal places")

    return qty


def as_decimal(value: Any) -> Decimal:
    """Column values come back as Decimal, float or None depending on the dialect."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def floor_units(stock: Decimal, per_unit: Decimal) -> int:
    """How many whole units of ``per_unit`` fit in ``stock``."""
    return int((stock / per_unit).to_integral_value(rounding=ROUND_FLOOR))


def quantity_to_json(value: Any) -> int | float | None:
    """Integral quantities serialize as ints, fractional ones as floats."""
    if value is None:
        return None
    qty = as_decimal(value)
    if qty == qty.to_integral_value():
        return int(qty)
    return float(qty)
