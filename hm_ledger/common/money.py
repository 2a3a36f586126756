# hm_ledger/common/money.py
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from rest_framework.exceptions import ValidationError

# Ledger amounts carry three fractional digits (LYD millimes).
MONEY_PLACES = Decimal("0.001")
ZERO = Decimal("0.000")


def to_money(value, field_name: str = "amount") -> Decimal:
    """
    Accepts Decimal / str / int / float and converts to a quantized Decimal.
    Floats go through str() first so 0.1 stays 0.100 rather than 0.1000000000000000055.
    Raises ValidationError keyed by field_name for anything non-numeric.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError({field_name: "Invalid decimal value."})
    try:
        dec = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError({field_name: "Invalid decimal value."})

    if not dec.is_finite():
        raise ValidationError({field_name: "Invalid decimal value."})

    return dec.quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def money_sum(values: Iterable[Decimal]) -> Decimal:
    return sum((to_money(v) for v in values), ZERO).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)
