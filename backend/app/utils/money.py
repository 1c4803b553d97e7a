"""Fixed-point money helpers (rupees with paise precision)."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from bson.decimal128 import Decimal128

PAISE = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Convert a stored or user-supplied amount into a quantized Decimal.

    Floats go through ``str()`` so 0.1 becomes Decimal("0.1") rather than its
    binary expansion.
    """
    if isinstance(value, Decimal128):
        value = value.to_decimal()
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid money amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid money amount: {value!r}")
    return amount.quantize(PAISE, rounding=ROUND_HALF_UP)


def to_decimal128(value: Decimal) -> Decimal128:
    """Storage boundary: Decimal -> BSON Decimal128."""
    return Decimal128(to_money(value))


def encode_decimals(value: Any) -> Any:
    """Recursively convert Decimals to Decimal128 before writing to MongoDB."""
    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, dict):
        return {key: encode_decimals(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_decimals(item) for item in value]
    return value


def decode_decimals(value: Any) -> Any:
    """Recursively convert Decimal128 read from MongoDB back to Decimal."""
    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, dict):
        return {key: decode_decimals(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode_decimals(item) for item in value]
    return value
