"""Fixed-point helpers for USDT amounts.

Amounts carry exactly 8 fractional digits. They are stored as integer minor
units so neither the database nor the driver ever sees a binary float.
"""
from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Optional, Union

from sqlalchemy.types import BigInteger, TypeDecorator

SCALE = 8
QUANT = Decimal(1).scaleb(-SCALE)
MINOR_UNITS = 10**SCALE
ZERO = Decimal("0").quantize(QUANT)

AmountLike = Union[Decimal, int, str]


def quantize(value: AmountLike, rounding: str = ROUND_DOWN) -> Decimal:
    """Return ``value`` as a Decimal with exactly 8 fractional digits."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(QUANT, rounding=rounding)


def parse_amount(value: AmountLike) -> Decimal:
    """Parse a caller-supplied amount, refusing more than 8 fractional digits."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    exponent = amount.as_tuple().exponent
    if isinstance(exponent, int) and exponent < -SCALE:
        raise ValueError(f"Amount has more than {SCALE} decimal places")
    return amount.quantize(QUANT)


def format_amount(value: Decimal) -> str:
    return f"{quantize(value):.{SCALE}f}"


def to_minor(value: AmountLike) -> int:
    return int(quantize(value) * MINOR_UNITS)


def from_minor(value: int) -> Decimal:
    return (Decimal(value) / MINOR_UNITS).quantize(QUANT)


class Money(TypeDecorator):
    """SQLAlchemy column type: Decimal in Python, integer minor units in SQL."""

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Optional[int]:
        if value is None:
            return None
        return to_minor(value)

    def process_result_value(self, value: Any, dialect: Any) -> Optional[Decimal]:
        if value is None:
            return None
        return from_minor(int(value))
