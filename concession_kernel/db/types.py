"""
Module: concession_kernel.db.types
Responsibility: Annotated type aliases and rounding helpers for stock
    quantities and money.  Centralizes precision so every model, engine and
    service rounds identically.
Architecture position: Kernel > DB.  May be imported by every layer.

Invariants enforced:
    - Money is rounded to two places, stock quantities to three, both
      ROUND_HALF_UP.  round_money() and round_quantity() are the only
      sanctioned rounding functions.
    - No floats: to_decimal() refuses float input so binary noise never enters
      a ledger.

Failure modes:
    - TypeError when to_decimal() receives a float.
    - decimal.InvalidOperation on malformed numeric strings.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated

from sqlalchemy import String

from concession_kernel.db.base import PortableDecimal

# Stock quantity (count, mass or volume) and money share the column type.
Quantity = Annotated[Decimal, PortableDecimal()]
Money = Annotated[Decimal, PortableDecimal()]

ShortCode = Annotated[str, String(50)]
Label = Annotated[str, String(255)]
LongText = Annotated[str, String(4000)]

MONEY_DECIMAL_PLACES = 2
QUANTITY_DECIMAL_PLACES = 3
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_decimal(value: object, default: Decimal = ZERO) -> Decimal:
    """
    Coerce an int, str or Decimal into a Decimal.

    ``None`` and the empty string map to ``default``.
    """
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return Decimal(int(value))
    if isinstance(value, float):
        raise TypeError("float is not accepted for quantities or money; pass str or Decimal")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value).strip())


def round_money(value: Decimal, decimal_places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """Round a monetary value (ROUND_HALF_UP)."""
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=DEFAULT_ROUNDING)


def round_quantity(value: Decimal, decimal_places: int = QUANTITY_DECIMAL_PLACES) -> Decimal:
    """Round a stock quantity (ROUND_HALF_UP)."""
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=DEFAULT_ROUNDING)
