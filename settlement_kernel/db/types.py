"""
Module: settlement_kernel.db.types
Responsibility: Annotated column type aliases and the rounding helpers used
    for every monetary figure in the settlement engine.
Architecture position: Kernel > DB.  May be imported by models/, services/,
    selectors/ and engines.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats.  All monetary amounts are Decimal.
    - round_money() is the ONLY sanctioned rounding function for money;
      round_whole() is used where a figure is settled in whole currency
      units (purchase taxes).
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String

# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Monotonic sequence number for ordering
Sequence = Annotated[int, BigInteger]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Long text for descriptions
LongText = Annotated[str, String(4000)]


MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    Preconditions: value is a Decimal.
    Postconditions: Returns value quantized with the given rounding mode.
    """
    quantize_str = "0." + "0" * decimal_places if decimal_places else "1"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def round_whole(value: Decimal) -> Decimal:
    """Round to whole currency units, half away from zero."""
    return round_money(value, decimal_places=0)


def to_decimal(value: Decimal | int | str | None) -> Decimal:
    """Coerce an int/str/Decimal amount to Decimal; None becomes zero.

    Raises:
        TypeError: for floats, which would carry binary rounding error.
    """
    if value is None:
        return ZERO
    if isinstance(value, float):
        raise TypeError("Monetary amounts must not be float")
    return value if isinstance(value, Decimal) else Decimal(value)
