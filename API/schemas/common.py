"""
Shared schema types.
"""

from decimal import Decimal, InvalidOperation
from typing import Annotated

from pydantic import BeforeValidator, PlainSerializer

from core.money import to_money


# Decimal in, "49.00" out. Floats are refused so binary rounding never reaches the ledger.
def _parse_money(value):
    if isinstance(value, float):
        raise ValueError("Money must be sent as a decimal string, not a float")
    try:
        return to_money(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid amount: {value!r}")


Money = Annotated[
    Decimal,
    BeforeValidator(_parse_money),
    PlainSerializer(lambda v: str(to_money(v)), return_type=str),
]

CURRENCY_PATTERN = r"^[A-Z]{3}$"
