"""
Fixed-Point Money Module

All balances and amounts are Decimals with exactly two fractional digits.
NEVER uses float for monetary values: floats are rejected at the door.
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, getcontext
from typing import Union

# Set global decimal context for financial precision
getcontext().prec = 28

CENT = Decimal('0.01')
ZERO = Decimal('0.00')

# Largest value a NUMERIC(12, 2) column can hold
MAX_AMOUNT = Decimal('9999999999.99')

AmountLike = Union[Decimal, int, str]


def to_amount(value: AmountLike) -> Decimal:
    """
    Convert a value to an exact scale-2 Decimal

    Args:
        value: Decimal, int or decimal string ("12.34")

    Returns:
        Decimal quantized to 0.01

    Raises:
        TypeError: If value is a float, bool or unsupported type
        ValueError: If value is not a finite number, has more than
            two fractional digits, or is too large to hold at scale 2
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Monetary values must not be {type(value).__name__}; use a decimal string")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, str):
        try:
            amount = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Cannot convert '{value}' to a decimal amount")
    else:
        raise TypeError(f"Unsupported amount type: {type(value).__name__}")

    if not amount.is_finite():
        raise ValueError(f"Amount must be a finite number, got {value}")

    try:
        quantized = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        # Too many digits for the context precision at scale 2
        raise ValueError(f"Amount {value} is out of range")
    if quantized != amount:
        raise ValueError(f"Amount {value} has more than two decimal places")

    return quantized


def format_amount(amount: Decimal) -> str:
    """Format an amount as an exact decimal string, e.g. '1234.50'"""
    return f"{amount.quantize(CENT, rounding=ROUND_HALF_UP):f}"
