"""Utilities for handling decimal money values."""

from decimal import Decimal, ROUND_HALF_UP, getcontext
from typing import Union, Any

# Set precision for financial calculations
getcontext().prec = 34


def to_decimal(value: Union[float, int, str, Decimal]) -> Decimal:
    """
    Convert various numeric types to Python Decimal.

    Args:
        value: Numeric value to convert

    Returns:
        Decimal object with high precision
    """
    if isinstance(value, Decimal):
        return value

    if isinstance(value, bool):
        raise TypeError("Cannot convert bool to Decimal")
    if isinstance(value, (float, int)):
        # Convert to string first to avoid floating point precision issues
        return Decimal(str(value))
    elif isinstance(value, str):
        return Decimal(value)
    else:
        raise TypeError(f"Cannot convert {type(value)} to Decimal")


def from_decimal(value: Any) -> Decimal:
    """Convert a stored value (string, float, int or None) back to Decimal."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Union[Decimal, float, str], places: int = 2) -> Decimal:
    """
    Round monetary value to the currency's minor unit using round-half-up.

    Args:
        value: Monetary value to round
        places: Number of decimal places (default: 2)

    Returns:
        Rounded Decimal value
    """
    decimal_value = from_decimal(value)
    quantize_value = Decimal(10) ** -places
    return decimal_value.quantize(quantize_value, rounding=ROUND_HALF_UP)


def add_money(*values: Union[Decimal, float, int, str]) -> Decimal:
    """Add multiple monetary values with proper precision."""
    total = Decimal('0')
    for value in values:
        total += from_decimal(value)
    return total


def subtract_money(
    minuend: Union[Decimal, float, int, str],
    subtrahend: Union[Decimal, float, int, str]
) -> Decimal:
    """Subtract monetary values with proper precision."""
    return from_decimal(minuend) - from_decimal(subtrahend)


def format_money(value: Union[Decimal, float, int, str], currency: str = "ZAR") -> str:
    """Format monetary value for display in notifications."""
    formatted = f"{round_money(value):,.2f}"
    if currency == "ZAR":
        return f"R{formatted}"
    elif currency == "USD":
        return f"${formatted}"
    return f"{formatted} {currency}"
