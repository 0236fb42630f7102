# PATH: core/math.py
"""
Math utilities for KEEPER.

Safe conversions between on-chain integers (WAD / token units) and Decimal.
No float money: prices and amounts are int or Decimal.
"""

from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Union

from core.constants import WAD

Numeric = Union[str, int, float, Decimal]


def safe_decimal(value: Union[Numeric, None], default: Decimal = Decimal("0")) -> Decimal:
    """
    Safely convert value to Decimal.

    Args:
        value: Value to convert
        default: Default if conversion fails

    Returns:
        Decimal value
    """
    if value is None:
        return default

    try:
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return default


def wad_to_decimal(amount: int) -> Decimal:
    """Convert an 18-decimal fixed point integer to Decimal."""
    return Decimal(int(amount)) / Decimal(WAD)


def decimal_to_wad(amount: Numeric) -> int:
    """Convert a human value to an 18-decimal fixed point integer (rounds down)."""
    return to_token_units(amount, 18)


def from_token_units(amount: Union[int, str, Decimal], decimals: int) -> Decimal:
    """
    Normalize amount to token decimals (smallest unit to token units).

    Args:
        amount: Amount in smallest unit
        decimals: Token decimals
    """
    return safe_decimal(amount) / (Decimal(10) ** decimals)


def to_token_units(amount: Numeric, decimals: int) -> int:
    """
    Denormalize amount from token units to the smallest unit.

    Args:
        amount: Amount in token units
        decimals: Token decimals

    Returns:
        Amount in smallest unit (int), rounded down
    """
    scaled = safe_decimal(amount) * (Decimal(10) ** decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def apply_factor(value: Decimal, factor: Numeric) -> Decimal:
    """Multiply a price by a configured factor."""
    return value * safe_decimal(factor)


def pad_gas(estimate: int, padding_pct: int) -> int:
    """Add a percentage margin to a gas estimate."""
    return estimate * (100 + padding_pct) // 100


def short_address(address: str, length: int = 8) -> str:
    """Shorten an address for log lines."""
    if not address:
        return ""
    return address[:length]
