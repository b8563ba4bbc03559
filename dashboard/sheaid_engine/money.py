"""
Fixed-point money conversion.

All on-chain amounts are integers at an 18-decimal base unit (wei). Display
values are decimal strings. Conversion uses web3's unit helpers; input is
validated first so malformed values fail with InvalidAmount rather than a
library-specific exception.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Union

from web3 import Web3

from .errors import InvalidAmount

DECIMALS = 18
BASE_UNIT = 10**DECIMALS

AmountInput = Union[str, int, Decimal]


def _fraction_digits(amount: Decimal) -> int:
    """Significant fractional digits; trailing zeros do not count."""
    _, digits, exponent = amount.as_tuple()
    zeros = 0
    for digit in reversed(digits):
        if digit:
            break
        zeros += 1
    return max(0, -(exponent + zeros))


def to_base_units(value: AmountInput) -> int:
    """Parse a human decimal amount into base units.

    Raises:
        InvalidAmount: If value is negative, non-numeric, non-finite or has
            more than 18 significant fractional digits
    """
    if isinstance(value, bool) or not isinstance(value, (str, int, Decimal)):
        raise InvalidAmount(f"Unsupported amount type {type(value).__name__}", value=value)

    try:
        amount = Decimal(value.strip()) if isinstance(value, str) else Decimal(value)
    except InvalidOperation:
        raise InvalidAmount(f"Amount is not numeric: {value!r}", value=value)

    if not amount.is_finite():
        raise InvalidAmount(f"Amount is not finite: {value!r}", value=value)
    if amount < 0:
        raise InvalidAmount(f"Amount must not be negative: {value!r}", value=value)
    if amount and _fraction_digits(amount) > DECIMALS:
        raise InvalidAmount(f"Amount is more precise than 1e-{DECIMALS}: {value!r}", value=value)

    try:
        return int(Web3.to_wei(amount, "ether"))
    except ValueError as e:
        raise InvalidAmount(f"Amount out of range: {e}", value=value)


def format_units(amount: int) -> str:
    """Render base units as a plain decimal string ("1.5", "100")."""
    if amount < 0:
        raise InvalidAmount(f"Amount must not be negative: {amount!r}", value=amount)
    text = format(Decimal(Web3.from_wei(amount, "ether")), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def deposit_for_budget(budget: int, percent: int = 120) -> int:
    """Required project deposit in base units (integer division, as the vault computes it)."""
    return budget * percent // 100
