# Overview: Fixed-point money helpers (3-digit currency subunit).

"""
Money is stored as integer millimes (1/1000 of the currency unit), the same
way amounts are kept as integer cents elsewhere, and exchanged as Decimal
quantized to three fractional digits. Binary floats never take part in
ledger arithmetic: float input (JSON numbers) is converted through str().
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from .services.errors import InvalidAmountError

MILLIMES_PER_UNIT = 1000
QUANTUM = Decimal("0.001")

# 999,999,999.999 units; guards integer columns against nonsense input
MAX_AMOUNT_MILLIMES = 999_999_999_999


def parse_amount(value, *, field: str = "amount") -> Decimal:
    """
    Parse client input into a Decimal with at most 3 fractional digits.

    Accepts Decimal, int, str and float (via str). Rejects bool, NaN,
    infinities and anything more precise than a millime.
    """
    if value is None or isinstance(value, bool):
        raise InvalidAmountError(f"{field} is required and must be a number")

    if isinstance(value, Decimal):
        amount = value
    else:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise InvalidAmountError(f"{field} is required and must be a number")
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise InvalidAmountError(f"{field} must be a number")

    if not amount.is_finite():
        raise InvalidAmountError(f"{field} must be a finite number")

    try:
        quantized = amount.quantize(QUANTUM)
    except InvalidOperation:
        raise InvalidAmountError(f"{field} is too large")

    if amount != quantized:
        raise InvalidAmountError(f"{field} supports at most 3 decimal places")

    return quantized


def to_millimes(value, *, field: str = "amount") -> int:
    amount = parse_amount(value, field=field)
    millimes = int(amount * MILLIMES_PER_UNIT)
    if abs(millimes) > MAX_AMOUNT_MILLIMES:
        raise InvalidAmountError(f"{field} is too large")
    return millimes


def from_millimes(millimes: int | None) -> Decimal:
    if millimes is None:
        millimes = 0
    return (Decimal(millimes) / MILLIMES_PER_UNIT).quantize(QUANTUM)


def format_amount(millimes: int | None) -> str:
    """Serialize for JSON: "40.125"."""
    return f"{from_millimes(millimes):.3f}"
