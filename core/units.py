"""
Base-unit <-> decimal-string conversion.

All amounts travel through the treasury as integers in base units (wei for
ETH/WETH, token base units for the project token). Decimal strings only
appear at the edges: env config, audit details, stdout report, snapshot JSON.
"""

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

from .constants import BASE, BPS_DENOMINATOR

UINT256_DIGITS = 78


def format_units(value: int, decimals: int) -> str:
    """
    Render base units as a plain decimal string without trailing zeros.

    format_units(20000000000000000, 18) -> "0.02"
    format_units(10**18, 18)            -> "1"
    """
    value = int(value)
    negative = value < 0
    digits = str(abs(value)).rjust(decimals + 1, "0")
    whole = digits[:-decimals] if decimals else digits
    fraction = digits[-decimals:].rstrip("0") if decimals else ""
    text = f"{whole}.{fraction}" if fraction else whole
    return f"-{text}" if negative else text


def format_ether(value: int) -> str:
    return format_units(value, BASE.NATIVE_DECIMALS)


def parse_units(text: str, decimals: int) -> int:
    """
    Parse a decimal string into base units. Digits beyond `decimals` are
    truncated toward zero. Raises ValueError on malformed input.
    """
    try:
        amount = Decimal(str(text).strip())
    except InvalidOperation:
        raise ValueError(f"not a decimal amount: {text!r}")
    if not amount.is_finite():
        raise ValueError(f"not a finite amount: {text!r}")
    if amount.adjusted() + decimals >= UINT256_DIGITS:
        raise ValueError(f"amount out of uint256 range: {text!r}")
    # Integer math on the digit tuple: exact at any magnitude, no context precision
    sign, digits, exponent = amount.as_tuple()
    mantissa = int("".join(map(str, digits)) or "0")
    shift = exponent + decimals
    scaled = mantissa * 10 ** shift if shift >= 0 else mantissa // 10 ** -shift
    return -scaled if sign else scaled


def parse_ether(text: str) -> int:
    return parse_units(text, BASE.NATIVE_DECIMALS)


def bps_of(amount: int, bps: int) -> int:
    """Truncating basis-point fraction: amount * bps / 10000, rounded down."""
    return amount * bps // BPS_DENOMINATOR


def iso_from_ms(ms) -> Optional[str]:
    """Epoch milliseconds -> "2026-02-18T20:20:00.000Z". None for empty/invalid input."""
    if ms is None or ms == "":
        return None
    try:
        ms = int(ms)
    except (TypeError, ValueError):
        return None
    moment = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ms % 1000:03d}Z"
