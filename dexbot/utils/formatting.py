"""
Display helpers shared by notifications and the CLI
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from .units import to_decimal

Numeric = Union[Decimal, int, float, str]


def _fixed(value: Decimal, places: int) -> str:
    text = f"{value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP):f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_number(num: Optional[Numeric], decimals: int = 6) -> str:
    """Compact human formatting: tiny values in exponent form, large ones as K/M/B."""
    if num is None:
        return "0"
    value = to_decimal(num)
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    value = abs(value)

    if value < Decimal("0.000001"):
        return f"{sign}{value:.2e}"
    if value < 1:
        return sign + _fixed(value, 8)
    if value < 1000:
        return sign + _fixed(value, decimals)
    if value < 1000000:
        return f"{sign}{value / 1000:.2f}K"
    if value < 1000000000:
        return f"{sign}{value / 1000000:.2f}M"
    return f"{sign}{value / 1000000000:.2f}B"


def format_address(address: Optional[str], start: int = 6, end: int = 4) -> str:
    if not address:
        return ""
    if len(address) < start + end:
        return address
    return f"{address[:start]}...{address[-end:]}"


def format_percentage(num: Numeric) -> str:
    value = to_decimal(num)
    sign = "+" if value >= 0 else ""
    return f"{sign}{value:.2f}%"
