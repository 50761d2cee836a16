from decimal import Decimal, ROUND_DOWN, localcontext
from typing import Union

NATIVE_DECIMALS = 18

# enough significant digits for any uint256 at any token precision
UINT256_PRECISION = 80

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_base_units(amount: Number, decimals: int = NATIVE_DECIMALS) -> int:
    """Human amount -> smallest on-chain unit, truncated toward zero."""
    with localcontext() as ctx:
        ctx.prec = UINT256_PRECISION
        scaled = to_decimal(amount) * (Decimal(10) ** decimals)
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_base_units(raw: int, decimals: int = NATIVE_DECIMALS) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = UINT256_PRECISION
        return Decimal(raw) / (Decimal(10) ** decimals)


def scale_by_percent(raw: int, percent: Number) -> int:
    """`raw * percent / 100` in exact integer arithmetic, truncated toward zero."""
    numerator, denominator = to_decimal(percent).as_integer_ratio()
    return raw * numerator // (denominator * 100)
