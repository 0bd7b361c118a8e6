"""Fixed-point helpers — RAY rates, WAD values, native asset units.

Every conversion truncates toward zero. Floating point is never used for
financial values; ``Decimal`` appears only in percentage views and display
formatting.
"""
from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_UP, Context, Decimal, localcontext

RAY = 10**27
WAD = 10**18
MAX_UINT256 = 2**256 - 1

# Reported in place of a health factor when the account carries no debt.
HEALTHY_SENTINEL = MAX_UINT256

WAD_RAY_RATIO = RAY // WAD
BPS = 10_000

# Enough digits for exact division of any uint256 by a power of ten.
_EXACT = Context(prec=100, rounding=ROUND_DOWN)


def wad_mul(a: int, b: int) -> int:
    return a * b // WAD


def wad_div(a: int, b: int) -> int:
    if b == 0:
        raise ZeroDivisionError("wad_div by zero")
    return a * WAD // b


def ray_mul(a: int, b: int) -> int:
    return a * b // RAY


def ray_div(a: int, b: int) -> int:
    if b == 0:
        raise ZeroDivisionError("ray_div by zero")
    return a * RAY // b


def ray_to_wad(value: int) -> int:
    return value // WAD_RAY_RATIO


def wad_to_ray(value: int) -> int:
    return value * WAD_RAY_RATIO


def scale(value: int, from_decimals: int, to_decimals: int) -> int:
    """Move an integer between decimal scales, truncating when narrowing."""
    if from_decimals == to_decimals:
        return value
    if to_decimals > from_decimals:
        return value * 10 ** (to_decimals - from_decimals)
    return value // 10 ** (from_decimals - to_decimals)


def to_wad(amount: int, decimals: int) -> int:
    """Native asset units -> WAD."""
    return scale(amount, decimals, 18)


def from_wad(value: int, decimals: int) -> int:
    """WAD -> native asset units (truncating)."""
    return scale(value, 18, decimals)


def bps_to_wad(bps: int) -> int:
    """Basis points (10000 = 100%) -> WAD fraction."""
    return bps * WAD // BPS


def per_period_to_annual_ray(rate_mantissa: int, periods_per_year: int) -> int:
    """Annualize a WAD-scaled per-block/per-second rate and lift it to RAY.

    Simple (non-compounded) annualization, matching how comptroller markets
    quote supply and borrow rates.
    """
    return wad_to_ray(rate_mantissa * periods_per_year)


def rate_to_percentage(rate: int, unit: int = RAY) -> Decimal:
    """Exact percentage for a fixed-point rate: ``rate / unit * 100``."""
    with localcontext(_EXACT):
        return Decimal(rate) * 100 / Decimal(unit)


def percentage_to_rate(percentage: Decimal | int | str, unit: int = RAY) -> int:
    """Inverse of :func:`rate_to_percentage`, truncating sub-unit remainders."""
    with localcontext(_EXACT):
        value = Decimal(percentage) * Decimal(unit) / 100
        return int(value.to_integral_value(rounding=ROUND_DOWN))


def ratio(value: int, unit: int = WAD) -> Decimal:
    """Exact ``value / unit`` as a Decimal."""
    with localcontext(_EXACT):
        return Decimal(value) / Decimal(unit)


def parse_wad(value: Decimal | int | float | str) -> int:
    """Parse a human decimal (e.g. ``"0.75"`` from YAML) into WAD.

    Floats are routed through ``str`` so ``0.75`` parses as written rather
    than as its binary approximation.
    """
    if isinstance(value, float):
        value = str(value)
    with localcontext(_EXACT):
        scaled = Decimal(value) * WAD
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def format_percentage(percentage: Decimal, places: int = 2) -> str:
    """Display-only rounding. Never feed the result back into comparisons."""
    quantum = Decimal(1).scaleb(-places)
    with localcontext(_EXACT):
        return f"{percentage.quantize(quantum, rounding=ROUND_HALF_UP)}%"


def format_units(amount: int, decimals: int, places: int = 4) -> str:
    """Render a native-unit integer as a human number string."""
    quantum = Decimal(1).scaleb(-places)
    with localcontext(_EXACT):
        value = Decimal(amount).scaleb(-decimals)
        return str(value.quantize(quantum, rounding=ROUND_DOWN))
