"""
Exact decimal arithmetic for all money and price math.

Every price, amount, fee and PnL value in the system is a ``Decimal``.
Floats coming from exchanges or config are converted through ``str`` so
that ``0.1`` becomes ``Decimal("0.1")`` and not its binary expansion.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, DivisionByZero
from typing import Union

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: Number) -> Decimal:
    """Convert a number (or numeric string) to Decimal without float drift."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a numeric amount")
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a decimal value: {value!r}") from e


def safe_divide(numerator: Number, denominator: Number, default: Number = ZERO) -> Decimal:
    """
    Divide, returning ``default`` instead of raising when the denominator is zero.

    Used for rates (win rate, margin) where an empty denominator has a
    well-defined fallback.
    """
    num = to_decimal(numerator)
    den = to_decimal(denominator)
    if den == ZERO:
        return to_decimal(default)
    try:
        return num / den
    except (DivisionByZero, InvalidOperation):
        return to_decimal(default)


def clamp(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
    """Clamp value into [lower, upper]."""
    return max(lower, min(upper, value))


def pct_of(value: Decimal, pct: Number) -> Decimal:
    """Return ``pct`` percent of ``value`` (pct=1.5 means 1.5%)."""
    return value * to_decimal(pct) / HUNDRED


def quantize(value: Decimal, places: int = 8) -> Decimal:
    """Round half-up to a fixed number of decimal places."""
    return value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)


def fmt(value: Decimal, places: int = 2) -> str:
    """Fixed-decimal string formatting for log and status output."""
    return f"{quantize(to_decimal(value), places):.{places}f}"
