from decimal import Decimal

import pytest

from hedgebot.utils.decimal_math import ZERO, clamp, fmt, pct_of, quantize, safe_divide, to_decimal


def test_to_decimal_avoids_float_expansion():
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal("1.5") == Decimal("1.5")
    assert to_decimal(3) == Decimal("3")


def test_to_decimal_rejects_bool_and_garbage():
    with pytest.raises(TypeError):
        to_decimal(True)
    with pytest.raises(ValueError):
        to_decimal("abc")


def test_safe_divide_zero_denominator_returns_default():
    assert safe_divide(Decimal("1"), ZERO) == ZERO
    assert safe_divide(Decimal("1"), ZERO, Decimal("75")) == Decimal("75")
    assert safe_divide(Decimal("10"), Decimal("4")) == Decimal("2.5")


def test_clamp_and_pct_of():
    assert clamp(Decimal("105"), Decimal("0"), Decimal("100")) == Decimal("100")
    assert clamp(Decimal("-3"), Decimal("0"), Decimal("100")) == Decimal("0")
    assert pct_of(Decimal("100"), Decimal("1.5")) == Decimal("1.5")


def test_quantize_rounds_half_up():
    assert quantize(Decimal("2.000000005")) == Decimal("2.00000001")
    assert fmt(Decimal("57.935")) == "57.94"
