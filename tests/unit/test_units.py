"""
Unit Tests for Quantity Conversion

Reliability Level: SOVEREIGN TIER

Tests kilogram <-> raw ledger amount conversion:
- Exact scaling by asset precision
- Excess precision rejected, never rounded
- Quantities above the ledger supply ceiling rejected
- Non-numeric input rejected
"""

import os
import sys
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from stock_token.ledger.units import (
    MAX_RAW_AMOUNT,
    QuantityConversionError,
    format_kg,
    from_raw_amount,
    parse_quantity,
    to_quantity,
    to_raw_amount,
)


class TestToRawAmount:
    """Scaling kilograms to ledger integers."""

    def test_two_decimal_asset(self):
        assert to_raw_amount(Decimal("100.00"), 2) == 10000
        assert to_raw_amount(Decimal("0.01"), 2) == 1

    def test_zero_decimal_asset(self):
        assert to_raw_amount(Decimal("7"), 0) == 7

    def test_excess_precision_rejected(self):
        with pytest.raises(QuantityConversionError) as exc_info:
            to_raw_amount(Decimal("10.255"), 2)
        assert "STK-UNIT-002" in str(exc_info.value)

    def test_trailing_zeros_are_not_excess_precision(self):
        assert to_raw_amount(Decimal("10.2500"), 2) == 1025

    def test_long_trailing_zeros(self):
        assert to_raw_amount(Decimal("1." + "0" * 70), 2) == 100

    def test_excess_digit_beyond_context_precision_rejected(self):
        with pytest.raises(QuantityConversionError) as exc_info:
            to_raw_amount(Decimal("1." + "0" * 70 + "1"), 2)
        assert "STK-UNIT-002" in str(exc_info.value)

    def test_ceiling_is_inclusive(self):
        assert to_raw_amount(Decimal("92233720368547758.07"), 2) == MAX_RAW_AMOUNT

    def test_above_ceiling_rejected(self):
        with pytest.raises(QuantityConversionError) as exc_info:
            to_raw_amount(Decimal("92233720368547758.08"), 2)
        assert "STK-UNIT-003" in str(exc_info.value)


class TestFromRawAmount:

    def test_converts_with_declared_precision(self):
        assert from_raw_amount(15000, 2) == Decimal("150.00")
        assert from_raw_amount(123456789, 8) == Decimal("1.23456789")

    def test_ceiling_converts(self):
        assert from_raw_amount(MAX_RAW_AMOUNT, 2) == Decimal("92233720368547758.07")

    def test_out_of_range_ledger_amount_rejected(self):
        with pytest.raises(QuantityConversionError) as exc_info:
            from_raw_amount(10 ** 30, 2)
        assert "STK-UNIT-003" in str(exc_info.value)


class TestParseQuantity:
    """Caller input parsing."""

    def test_string_input(self):
        assert parse_quantity("100") == Decimal("100.00")

    def test_float_input_keeps_printed_value(self):
        assert parse_quantity(0.1) == Decimal("0.10")

    def test_excess_precision_rejected(self):
        with pytest.raises(QuantityConversionError):
            parse_quantity("1.005")

    @pytest.mark.parametrize("value", ["1e30", "9e25", 10 ** 40, "1E+1000000"])
    def test_huge_quantity_rejected(self, value):
        with pytest.raises(QuantityConversionError) as exc_info:
            parse_quantity(value)
        assert "STK-UNIT-003" in str(exc_info.value)

    @pytest.mark.parametrize("value", [None, True, "abc", "NaN", "Infinity"])
    def test_invalid_input_rejected(self, value):
        with pytest.raises(QuantityConversionError):
            parse_quantity(value)


class TestToQuantity:

    def test_rounds_half_even(self):
        assert to_quantity("1.005") == Decimal("1.00")
        assert to_quantity("1.015") == Decimal("1.02")

    def test_none_is_zero(self):
        assert to_quantity(None) == Decimal("0.00")

    def test_bool_rejected(self):
        with pytest.raises(QuantityConversionError):
            to_quantity(False)


def test_format_kg():
    assert format_kg(Decimal("1234.5")) == "1,234.50 kg"
