"""
Unit Tests - Money Parsing
"""
from decimal import Decimal

import pytest

from sales_analytics.transformation.money import parse_amount, quantize_money, sum_amounts


class TestParseAmount:
    """Tests for parse_amount"""

    @pytest.mark.parametrize("raw, expected", [
        ("1.234,50 kr", Decimal("1234.50")),
        ("1,234.50", Decimal("1234.50")),
        ("1,234", Decimal("1234")),
        ("0,123", Decimal("0.123")),
        ("12,5", Decimal("12.5")),
        ("1,2345", Decimal("1.2345")),
        ("1.234.567", Decimal("1234567")),
        ("1,234,567", Decimal("1234567")),
        ("€ 99,99", Decimal("99.99")),
        ("SEK 1 234,50", Decimal("1234.50")),
        ("1 234,50", Decimal("1234.50")),
        ("1'234.50", Decimal("1234.50")),
        ("12.50 USD", Decimal("12.50")),
        ("$19.99", Decimal("19.99")),
        ("-5,00", Decimal("-5.00")),
        ("  42  ", Decimal("42")),
        ("0.1", Decimal("0.1")),
    ])
    def test_locale_strings(self, raw, expected):
        """Test locale-formatted strings"""
        assert parse_amount(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "abc", "kr", "--", "1.2.3,4,5x", True, False, [1]])
    def test_unparseable_is_zero(self, raw):
        """Test garbage never raises"""
        assert parse_amount(raw) == Decimal("0")

    def test_numbers_are_exact(self):
        """Test numbers become exact decimals"""
        assert parse_amount(0.1) == Decimal("0.1")
        assert parse_amount(19.99) == Decimal("19.99")
        assert parse_amount(7) == Decimal("7")
        assert parse_amount(Decimal("3.333")) == Decimal("3.333")

    @pytest.mark.parametrize("raw", [float("nan"), float("inf"), Decimal("NaN"), Decimal("-Infinity"), "NaN"])
    def test_non_finite_is_zero(self, raw):
        """Test NaN and infinities"""
        assert parse_amount(raw) == Decimal("0")

    def test_no_float_drift_when_summing(self):
        """Test repeated cents sum exactly"""
        total = sum_amounts(parse_amount(0.1) for _ in range(10))
        assert total == Decimal("1.0")


class TestQuantize:
    """Tests for final rounding"""

    @pytest.mark.parametrize("value, expected", [
        (Decimal("16.666666"), Decimal("16.67")),
        (Decimal("0.005"), Decimal("0.01")),
        (Decimal("-0.005"), Decimal("-0.01")),
        (Decimal("2.344"), Decimal("2.34")),
        (Decimal("100"), Decimal("100.00")),
    ])
    def test_half_up_to_cents(self, value, expected):
        assert quantize_money(value) == expected

    def test_sum_of_nothing_is_zero(self):
        assert sum_amounts([]) == Decimal("0")
