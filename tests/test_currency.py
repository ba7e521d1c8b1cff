"""
Test suite for the Money value type
"""

import pytest
from decimal import Decimal

from credit_engine.currency import Money, Currency, parse_amount
from credit_engine.errors import InvalidArgumentError


class TestMoney:
    """Test Money construction and arithmetic"""

    def test_rounds_half_up_to_currency_precision(self):
        """Amounts are rounded to the currency's minor unit"""
        assert Money(Decimal('106.6185'), Currency.USD).amount == Decimal('106.62')
        assert Money(Decimal('0.005'), Currency.USD).amount == Decimal('0.01')
        assert Money(Decimal('1234.5'), Currency.JPY).amount == Decimal('1235')

    def test_arithmetic(self):
        """Addition, subtraction and scalar multiplication keep the currency"""
        a = Money(Decimal('100.00'), Currency.USD)
        b = Money(Decimal('33.33'), Currency.USD)

        assert a + b == Money(Decimal('133.33'), Currency.USD)
        assert a - b == Money(Decimal('66.67'), Currency.USD)
        assert a * Decimal('0.10') == Money(Decimal('10.00'), Currency.USD)
        assert (b - a).is_negative()
        assert (b - a).floor_zero().is_zero()

    def test_currency_mismatch_rejected(self):
        """Mixing currencies is an invalid argument"""
        with pytest.raises(InvalidArgumentError):
            Money(Decimal('1'), Currency.USD) + Money(Decimal('1'), Currency.EUR)

    def test_comparisons(self):
        """Money orders by amount within a currency"""
        small = Money(Decimal('90'), Currency.USD)
        large = Money(Decimal('100'), Currency.USD)

        assert small < large
        assert min(small, large) == small
        assert large >= small

    def test_from_code(self):
        """Currency codes resolve case-insensitively"""
        assert Currency.from_code("usd") == Currency.USD
        with pytest.raises(InvalidArgumentError):
            Currency.from_code("XYZ")


class TestParseAmount:
    """Test parsing of incoming amounts"""

    def test_accepts_strings_ints_and_decimals(self):
        assert parse_amount("12.50") == Decimal('12.50')
        assert parse_amount(7) == Decimal('7')
        assert parse_amount(Decimal('1.1')) == Decimal('1.1')

    def test_rejects_floats_and_garbage(self):
        """Floats and non-numeric input are invalid arguments"""
        with pytest.raises(InvalidArgumentError):
            parse_amount(1.5)
        with pytest.raises(InvalidArgumentError):
            parse_amount("ten dollars")
        with pytest.raises(InvalidArgumentError):
            parse_amount("NaN")
