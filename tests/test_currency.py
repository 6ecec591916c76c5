"""
Test suite for currency module

Tests Money arithmetic, minor-unit allocation and amount parsing.
All monetary calculations must use Decimal precision.
"""

import pytest
from decimal import Decimal

from ledger_core.currency import (
    Money, Currency, sum_money, decimal_from_string, has_valid_precision
)


class TestMoney:
    """Test Money class operations"""

    def test_money_creation(self):
        """Test Money object creation and rounding"""
        money = Money(Decimal('150.50'), Currency.BRL)
        assert money.amount == Decimal('150.50')
        assert money.currency == Currency.BRL

        assert Money(Decimal('100.555'), Currency.BRL).amount == Decimal('100.56')
        assert Money(Decimal('100.7'), Currency.JPY).amount == Decimal('101')

        # Non-Decimal input is converted
        assert Money(10, Currency.BRL).amount == Decimal('10.00')

    def test_money_arithmetic(self):
        a = Money(Decimal('100.50'), Currency.BRL)
        b = Money(Decimal('50.25'), Currency.BRL)

        assert (a + b).amount == Decimal('150.75')
        assert (a - b).amount == Decimal('50.25')
        assert (-a).amount == Decimal('-100.50')
        assert abs(Money(Decimal('-3.10'), Currency.BRL)).amount == Decimal('3.10')

    def test_money_comparison(self):
        small = Money(Decimal('1.00'), Currency.BRL)
        large = Money(Decimal('2.00'), Currency.BRL)

        assert small < large
        assert large >= small
        assert small == Money(Decimal('1'), Currency.BRL)
        assert small != Money(Decimal('1.00'), Currency.USD)
        assert small != Decimal('1.00')

    def test_money_currency_mismatch(self):
        brl = Money(Decimal('10'), Currency.BRL)
        usd = Money(Decimal('10'), Currency.USD)

        with pytest.raises(ValueError, match="Cannot add"):
            brl + usd
        with pytest.raises(ValueError, match="Cannot compare"):
            brl < usd

    def test_money_state_checks(self):
        assert Money.zero(Currency.BRL).is_zero()
        assert Money(Decimal('0.01'), Currency.BRL).is_positive()
        assert Money(Decimal('-0.01'), Currency.BRL).is_negative()

    def test_money_string_formatting(self):
        assert Money(Decimal('1234.5'), Currency.BRL).to_string() == "BRL 1,234.50"
        assert Money(Decimal('1500'), Currency.JPY).to_string() == "JPY 1,500"


class TestMinorUnits:
    """Test integer minor-unit conversion and allocation"""

    def test_minor_unit_round_trip(self):
        money = Money(Decimal('150.50'), Currency.BRL)
        assert money.to_minor_units() == 15050
        assert Money.from_minor_units(15050, Currency.BRL) == money
        assert Money.from_minor_units(7, Currency.JPY).amount == Decimal('7')

    def test_even_allocation(self):
        shares = Money(Decimal('600.00'), Currency.BRL).allocate(3)
        assert [s.amount for s in shares] == [Decimal('200.00')] * 3

    def test_remainder_goes_to_first_share(self):
        total = Money(Decimal('100.00'), Currency.BRL)
        shares = total.allocate(3)

        assert [s.amount for s in shares] == [Decimal('33.34'), Decimal('33.33'), Decimal('33.33')]
        assert sum_money(shares, Currency.BRL) == total

    def test_allocation_preserves_total(self):
        for amount in ('0.05', '10.01', '999.99', '1234567.89'):
            total = Money(Decimal(amount), Currency.BRL)
            for parts in (1, 2, 3, 7, 12):
                assert sum_money(total.allocate(parts), Currency.BRL) == total

    def test_allocate_rejects_zero_parts(self):
        with pytest.raises(ValueError, match="fewer than one part"):
            Money(Decimal('10'), Currency.BRL).allocate(0)


class TestParsing:
    """Test decimal parsing helpers"""

    def test_decimal_from_string_valid(self):
        assert decimal_from_string("150.50") == Decimal('150.50')
        assert decimal_from_string("R$ 10.50") == Decimal('10.50')
        assert decimal_from_string("1.234,56") == Decimal('1234.56')
        assert decimal_from_string("1,234.56") == Decimal('1234.56')
        assert decimal_from_string("10,5") == Decimal('10.5')

    def test_decimal_from_string_invalid(self):
        with pytest.raises(ValueError):
            decimal_from_string("")
        with pytest.raises(ValueError):
            decimal_from_string("abc")

    @pytest.mark.parametrize("value", ["1e5", "12abc", "abc7", "10 50", "R$", "1.2.3", "--5"])
    def test_decimal_from_string_rejects_stray_characters(self, value):
        with pytest.raises(ValueError):
            decimal_from_string(value)

    def test_decimal_from_string_keeps_sign(self):
        assert decimal_from_string("-5.00") == Decimal('-5.00')
        assert decimal_from_string("$ 1,000") == Decimal('1000')

    def test_has_valid_precision(self):
        assert has_valid_precision(Decimal('10.25'), Currency.BRL)
        assert not has_valid_precision(Decimal('10.255'), Currency.BRL)
        assert not has_valid_precision(Decimal('10.5'), Currency.JPY)

    def test_currency_from_code(self):
        assert Currency.from_code("brl") == Currency.BRL
        assert Currency.BRL.quantum == Decimal('0.01')
        with pytest.raises(ValueError, match="Unsupported currency"):
            Currency.from_code("XYZ")
