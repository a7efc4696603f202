"""Tests for money value types and calendar helpers."""

from datetime import UTC, date, datetime
from decimal import Decimal

import pytest

from memberflow.core.clock import FixedClock, SystemClock, add_months, ensure_utc, months_between
from memberflow.core.exceptions import CurrencyMismatchError, ValidationError
from memberflow.core.money import LocalizedText, Money, TaxableFee, round_money


class TestMoney:
    """Tests for Money arithmetic."""

    def test_float_amounts_are_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Money.of(10.5)

    def test_currency_is_normalized(self) -> None:
        assert Money.of("10", "sar").currency == "SAR"

    def test_invalid_currency_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            Money.of("10", "SA")
        assert exc_info.value.details["field"] == "currency"

    def test_add_and_subtract(self) -> None:
        total = Money.of("100.50").add(Money.of("20.25")).subtract(Money.of("0.75"))
        assert total == Money.of("120.00")

    def test_cross_currency_addition_fails(self) -> None:
        with pytest.raises(CurrencyMismatchError):
            Money.of("1", "SAR").add(Money.of("1", "USD"))

    def test_cross_currency_comparison_fails(self) -> None:
        with pytest.raises(CurrencyMismatchError):
            Money.of("1", "SAR").compare_to(Money.of("1", "AED"))

    def test_rounding_is_half_up(self) -> None:
        assert Money.of("10.005").rounded().amount == Decimal("10.01")
        assert Money.of("10.004").rounded().amount == Decimal("10.00")
        assert round_money(Decimal("-2.345")) == Decimal("-2.35")

    def test_divide_by_zero(self) -> None:
        with pytest.raises(ValidationError):
            Money.of("10").divide(0)

    def test_negative_amounts_allowed(self) -> None:
        debt = Money.of("50").negate()
        assert debt.is_negative()
        assert debt.abs() == Money.of("50")

    def test_comparisons(self) -> None:
        assert Money.of("5").compare_to(Money.of("7")) == -1
        assert Money.of("7").is_greater_or_equal(Money.of("7"))
        assert Money.of("6.99").is_less_than(Money.of("7"))
        assert Money.zero().is_zero()

    def test_string_forms(self) -> None:
        assert str(Money.of("10.5")) == "SAR 10.50"
        assert Money.of("3").to_string() == "3.00"


class TestTaxableFee:
    """Tests for net fees with tax."""

    def test_gross_and_tax(self) -> None:
        fee = TaxableFee.of("400", "SAR", "0.15")
        assert fee.net_amount() == Money.of("400")
        assert fee.tax_amount() == Money.of("60.00")
        assert fee.gross_amount() == Money.of("460.00")

    def test_gross_is_rounded(self) -> None:
        fee = TaxableFee.of("99.99", "SAR", "0.15")
        assert fee.gross_amount().amount == Decimal("114.99")

    def test_negative_amount_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TaxableFee.of("-1")

    def test_negative_tax_rate_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TaxableFee.of("10", "SAR", "-0.05")

    def test_zero_fee(self) -> None:
        assert TaxableFee().is_zero()


class TestLocalizedText:
    def test_arabic_locale(self) -> None:
        text = LocalizedText(en="Standard", ar="قياسي")
        assert text.get("ar") == "قياسي"
        assert text.get("ar-SA") == "قياسي"
        assert text.get("en") == "Standard"

    def test_falls_back_to_english(self) -> None:
        assert LocalizedText(en="Standard").get("ar") == "Standard"


class TestCalendar:
    """Tests for month arithmetic and clocks."""

    def test_months_between_floors_partial_months(self) -> None:
        assert months_between(date(2024, 9, 1), date(2025, 1, 1)) == 4
        assert months_between(date(2024, 9, 15), date(2025, 1, 1)) == 3
        assert months_between(date(2024, 1, 1), date(2024, 1, 31)) == 0

    def test_months_between_negative(self) -> None:
        assert months_between(date(2025, 1, 1), date(2024, 9, 1)) == -4

    def test_add_months_clamps_to_month_end(self) -> None:
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2024, 1, 1), 12) == date(2025, 1, 1)
        assert add_months(date(2024, 11, 30), 3) == date(2025, 2, 28)

    def test_fixed_clock_advances(self) -> None:
        clock = FixedClock(datetime(2024, 1, 1, 23, 0, tzinfo=UTC))
        clock.advance(hours=2)
        assert clock.today() == date(2024, 1, 2)

    def test_naive_datetimes_are_treated_as_utc(self) -> None:
        assert ensure_utc(datetime(2024, 1, 1, 12, 0)).tzinfo == UTC

    def test_system_clock_uses_club_timezone(self) -> None:
        clock = SystemClock("Asia/Riyadh")
        assert isinstance(clock.today(), date)
