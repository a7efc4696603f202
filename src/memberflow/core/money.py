"""Exact-decimal money value types.

Amounts are ``Decimal`` throughout. Arithmetic goes through explicit
methods that reject cross-currency operands with ``CurrencyMismatchError``.
Rounding (half-up, 2 places) is applied by callers at the point where a
final amount is produced, never to intermediate ratios.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from memberflow.core.exceptions import CurrencyMismatchError, ValidationError

DEFAULT_CURRENCY = "SAR"
CENTS = Decimal("0.01")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """Coerce an int/str/Decimal to Decimal.

    Floats are rejected because they cannot represent most currency amounts
    exactly.

    Raises:
        ValidationError: If the value is a float or not numeric.
    """
    if isinstance(value, float):
        raise ValidationError(
            "Monetary values must not be floats",
            value=value,
            constraint="Decimal, int or str",
        )
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise ValidationError("Monetary value must be finite", value=value)
        return value
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise ValidationError("Invalid monetary value", value=value) from e
    if not result.is_finite():
        raise ValidationError("Monetary value must be finite", value=value)
    return result


def round_money(value: Decimal) -> Decimal:
    """Round half-up to two decimal places."""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _normalize_currency(currency: str) -> str:
    if not isinstance(currency, str) or len(currency) != 3 or not currency.isalpha():
        raise ValidationError(
            "Currency must be a three-letter ISO 4217 code",
            field="currency",
            value=currency,
        )
    return currency.upper()


@dataclass(frozen=True)
class Money:
    """An amount in a single currency. May be negative (e.g. wallet debt)."""

    amount: Decimal
    currency: str = DEFAULT_CURRENCY

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "currency", _normalize_currency(self.currency))

    @classmethod
    def of(cls, amount: Decimal | int | str, currency: str = DEFAULT_CURRENCY) -> Money:
        return cls(to_decimal(amount), currency)

    @classmethod
    def zero(cls, currency: str = DEFAULT_CURRENCY) -> Money:
        return cls(Decimal("0"), currency)

    def _check_currency(self, other: Money) -> None:
        if other.currency != self.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def add(self, other: Money) -> Money:
        self._check_currency(other)
        return Money(self.amount + other.amount, self.currency)

    def subtract(self, other: Money) -> Money:
        self._check_currency(other)
        return Money(self.amount - other.amount, self.currency)

    def multiply(self, factor: Decimal | int) -> Money:
        return Money(self.amount * to_decimal(factor), self.currency)

    def divide(self, divisor: Decimal | int) -> Money:
        divisor = to_decimal(divisor)
        if divisor == 0:
            raise ValidationError("Cannot divide money by zero", field="divisor", value=divisor)
        return Money(self.amount / divisor, self.currency)

    def negate(self) -> Money:
        return Money(-self.amount, self.currency)

    def abs(self) -> Money:
        return Money(abs(self.amount), self.currency)

    def rounded(self) -> Money:
        """Final amount, rounded half-up to 2 decimal places."""
        return Money(round_money(self.amount), self.currency)

    def compare_to(self, other: Money) -> int:
        """Return -1, 0 or 1. Fails across currencies."""
        self._check_currency(other)
        if self.amount < other.amount:
            return -1
        if self.amount > other.amount:
            return 1
        return 0

    def is_greater_or_equal(self, other: Money) -> bool:
        return self.compare_to(other) >= 0

    def is_less_than(self, other: Money) -> bool:
        return self.compare_to(other) < 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def is_negative(self) -> bool:
        return self.amount < 0

    def is_zero(self) -> bool:
        return self.amount == 0

    def to_string(self) -> str:
        """Amount as a plain string for notification payloads."""
        return f"{round_money(self.amount):f}"

    def __str__(self) -> str:
        return f"{self.currency} {round_money(self.amount):f}"


@dataclass(frozen=True)
class TaxableFee:
    """A net fee with a tax rate attached (e.g. 15% VAT as ``Decimal("0.15")``)."""

    amount: Decimal = Decimal("0")
    currency: str = DEFAULT_CURRENCY
    tax_rate: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        amount = to_decimal(self.amount)
        tax_rate = to_decimal(self.tax_rate)
        if amount < 0:
            raise ValidationError(
                "Fee amount must not be negative",
                field="amount",
                value=amount,
                constraint=">= 0",
            )
        if tax_rate < 0:
            raise ValidationError(
                "Tax rate must not be negative",
                field="tax_rate",
                value=tax_rate,
                constraint=">= 0",
            )
        object.__setattr__(self, "amount", amount)
        object.__setattr__(self, "tax_rate", tax_rate)
        object.__setattr__(self, "currency", _normalize_currency(self.currency))

    @classmethod
    def of(
        cls,
        amount: Decimal | int | str,
        currency: str = DEFAULT_CURRENCY,
        tax_rate: Decimal | int | str = Decimal("0"),
    ) -> TaxableFee:
        return cls(to_decimal(amount), currency, to_decimal(tax_rate))

    def net_amount(self) -> Money:
        return Money(self.amount, self.currency)

    def tax_amount(self) -> Money:
        return Money(round_money(self.amount * self.tax_rate), self.currency)

    def gross_amount(self) -> Money:
        return Money(round_money(self.amount * (1 + self.tax_rate)), self.currency)

    def is_zero(self) -> bool:
        return self.amount == 0


@dataclass(frozen=True)
class LocalizedText:
    """Bilingual display text."""

    en: str
    ar: str | None = None

    def get(self, locale: str = "en") -> str:
        if locale.lower().startswith("ar") and self.ar:
            return self.ar
        return self.en
