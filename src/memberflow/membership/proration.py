"""Proration math for plan changes.

Pure functions with no I/O. Ratios stay exact; only the final credit and
charge amounts are rounded (half-up, 2 places), and ``net`` is derived
from those rounded figures so ``net == charge - credit`` holds exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from memberflow.core.exceptions import CurrencyMismatchError, ValidationError
from memberflow.core.money import Money, round_money
from memberflow.models.plan_change import PlanChangeType, ProrationMode


@dataclass(frozen=True)
class ProrationResult:
    """Outcome of pricing one plan change."""

    change_type: PlanChangeType
    mode: ProrationMode
    effective_date: date
    billing_period_start: date
    billing_period_end: date
    days_remaining: int
    total_days: int
    credit: Money | None
    charge: Money | None
    net: Money | None

    @property
    def is_immediate(self) -> bool:
        return self.mode != ProrationMode.END_OF_PERIOD

    def net_or_zero(self, currency: str) -> Money:
        return self.net if self.net is not None else Money.zero(currency)


def determine_change_type(old_total: Money, new_total: Money) -> PlanChangeType:
    comparison = new_total.compare_to(old_total)
    if comparison > 0:
        return PlanChangeType.UPGRADE
    if comparison < 0:
        return PlanChangeType.DOWNGRADE
    return PlanChangeType.LATERAL


def default_proration_mode(change_type: PlanChangeType) -> ProrationMode:
    """Upgrades and lateral moves prorate now; downgrades wait for period end."""
    if change_type == PlanChangeType.DOWNGRADE:
        return ProrationMode.END_OF_PERIOD
    return ProrationMode.PRORATE_IMMEDIATELY


def period_days(period_start: date, period_end: date, change_date: date) -> tuple[int, int]:
    """(days_remaining, total_days), both inclusive of their end dates."""
    if period_end < period_start:
        raise ValidationError(
            "Billing period end precedes its start",
            field="billing_period_end",
            value=period_end,
        )
    total_days = (period_end - period_start).days + 1
    days_remaining = (period_end - change_date).days + 1
    return max(0, min(days_remaining, total_days)), total_days


def calculate_proration(
    *,
    old_fee: Money,
    new_fee: Money,
    billing_period_start: date,
    billing_period_end: date,
    change_date: date,
    mode: ProrationMode,
    change_type: PlanChangeType | None = None,
) -> ProrationResult:
    """Price a change from ``old_fee`` to ``new_fee`` on ``change_date``.

    Args:
        old_fee: Recurring fee for the current period under the old plan.
        new_fee: Recurring fee under the new plan.
        billing_period_start: First day of the current billing period.
        billing_period_end: Last day of the current billing period.
        change_date: The day the change is requested.
        mode: Proration strategy.
        change_type: Overrides the price-based classification.

    Returns:
        The proration result. Amounts are ``None`` for END_OF_PERIOD and
        NO_PRORATION.
    """
    if old_fee.currency != new_fee.currency:
        raise CurrencyMismatchError(old_fee.currency, new_fee.currency)
    change_type = change_type or determine_change_type(old_fee, new_fee)
    days_remaining, total_days = period_days(billing_period_start, billing_period_end, change_date)
    currency = old_fee.currency

    credit: Money | None = None
    charge: Money | None = None
    net: Money | None = None
    effective_date = change_date

    if mode == ProrationMode.PRORATE_IMMEDIATELY:
        credit = Money(round_money(old_fee.amount * days_remaining / Decimal(total_days)), currency)
        charge = Money(round_money(new_fee.amount * days_remaining / Decimal(total_days)), currency)
        net = charge.subtract(credit)
    elif mode == ProrationMode.FULL_PERIOD_CREDIT:
        credit = old_fee.rounded()
        charge = new_fee.rounded()
        net = charge.subtract(credit)
    elif mode == ProrationMode.END_OF_PERIOD:
        effective_date = billing_period_end + timedelta(days=1)

    return ProrationResult(
        change_type=change_type,
        mode=mode,
        effective_date=effective_date,
        billing_period_start=billing_period_start,
        billing_period_end=billing_period_end,
        days_remaining=days_remaining,
        total_days=total_days,
        credit=credit,
        charge=charge,
        net=net,
    )


def format_proration_summary(result: ProrationResult, locale: str = "en") -> str:
    arabic = locale.lower().startswith("ar")
    if result.mode == ProrationMode.END_OF_PERIOD:
        when = result.effective_date.isoformat()
        return f"سيتم تطبيق التغيير في {when}" if arabic else f"Change takes effect on {when}"
    if result.net is None or result.net.is_zero():
        return "لا توجد رسوم إضافية" if arabic else "No additional charge"
    amount = result.net.abs()
    if result.net.is_positive():
        if arabic:
            return f"سيتم خصم {amount.to_string()} {amount.currency} من محفظتك"
        return f"{amount} will be charged to your wallet"
    if arabic:
        return f"سيتم إضافة {amount.to_string()} {amount.currency} إلى محفظتك"
    return f"{amount} will be credited to your wallet"
