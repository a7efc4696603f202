"""Membership plan catalog and per-term contract pricing."""

from __future__ import annotations

import enum
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from memberflow.core.exceptions import ValidationError, ValueOutOfRangeError
from memberflow.core.money import LocalizedText, Money, TaxableFee, round_money
from memberflow.models.base import Base, TenantMixin, TimestampMixin


class BillingPeriod(str, enum.Enum):
    """How often a plan bills."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi_annual"
    ANNUAL = "annual"
    ONE_TIME = "one_time"

    @property
    def days(self) -> int:
        return _BILLING_PERIOD_DAYS[self]


_BILLING_PERIOD_DAYS = {
    BillingPeriod.DAILY: 1,
    BillingPeriod.WEEKLY: 7,
    BillingPeriod.BIWEEKLY: 14,
    BillingPeriod.MONTHLY: 30,
    BillingPeriod.QUARTERLY: 90,
    BillingPeriod.SEMI_ANNUAL: 180,
    BillingPeriod.ANNUAL: 365,
    BillingPeriod.ONE_TIME: 30,
}


class ContractTerm(str, enum.Enum):
    """Commitment length offered at signing."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUAL = "semi_annual"
    ANNUAL = "annual"

    @property
    def months(self) -> int:
        return _CONTRACT_TERM_MONTHS[self]


_CONTRACT_TERM_MONTHS = {
    ContractTerm.MONTHLY: 1,
    ContractTerm.QUARTERLY: 3,
    ContractTerm.SEMI_ANNUAL: 6,
    ContractTerm.ANNUAL: 12,
}


class MembershipPlan(Base, TenantMixin, TimestampMixin):
    """A catalog entry members subscribe to.

    Fees are stored net with their tax rate; ``recurring_total`` is what a
    member pays each billing period (gross membership + gross admin fee).
    The join fee is charged once and is not part of the recurring total.
    """

    __tablename__ = "membership_plans"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name_en: Mapped[str] = mapped_column(String(200), nullable=False)
    name_ar: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description_en: Mapped[str | None] = mapped_column(Text, nullable=True)
    description_ar: Mapped[str | None] = mapped_column(Text, nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    membership_fee_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    membership_fee_tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    admin_fee_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    admin_fee_tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    join_fee_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    join_fee_tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)

    billing_period: Mapped[BillingPeriod] = mapped_column(
        Enum(BillingPeriod, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Allowances (None classes = unlimited)
    max_classes_per_period: Mapped[int | None] = mapped_column(Integer, nullable=True)
    has_guest_passes: Mapped[bool] = mapped_column(Boolean, nullable=False)
    guest_passes_count: Mapped[int] = mapped_column(Integer, nullable=False)
    freeze_days_allowed: Mapped[int] = mapped_column(Integer, nullable=False)

    # Feature flags
    has_locker_access: Mapped[bool] = mapped_column(Boolean, nullable=False)
    has_sauna_access: Mapped[bool] = mapped_column(Boolean, nullable=False)
    has_pool_access: Mapped[bool] = mapped_column(Boolean, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False)
    available_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    available_until: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name_en", name="uq_membership_plans_tenant_name"),
        Index("ix_membership_plans_tenant_active", "tenant_id", "is_active"),
    )

    @classmethod
    def create(
        cls,
        *,
        tenant_id: UUID,
        name: LocalizedText,
        billing_period: BillingPeriod,
        membership_fee: TaxableFee,
        administration_fee: TaxableFee | None = None,
        join_fee: TaxableFee | None = None,
        description: LocalizedText | None = None,
        duration_days: int | None = None,
        max_classes_per_period: int | None = None,
        guest_passes_count: int = 0,
        freeze_days_allowed: int = 0,
        has_locker_access: bool = False,
        has_sauna_access: bool = False,
        has_pool_access: bool = False,
        available_from: date | None = None,
        available_until: date | None = None,
    ) -> MembershipPlan:
        """Build a validated, active plan."""
        currency = membership_fee.currency
        administration_fee = administration_fee or TaxableFee(Decimal("0"), currency)
        join_fee = join_fee or TaxableFee(Decimal("0"), currency)
        for fee in (administration_fee, join_fee):
            if fee.currency != currency:
                raise ValidationError(
                    "All plan fees must share one currency",
                    field="currency",
                    value=fee.currency,
                    constraint=f"must be {currency}",
                )
        if membership_fee.is_zero() and administration_fee.is_zero():
            raise ValidationError(
                "A plan needs a membership fee or an administration fee",
                field="membership_fee",
            )
        if duration_days is not None and duration_days <= 0:
            raise ValueOutOfRangeError(
                "Duration must be positive", field="duration_days", value=duration_days
            )
        for field, value in (
            ("max_classes_per_period", max_classes_per_period),
            ("guest_passes_count", guest_passes_count),
            ("freeze_days_allowed", freeze_days_allowed),
        ):
            if value is not None and value < 0:
                raise ValueOutOfRangeError(
                    f"{field} must not be negative", field=field, value=value, constraint=">= 0"
                )
        if available_from and available_until and available_from > available_until:
            raise ValidationError(
                "Available from date must be on or before available until date",
                field="available_from",
                value=available_from,
            )
        return cls(
            id=uuid4(),
            tenant_id=tenant_id,
            name_en=name.en,
            name_ar=name.ar,
            description_en=description.en if description else None,
            description_ar=description.ar if description else None,
            currency=currency,
            membership_fee_amount=membership_fee.amount,
            membership_fee_tax_rate=membership_fee.tax_rate,
            admin_fee_amount=administration_fee.amount,
            admin_fee_tax_rate=administration_fee.tax_rate,
            join_fee_amount=join_fee.amount,
            join_fee_tax_rate=join_fee.tax_rate,
            billing_period=billing_period,
            duration_days=duration_days,
            max_classes_per_period=max_classes_per_period,
            has_guest_passes=guest_passes_count > 0,
            guest_passes_count=guest_passes_count,
            freeze_days_allowed=freeze_days_allowed,
            has_locker_access=has_locker_access,
            has_sauna_access=has_sauna_access,
            has_pool_access=has_pool_access,
            is_active=True,
            available_from=available_from,
            available_until=available_until,
        )

    @property
    def name(self) -> LocalizedText:
        return LocalizedText(self.name_en, self.name_ar)

    @property
    def membership_fee(self) -> TaxableFee:
        return TaxableFee(self.membership_fee_amount, self.currency, self.membership_fee_tax_rate)

    @property
    def administration_fee(self) -> TaxableFee:
        return TaxableFee(self.admin_fee_amount, self.currency, self.admin_fee_tax_rate)

    @property
    def join_fee(self) -> TaxableFee:
        return TaxableFee(self.join_fee_amount, self.currency, self.join_fee_tax_rate)

    def recurring_total(self) -> Money:
        """Gross amount billed every period."""
        return self.membership_fee.gross_amount().add(self.administration_fee.gross_amount())

    def effective_duration_days(self) -> int:
        if self.duration_days is not None:
            return self.duration_days
        return self.billing_period.days

    def is_currently_available(self, today: date) -> bool:
        if not self.is_active:
            return False
        if self.available_from is not None and today < self.available_from:
            return False
        if self.available_until is not None and today > self.available_until:
            return False
        return True

    def allowances(self) -> tuple[int | None, int, int]:
        """(classes, guest passes, freeze days) granted per period."""
        guest_passes = self.guest_passes_count if self.has_guest_passes else 0
        return self.max_classes_per_period, guest_passes, self.freeze_days_allowed

    def activate(self) -> None:
        self.is_active = True

    def deactivate(self) -> None:
        self.is_active = False


class ContractPricingTier(Base, TenantMixin, TimestampMixin):
    """Per-plan, per-term price override or discount.

    When both are set the override wins; at most one pricing path applies.
    """

    __tablename__ = "contract_pricing_tiers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    plan_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("membership_plans.id"), index=True)
    contract_term: Mapped[ContractTerm] = mapped_column(
        Enum(ContractTerm, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    discount_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    override_monthly_fee: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False)

    __table_args__ = (
        UniqueConstraint("plan_id", "contract_term", name="uq_pricing_tier_plan_term"),
    )

    @classmethod
    def create(
        cls,
        *,
        tenant_id: UUID,
        plan_id: UUID,
        contract_term: ContractTerm,
        currency: str,
        discount_percentage: Decimal | None = None,
        override_monthly_fee: Decimal | None = None,
    ) -> ContractPricingTier:
        if discount_percentage is None and override_monthly_fee is None:
            raise ValidationError(
                "A pricing tier needs a discount percentage or an override fee",
                field="discount_percentage",
            )
        if discount_percentage is not None and not 0 <= discount_percentage <= 100:
            raise ValueOutOfRangeError(
                "Discount percentage must be between 0 and 100",
                field="discount_percentage",
                value=discount_percentage,
                constraint="0-100",
            )
        if override_monthly_fee is not None and override_monthly_fee < 0:
            raise ValueOutOfRangeError(
                "Override fee must not be negative",
                field="override_monthly_fee",
                value=override_monthly_fee,
                constraint=">= 0",
            )
        return cls(
            id=uuid4(),
            tenant_id=tenant_id,
            plan_id=plan_id,
            contract_term=contract_term,
            discount_percentage=discount_percentage,
            override_monthly_fee=override_monthly_fee,
            currency=currency.upper(),
            is_active=True,
        )

    def effective_monthly_fee(self, base_fee: Money) -> Money:
        """Monthly fee after applying this tier to ``base_fee``."""
        if self.override_monthly_fee is not None:
            return Money(self.override_monthly_fee, self.currency)
        if self.discount_percentage is not None:
            factor = 1 - self.discount_percentage / Decimal("100")
            return Money(round_money(base_fee.amount * factor), base_fee.currency)
        return base_fee

    def savings(self, base_fee: Money) -> Money:
        """Monthly saving vs. ``base_fee``; never negative."""
        saving = base_fee.subtract(self.effective_monthly_fee(base_fee))
        if saving.is_negative():
            return Money.zero(base_fee.currency)
        return saving
