"""Pydantic command schemas and service result types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from memberflow.core.money import LocalizedText, Money
from memberflow.models.cancellation import (
    CancellationReasonCategory,
    CancellationRequest,
    DissatisfactionArea,
    RetentionOffer,
    RetentionOfferType,
)
from memberflow.models.contract import ContractType, MembershipContract, TerminationFeeType
from memberflow.models.plan import BillingPeriod, ContractTerm
from memberflow.models.plan_change import (
    PlanChangeHistory,
    PlanChangeType,
    ProrationMode,
    ScheduledPlanChange,
)
from memberflow.models.subscription import Subscription
from memberflow.models.wallet import WalletTransaction

# ============================================================================
# Plans
# ============================================================================


class PlanCreate(BaseModel):
    """Schema for creating a membership plan."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name_en: str = Field(..., min_length=1, max_length=200)
    name_ar: str | None = Field(None, max_length=200)
    description_en: str | None = None
    description_ar: str | None = None
    billing_period: BillingPeriod = BillingPeriod.MONTHLY
    currency: str = Field("SAR", min_length=3, max_length=3)
    membership_fee: Decimal = Field(..., ge=0)
    membership_tax_rate: Decimal = Field(Decimal("0"), ge=0)
    admin_fee: Decimal = Field(Decimal("0"), ge=0)
    admin_tax_rate: Decimal = Field(Decimal("0"), ge=0)
    join_fee: Decimal = Field(Decimal("0"), ge=0)
    join_tax_rate: Decimal = Field(Decimal("0"), ge=0)
    duration_days: int | None = Field(None, gt=0)
    max_classes_per_period: int | None = Field(None, ge=0)
    guest_passes_count: int = Field(0, ge=0)
    freeze_days_allowed: int = Field(0, ge=0)
    has_locker_access: bool = False
    has_sauna_access: bool = False
    has_pool_access: bool = False
    available_from: date | None = None
    available_until: date | None = None


class PlanUpdate(BaseModel):
    """Schema for updating a membership plan. Only set fields change."""

    name_en: str | None = Field(None, min_length=1, max_length=200)
    name_ar: str | None = Field(None, max_length=200)
    description_en: str | None = None
    description_ar: str | None = None
    membership_fee: Decimal | None = Field(None, ge=0)
    membership_tax_rate: Decimal | None = Field(None, ge=0)
    admin_fee: Decimal | None = Field(None, ge=0)
    admin_tax_rate: Decimal | None = Field(None, ge=0)
    join_fee: Decimal | None = Field(None, ge=0)
    join_tax_rate: Decimal | None = Field(None, ge=0)
    duration_days: int | None = Field(None, gt=0)
    max_classes_per_period: int | None = Field(None, ge=0)
    guest_passes_count: int | None = Field(None, ge=0)
    freeze_days_allowed: int | None = Field(None, ge=0)
    available_from: date | None = None
    available_until: date | None = None


class PricingTierCreate(BaseModel):
    """Schema for a per-term contract price."""

    plan_id: UUID
    contract_term: ContractTerm
    discount_percentage: Decimal | None = Field(None, ge=0, le=100)
    override_monthly_fee: Decimal | None = Field(None, ge=0)

    @model_validator(mode="after")
    def require_pricing(self) -> PricingTierCreate:
        if self.discount_percentage is None and self.override_monthly_fee is None:
            raise ValueError("discount_percentage or override_monthly_fee is required")
        return self


# ============================================================================
# Subscriptions
# ============================================================================


class SubscriptionCreate(BaseModel):
    """Schema for enrolling a member in a plan."""

    member_id: UUID
    plan_id: UUID
    start_date: date | None = None
    paid_amount: Decimal | None = Field(None, ge=0)
    auto_renew: bool = False
    notes: str | None = None


class SubscriptionRenew(BaseModel):
    """Schema for renewing a subscription."""

    new_end_date: date | None = None
    paid_amount: Decimal | None = Field(None, ge=0)


# ============================================================================
# Contracts
# ============================================================================


class ContractCreate(BaseModel):
    """Schema for drafting a membership contract."""

    member_id: UUID
    plan_id: UUID
    subscription_id: UUID | None = None
    contract_type: ContractType = ContractType.FIXED_TERM
    contract_term: ContractTerm = ContractTerm.ANNUAL
    start_date: date | None = None
    commitment_months: int | None = Field(None, ge=0)
    notice_period_days: int | None = Field(None, ge=0)
    cooling_off_days: int | None = Field(None, ge=0)
    early_termination_fee_type: TerminationFeeType = TerminationFeeType.REMAINING_MONTHS
    early_termination_fee_value: Decimal | None = Field(None, ge=0)


# ============================================================================
# Cancellation workflow
# ============================================================================


class CancellationCreate(BaseModel):
    """Schema for a member's cancellation request."""

    subscription_id: UUID
    reason_category: CancellationReasonCategory
    reason_detail: str | None = None


class ExitSurveyCreate(BaseModel):
    """Schema for exit survey submission."""

    subscription_id: UUID
    reason_category: CancellationReasonCategory
    reason_detail: str | None = None
    feedback: str | None = None
    nps_score: int | None = Field(None, ge=0, le=10)
    would_recommend: bool | None = None
    overall_satisfaction: int | None = Field(None, ge=1, le=5)
    dissatisfaction_areas: list[DissatisfactionArea] = Field(default_factory=list)
    what_would_bring_back: str | None = None
    open_to_future_offers: bool = True
    competitor_name: str | None = Field(None, max_length=200)
    competitor_reason: str | None = None


# ============================================================================
# Plan changes
# ============================================================================


class PlanChangeRequest(BaseModel):
    """Schema for a plan change."""

    subscription_id: UUID
    new_plan_id: UUID
    proration_mode: ProrationMode | None = None
    initiated_by_user_id: UUID | None = None
    initiated_by_member: bool = False
    notes: str | None = None


# ============================================================================
# Results
# ============================================================================


@dataclass(frozen=True)
class ContractCancellationPreview:
    """What cancelling a contract today would cost or refund."""

    contract_id: UUID
    is_within_cooling_off: bool
    cooling_off_days_remaining: int
    is_within_commitment: bool
    commitment_months_remaining: int
    early_termination_fee: Money
    refund_amount: Money | None
    notice_period_days: int
    effective_date: date


@dataclass(frozen=True)
class RetentionOfferPreview:
    """An offer that would be presented if the member requested cancellation."""

    offer_type: RetentionOfferType
    title: LocalizedText
    description: LocalizedText | None
    value: Money | None = None
    discount_percentage: Decimal | None = None
    duration_days: int | None = None
    duration_months: int | None = None
    session_count: int | None = None
    alternative_plan_id: UUID | None = None
    alternative_plan_name: LocalizedText | None = None

    @classmethod
    def from_offer(cls, offer: RetentionOffer, plan_name: LocalizedText | None = None) -> RetentionOfferPreview:
        return cls(
            offer_type=offer.offer_type,
            title=offer.title,
            description=offer.description,
            value=offer.value,
            discount_percentage=offer.discount_percentage,
            duration_days=offer.duration_days,
            duration_months=offer.duration_months,
            session_count=offer.session_count,
            alternative_plan_id=offer.alternative_plan_id,
            alternative_plan_name=plan_name,
        )


@dataclass(frozen=True)
class CancellationPreview:
    subscription_id: UUID
    is_within_cooling_off: bool
    cooling_off_days_remaining: int
    is_within_commitment: bool
    commitment_months_remaining: int
    notice_period_days: int
    notice_period_end_date: date
    effective_date: date
    early_termination_fee: Money
    refund_amount: Money | None
    retention_offers: list[RetentionOfferPreview] = field(default_factory=list)


@dataclass(frozen=True)
class CancellationResult:
    cancellation_request: CancellationRequest
    subscription: Subscription
    retention_offers: list[RetentionOffer]
    was_immediate: bool
    refund_transaction: WalletTransaction | None = None


@dataclass(frozen=True)
class RetentionOfferAcceptanceResult:
    offer: RetentionOffer
    cancellation_request: CancellationRequest
    subscription: Subscription
    member_saved: bool
    wallet_transaction: WalletTransaction | None = None
    scheduled_change: ScheduledPlanChange | None = None


@dataclass(frozen=True)
class ContractVoidResult:
    contract: MembershipContract
    subscription: Subscription | None
    refund_transaction: WalletTransaction | None


@dataclass(frozen=True)
class PlanChangePreview:
    subscription_id: UUID
    current_plan_id: UUID
    current_plan_name: str
    new_plan_id: UUID
    new_plan_name: str
    change_type: PlanChangeType
    proration_mode: ProrationMode
    effective_date: date
    credit: Money | None
    charge: Money | None
    net_amount: Money | None
    days_remaining: int
    total_days: int
    summary: str


@dataclass(frozen=True)
class PlanChangeResult:
    subscription: Subscription
    history: PlanChangeHistory | None
    scheduled_change: ScheduledPlanChange | None
    change_type: PlanChangeType
    effective_date: date
    was_immediate: bool
    wallet_transaction: WalletTransaction | None = None


@dataclass(frozen=True)
class LedgerVerification:
    """Outcome of replaying a wallet's transaction log."""

    wallet_id: UUID
    stored_balance: Money
    replayed_balance: Money
    transaction_count: int
    broken_sequence_numbers: list[int] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return self.stored_balance == self.replayed_balance and not self.broken_sequence_numbers


@dataclass
class BulkOperationResult:
    """Per-id outcome of a bulk subscription operation."""

    succeeded: dict[UUID, Subscription] = field(default_factory=dict)
    failed: dict[UUID, str] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failure_count(self) -> int:
        return len(self.failed)


@dataclass(frozen=True)
class ExitSurveyAnalytics:
    total_surveys: int
    average_nps: float | None
    nps_score: float | None
    promoters: int
    passives: int
    detractors: int
    reason_counts: dict[str, int]
