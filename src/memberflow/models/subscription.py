"""Subscription model and its state machine."""

from __future__ import annotations

import enum
from datetime import date, timedelta
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
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from memberflow.core.exceptions import (
    InvalidStateTransitionError,
    NoClassesRemainingError,
    NoFreezeDaysRemainingError,
    NoGuestPassesRemainingError,
    ValueOutOfRangeError,
)
from memberflow.core.money import Money
from memberflow.models.base import Base, TenantMixin, TimestampMixin
from memberflow.models.plan import MembershipPlan


class SubscriptionStatus(str, enum.Enum):
    """Subscription status enum."""
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    FROZEN = "frozen"
    PENDING_PAYMENT = "pending_payment"


class Subscription(Base, TenantMixin, TimestampMixin):
    """The billable period a member is enrolled in.

    ``end_date`` only ever moves forward (freeze compensation, extensions,
    renewals) except when a cancellation sets an earlier effective end.
    A subscription under notice stays ACTIVE; the pending cancellation is
    tracked through ``cancellation_request_id``.
    """

    __tablename__ = "subscriptions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    member_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    plan_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("membership_plans.id"), index=True)
    contract_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False)

    paid_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    paid_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)

    # Allowances (None classes = unlimited)
    classes_remaining: Mapped[int | None] = mapped_column(Integer, nullable=True)
    guest_passes_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    freeze_days_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    frozen_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_freeze_days_used: Mapped[int] = mapped_column(Integer, nullable=False)

    current_billing_period_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    current_billing_period_end: Mapped[date | None] = mapped_column(Date, nullable=True)
    scheduled_plan_change_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    # Pending cancellation
    cancellation_request_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    notice_period_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    cancellation_effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    reactivation_eligible_until: Mapped[date | None] = mapped_column(Date, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_subscriptions_tenant_member_status", "tenant_id", "member_id", "status"),
        Index("ix_subscriptions_status_end_date", "status", "end_date"),
    )

    @classmethod
    def create(
        cls,
        *,
        tenant_id: UUID,
        member_id: UUID,
        plan: MembershipPlan,
        start_date: date,
        paid_amount: Money | None = None,
        auto_renew: bool = False,
        notes: str | None = None,
    ) -> Subscription:
        """Enrol a member in ``plan``.

        Active immediately when ``paid_amount`` is given, otherwise
        PENDING_PAYMENT. Allowances are copied from the plan.
        """
        classes, guest_passes, freeze_days = plan.allowances()
        end_date = start_date + timedelta(days=plan.effective_duration_days())
        return cls(
            id=uuid4(),
            tenant_id=tenant_id,
            member_id=member_id,
            plan_id=plan.id,
            contract_id=None,
            status=SubscriptionStatus.ACTIVE if paid_amount is not None else SubscriptionStatus.PENDING_PAYMENT,
            start_date=start_date,
            end_date=end_date,
            auto_renew=auto_renew,
            paid_amount=paid_amount.amount if paid_amount is not None else None,
            paid_currency=paid_amount.currency if paid_amount is not None else None,
            classes_remaining=classes,
            guest_passes_remaining=guest_passes,
            freeze_days_remaining=freeze_days,
            frozen_at=None,
            total_freeze_days_used=0,
            current_billing_period_start=start_date,
            current_billing_period_end=end_date,
            scheduled_plan_change_id=None,
            cancellation_request_id=None,
            notice_period_end_date=None,
            cancellation_effective_date=None,
            reactivation_eligible_until=None,
            notes=notes,
        )

    def _reject(self, operation: str, message: str | None = None) -> InvalidStateTransitionError:
        return InvalidStateTransitionError(
            message,
            entity="subscription",
            current_status=self.status,
            operation=operation,
        )

    @property
    def paid(self) -> Money | None:
        if self.paid_amount is None or self.paid_currency is None:
            return None
        return Money(self.paid_amount, self.paid_currency)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def freeze(self, today: date) -> None:
        if self.status != SubscriptionStatus.ACTIVE:
            raise self._reject("freeze", "Only active subscriptions can be frozen")
        if self.freeze_days_remaining <= 0:
            raise NoFreezeDaysRemainingError(resource="freeze_days", remaining=0)
        self.status = SubscriptionStatus.FROZEN
        self.frozen_at = today

    def unfreeze(self, today: date) -> int:
        """Resume a frozen subscription.

        ``end_date`` is pushed out by exactly the number of frozen days and
        the freeze allowance is consumed, never below zero.

        Returns:
            The number of days the subscription was frozen.
        """
        if self.status != SubscriptionStatus.FROZEN or self.frozen_at is None:
            raise self._reject("unfreeze", "Subscription is not frozen")
        frozen_days = max(0, (today - self.frozen_at).days)
        self.freeze_days_remaining = max(0, self.freeze_days_remaining - frozen_days)
        self.end_date = self.end_date + timedelta(days=frozen_days)
        if self.current_billing_period_end is not None:
            self.current_billing_period_end = self.current_billing_period_end + timedelta(days=frozen_days)
        self.total_freeze_days_used += frozen_days
        self.status = SubscriptionStatus.ACTIVE
        self.frozen_at = None
        return frozen_days

    def cancel(self, effective_end_date: date | None = None) -> None:
        """Terminal cancellation from any other status."""
        if self.status == SubscriptionStatus.CANCELLED:
            raise self._reject("cancel", "Subscription is already cancelled")
        self.status = SubscriptionStatus.CANCELLED
        self.frozen_at = None
        if effective_end_date is not None:
            self.end_date = effective_end_date

    def is_past_end(self, today: date) -> bool:
        return today > self.end_date

    def expire(self, today: date) -> bool:
        """ACTIVE -> EXPIRED once the end date has passed. No-op otherwise.

        Returns:
            True when the status changed.
        """
        if self.status == SubscriptionStatus.ACTIVE and self.is_past_end(today):
            self.status = SubscriptionStatus.EXPIRED
            return True
        return False

    def renew(self, new_end_date: date) -> None:
        if self.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.EXPIRED):
            raise self._reject("renew")
        if self.status == SubscriptionStatus.ACTIVE and new_end_date < self.end_date:
            raise ValueOutOfRangeError(
                "Renewal cannot shorten an active subscription",
                field="new_end_date",
                value=new_end_date,
                constraint=f">= {self.end_date.isoformat()}",
            )
        previous_end = self.end_date
        self.end_date = new_end_date
        self.current_billing_period_start = previous_end + timedelta(days=1)
        self.current_billing_period_end = new_end_date
        self.status = SubscriptionStatus.ACTIVE

    def reset_allowances(self, plan: MembershipPlan) -> None:
        self.classes_remaining, self.guest_passes_remaining, self.freeze_days_remaining = plan.allowances()

    def use_class(self) -> None:
        if self.classes_remaining is None:
            return
        if self.classes_remaining <= 0:
            raise NoClassesRemainingError(resource="classes", remaining=0)
        self.classes_remaining -= 1

    def use_guest_pass(self) -> None:
        if self.guest_passes_remaining <= 0:
            raise NoGuestPassesRemainingError(resource="guest_passes", remaining=0)
        self.guest_passes_remaining -= 1

    def has_classes_available(self) -> bool:
        return self.classes_remaining is None or self.classes_remaining > 0

    def confirm_payment(self, amount: Money) -> None:
        if self.status != SubscriptionStatus.PENDING_PAYMENT:
            raise self._reject("confirm payment for", "Subscription is not pending payment")
        self.paid_amount = amount.amount
        self.paid_currency = amount.currency
        self.status = SubscriptionStatus.ACTIVE

    # ------------------------------------------------------------------
    # Adjustments driven by contracts, retention offers and plan changes
    # ------------------------------------------------------------------

    def add_freeze_days(self, days: int) -> None:
        if days <= 0:
            raise ValueOutOfRangeError("Freeze days must be positive", field="days", value=days)
        self.freeze_days_remaining += days

    def extend(self, days: int) -> None:
        if days <= 0:
            raise ValueOutOfRangeError("Extension days must be positive", field="days", value=days)
        if self.status == SubscriptionStatus.CANCELLED:
            raise self._reject("extend")
        self.end_date = self.end_date + timedelta(days=days)

    def change_plan(self, plan: MembershipPlan) -> None:
        """Swap the plan, refreshing allowances from the new plan."""
        if self.status in (SubscriptionStatus.CANCELLED, SubscriptionStatus.EXPIRED):
            raise self._reject("change plan of")
        self.plan_id = plan.id
        classes, guest_passes, _ = plan.allowances()
        self.classes_remaining = classes
        self.guest_passes_remaining = guest_passes
        self.scheduled_plan_change_id = None

    def link_contract(self, contract_id: UUID) -> None:
        self.contract_id = contract_id

    def schedule_change(self, scheduled_change_id: UUID) -> None:
        self.scheduled_plan_change_id = scheduled_change_id

    def clear_scheduled_change(self) -> None:
        self.scheduled_plan_change_id = None

    def update_billing_period(self, start: date, end: date) -> None:
        if end < start:
            raise ValueOutOfRangeError(
                "Billing period end precedes its start", field="end", value=end
            )
        self.current_billing_period_start = start
        self.current_billing_period_end = end

    def billing_period(self) -> tuple[date, date]:
        return (
            self.current_billing_period_start or self.start_date,
            self.current_billing_period_end or self.end_date,
        )

    def mark_pending_cancellation(
        self,
        *,
        request_id: UUID,
        notice_period_end_date: date,
        effective_date: date,
    ) -> None:
        if self.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.FROZEN):
            raise self._reject("request cancellation of")
        if self.cancellation_request_id is not None:
            raise self._reject("request cancellation of", "Subscription already has a pending cancellation")
        self.cancellation_request_id = request_id
        self.notice_period_end_date = notice_period_end_date
        self.cancellation_effective_date = effective_date

    def clear_pending_cancellation(self) -> None:
        self.cancellation_request_id = None
        self.notice_period_end_date = None
        self.cancellation_effective_date = None

    def has_pending_cancellation(self) -> bool:
        return self.cancellation_request_id is not None

    def allows_access(self, today: date) -> bool:
        return self.status == SubscriptionStatus.ACTIVE and not self.is_past_end(today)

    def days_remaining(self, today: date) -> int:
        """Days until ``end_date``; negative once expired."""
        return (self.end_date - today).days
