"""Plan change audit trail and scheduled (end-of-period) changes."""

from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from memberflow.core.exceptions import InvalidStateTransitionError
from memberflow.core.money import Money
from memberflow.models.base import Base, TenantMixin, TimestampMixin


class PlanChangeType(str, enum.Enum):
    """Direction of a plan change, by recurring price."""
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    LATERAL = "lateral"


class ProrationMode(str, enum.Enum):
    """How money moves when a plan changes."""
    PRORATE_IMMEDIATELY = "prorate_immediately"
    END_OF_PERIOD = "end_of_period"
    FULL_PERIOD_CREDIT = "full_period_credit"
    NO_PRORATION = "no_proration"


class ScheduledChangeStatus(str, enum.Enum):
    """Scheduled plan change status enum."""
    PENDING = "pending"
    PROCESSED = "processed"
    CANCELLED = "cancelled"


class PlanChangeHistory(Base, TenantMixin, TimestampMixin):
    """Immutable record of one executed plan change.

    Written for every mode, including NO_PRORATION where the amounts are
    left empty.
    """

    __tablename__ = "plan_change_history"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    subscription_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    contract_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    member_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    old_plan_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    new_plan_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    change_type: Mapped[PlanChangeType] = mapped_column(
        Enum(PlanChangeType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    proration_mode: Mapped[ProrationMode] = mapped_column(
        Enum(ProrationMode, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    billing_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    billing_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    days_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    total_days: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    credit_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    charge_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    net_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    wallet_transaction_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    scheduled_change_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    initiated_by_user_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    initiated_by_member: Mapped[bool] = mapped_column(Boolean, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    @classmethod
    def record(
        cls,
        *,
        tenant_id: UUID,
        subscription_id: UUID,
        member_id: UUID,
        old_plan_id: UUID,
        new_plan_id: UUID,
        change_type: PlanChangeType,
        proration_mode: ProrationMode,
        effective_date: date,
        billing_period_start: date,
        billing_period_end: date,
        days_remaining: int,
        total_days: int,
        currency: str,
        credit: Money | None = None,
        charge: Money | None = None,
        net: Money | None = None,
        contract_id: UUID | None = None,
        scheduled_change_id: UUID | None = None,
        initiated_by_user_id: UUID | None = None,
        initiated_by_member: bool = False,
        notes: str | None = None,
    ) -> PlanChangeHistory:
        return cls(
            id=uuid4(),
            tenant_id=tenant_id,
            subscription_id=subscription_id,
            contract_id=contract_id,
            member_id=member_id,
            old_plan_id=old_plan_id,
            new_plan_id=new_plan_id,
            change_type=change_type,
            proration_mode=proration_mode,
            effective_date=effective_date,
            billing_period_start=billing_period_start,
            billing_period_end=billing_period_end,
            days_remaining=days_remaining,
            total_days=total_days,
            currency=currency,
            credit_amount=credit.amount if credit is not None else None,
            charge_amount=charge.amount if charge is not None else None,
            net_amount=net.amount if net is not None else None,
            wallet_transaction_id=None,
            scheduled_change_id=scheduled_change_id,
            initiated_by_user_id=initiated_by_user_id,
            initiated_by_member=initiated_by_member,
            notes=notes,
        )

    def _money(self, amount: Decimal | None) -> Money | None:
        return Money(amount, self.currency) if amount is not None else None

    @property
    def credit(self) -> Money | None:
        return self._money(self.credit_amount)

    @property
    def charge(self) -> Money | None:
        return self._money(self.charge_amount)

    @property
    def net(self) -> Money | None:
        return self._money(self.net_amount)


class ScheduledPlanChange(Base, TenantMixin, TimestampMixin):
    """A plan change waiting for its scheduled date."""

    __tablename__ = "scheduled_plan_changes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    subscription_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    contract_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    member_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    current_plan_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    new_plan_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    change_type: Mapped[PlanChangeType] = mapped_column(
        Enum(PlanChangeType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    scheduled_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[ScheduledChangeStatus] = mapped_column(
        Enum(ScheduledChangeStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    history_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    initiated_by_user_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    initiated_by_member: Mapped[bool] = mapped_column(Boolean, nullable=False)

    __table_args__ = (
        Index("ix_scheduled_plan_changes_status_date", "status", "scheduled_date"),
    )

    @classmethod
    def create(
        cls,
        *,
        tenant_id: UUID,
        subscription_id: UUID,
        member_id: UUID,
        current_plan_id: UUID,
        new_plan_id: UUID,
        change_type: PlanChangeType,
        scheduled_date: date,
        contract_id: UUID | None = None,
        initiated_by_user_id: UUID | None = None,
        initiated_by_member: bool = False,
    ) -> ScheduledPlanChange:
        return cls(
            id=uuid4(),
            tenant_id=tenant_id,
            subscription_id=subscription_id,
            contract_id=contract_id,
            member_id=member_id,
            current_plan_id=current_plan_id,
            new_plan_id=new_plan_id,
            change_type=change_type,
            scheduled_date=scheduled_date,
            status=ScheduledChangeStatus.PENDING,
            processed_at=None,
            history_id=None,
            cancelled_at=None,
            cancelled_by=None,
            cancellation_reason=None,
            initiated_by_user_id=initiated_by_user_id,
            initiated_by_member=initiated_by_member,
        )

    def is_pending(self) -> bool:
        return self.status == ScheduledChangeStatus.PENDING

    def is_due(self, today: date) -> bool:
        return self.is_pending() and self.scheduled_date <= today

    def mark_processed(self, history_id: UUID, now: datetime) -> None:
        if not self.is_pending():
            raise InvalidStateTransitionError(
                entity="scheduled plan change", current_status=self.status, operation="process"
            )
        self.status = ScheduledChangeStatus.PROCESSED
        self.history_id = history_id
        self.processed_at = now

    def cancel(self, reason: str | None, cancelled_by: UUID | None, now: datetime) -> None:
        if not self.is_pending():
            raise InvalidStateTransitionError(
                entity="scheduled plan change", current_status=self.status, operation="cancel"
            )
        self.status = ScheduledChangeStatus.CANCELLED
        self.cancellation_reason = reason
        self.cancelled_by = cancelled_by
        self.cancelled_at = now
