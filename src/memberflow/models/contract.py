"""Membership contract: commitment, cooling-off and early termination."""

from __future__ import annotations

import enum
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Date,
    DateTime,
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

from memberflow.core.clock import add_months, months_between
from memberflow.core.exceptions import InvalidStateTransitionError, ValueOutOfRangeError
from memberflow.core.money import Money, TaxableFee, round_money
from memberflow.models.base import Base, TenantMixin, TimestampMixin
from memberflow.models.plan import ContractTerm

DEFAULT_COOLING_OFF_DAYS = 7
DEFAULT_NOTICE_PERIOD_DAYS = 30


class ContractType(str, enum.Enum):
    """Contract type enum."""
    MONTH_TO_MONTH = "month_to_month"
    FIXED_TERM = "fixed_term"


class ContractStatus(str, enum.Enum):
    """Contract status enum."""
    PENDING_SIGNATURE = "pending_signature"
    ACTIVE = "active"
    IN_NOTICE_PERIOD = "in_notice_period"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    SUSPENDED = "suspended"
    VOIDED = "voided"


class TerminationFeeType(str, enum.Enum):
    """How the early-termination fee is computed."""
    NONE = "none"
    FLAT_FEE = "flat_fee"
    REMAINING_MONTHS = "remaining_months"
    PERCENTAGE = "percentage"


class CancellationType(str, enum.Enum):
    """Why a contract was ended."""
    COOLING_OFF = "cooling_off"
    MEMBER_REQUEST = "member_request"
    NON_PAYMENT = "non_payment"
    RELOCATION = "relocation"
    MEDICAL = "medical"
    ADMINISTRATIVE = "administrative"


_TERMINAL_STATUSES = frozenset(
    {ContractStatus.CANCELLED, ContractStatus.EXPIRED, ContractStatus.VOIDED}
)


class MembershipContract(Base, TenantMixin, TimestampMixin):
    """Commitment wrapper around a subscription.

    Fees are locked at signing so later plan price changes do not affect
    the member. ``cooling_off_end_date`` is always ``start_date +
    cooling_off_days``; while today is on or before it the contract can be
    voided without any fee.
    """

    __tablename__ = "membership_contracts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    contract_number: Mapped[str] = mapped_column(String(32), nullable=False)
    member_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    plan_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("membership_plans.id"), nullable=False)
    subscription_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    contract_type: Mapped[ContractType] = mapped_column(
        Enum(ContractType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    contract_term: Mapped[ContractTerm] = mapped_column(
        Enum(ContractTerm, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    commitment_months: Mapped[int] = mapped_column(Integer, nullable=False)
    notice_period_days: Mapped[int] = mapped_column(Integer, nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    commitment_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    effective_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Locked pricing (snapshot at signing)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    locked_membership_fee_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    locked_membership_fee_tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    locked_admin_fee_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    locked_admin_fee_tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    locked_join_fee_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    locked_join_fee_tax_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)

    early_termination_fee_type: Mapped[TerminationFeeType] = mapped_column(
        Enum(TerminationFeeType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    early_termination_fee_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)

    cooling_off_days: Mapped[int] = mapped_column(Integer, nullable=False)
    cooling_off_end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[ContractStatus] = mapped_column(
        Enum(ContractStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    suspended_from_status: Mapped[ContractStatus | None] = mapped_column(
        Enum(
            ContractStatus,
            values_callable=lambda x: [e.value for e in x],
            name="contractstatus_suspended_from",
        ),
        nullable=True,
    )

    # Signatures
    member_signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    member_signature_data: Mapped[str | None] = mapped_column(Text, nullable=True)
    staff_approved_by: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    staff_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Cancellation
    cancellation_requested_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    cancellation_effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    cancellation_type: Mapped[CancellationType | None] = mapped_column(
        Enum(CancellationType, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_membership_contracts_tenant_status", "tenant_id", "status"),
        Index("ix_membership_contracts_cancellation_due", "status", "cancellation_effective_date"),
        UniqueConstraint("tenant_id", "contract_number", name="uq_membership_contracts_tenant_number"),
    )

    @classmethod
    def create(
        cls,
        *,
        tenant_id: UUID,
        contract_number: str,
        member_id: UUID,
        plan_id: UUID,
        contract_type: ContractType,
        contract_term: ContractTerm,
        start_date: date,
        locked_membership_fee: TaxableFee,
        locked_admin_fee: TaxableFee | None = None,
        locked_join_fee: TaxableFee | None = None,
        commitment_months: int = 0,
        notice_period_days: int = DEFAULT_NOTICE_PERIOD_DAYS,
        cooling_off_days: int = DEFAULT_COOLING_OFF_DAYS,
        early_termination_fee_type: TerminationFeeType = TerminationFeeType.REMAINING_MONTHS,
        early_termination_fee_value: Decimal | None = None,
        subscription_id: UUID | None = None,
    ) -> MembershipContract:
        """Build a contract awaiting the member's signature."""
        for field, value in (
            ("commitment_months", commitment_months),
            ("notice_period_days", notice_period_days),
            ("cooling_off_days", cooling_off_days),
        ):
            if value < 0:
                raise ValueOutOfRangeError(
                    f"{field} must not be negative", field=field, value=value, constraint=">= 0"
                )
        if early_termination_fee_value is not None and early_termination_fee_value < 0:
            raise ValueOutOfRangeError(
                "Early termination fee value must not be negative",
                field="early_termination_fee_value",
                value=early_termination_fee_value,
            )
        if (
            early_termination_fee_type == TerminationFeeType.PERCENTAGE
            and early_termination_fee_value is not None
            and early_termination_fee_value > 100
        ):
            raise ValueOutOfRangeError(
                "Early termination percentage must be between 0 and 100",
                field="early_termination_fee_value",
                value=early_termination_fee_value,
                constraint="0-100",
            )

        currency = locked_membership_fee.currency
        locked_admin_fee = locked_admin_fee or TaxableFee(Decimal("0"), currency)
        locked_join_fee = locked_join_fee or TaxableFee(Decimal("0"), currency)
        commitment_end_date = add_months(start_date, commitment_months) if commitment_months > 0 else None

        return cls(
            id=uuid4(),
            tenant_id=tenant_id,
            contract_number=contract_number,
            member_id=member_id,
            plan_id=plan_id,
            subscription_id=subscription_id,
            contract_type=contract_type,
            contract_term=contract_term,
            commitment_months=commitment_months,
            notice_period_days=notice_period_days,
            start_date=start_date,
            commitment_end_date=commitment_end_date,
            effective_end_date=None,
            currency=currency,
            locked_membership_fee_amount=locked_membership_fee.amount,
            locked_membership_fee_tax_rate=locked_membership_fee.tax_rate,
            locked_admin_fee_amount=locked_admin_fee.amount,
            locked_admin_fee_tax_rate=locked_admin_fee.tax_rate,
            locked_join_fee_amount=locked_join_fee.amount,
            locked_join_fee_tax_rate=locked_join_fee.tax_rate,
            early_termination_fee_type=early_termination_fee_type,
            early_termination_fee_value=early_termination_fee_value,
            cooling_off_days=cooling_off_days,
            cooling_off_end_date=start_date + timedelta(days=cooling_off_days),
            status=ContractStatus.PENDING_SIGNATURE,
            suspended_from_status=None,
            member_signed_at=None,
            member_signature_data=None,
            staff_approved_by=None,
            staff_approved_at=None,
            cancellation_requested_at=None,
            cancellation_effective_date=None,
            cancellation_type=None,
            cancellation_reason=None,
        )

    def _reject(self, operation: str, message: str | None = None) -> InvalidStateTransitionError:
        return InvalidStateTransitionError(
            message,
            entity="contract",
            current_status=self.status,
            operation=operation,
        )

    # ------------------------------------------------------------------
    # Locked pricing
    # ------------------------------------------------------------------

    @property
    def locked_membership_fee(self) -> TaxableFee:
        return TaxableFee(
            self.locked_membership_fee_amount, self.currency, self.locked_membership_fee_tax_rate
        )

    @property
    def locked_admin_fee(self) -> TaxableFee:
        return TaxableFee(self.locked_admin_fee_amount, self.currency, self.locked_admin_fee_tax_rate)

    @property
    def locked_join_fee(self) -> TaxableFee:
        return TaxableFee(self.locked_join_fee_amount, self.currency, self.locked_join_fee_tax_rate)

    def locked_monthly_total(self) -> Money:
        return self.locked_membership_fee.gross_amount().add(self.locked_admin_fee.gross_amount())

    # ------------------------------------------------------------------
    # Signature
    # ------------------------------------------------------------------

    def sign_by_member(self, signature_data: str, now: datetime) -> None:
        if self.status != ContractStatus.PENDING_SIGNATURE:
            raise self._reject("sign", "Contract is not pending signature")
        self.member_signed_at = now
        self.member_signature_data = signature_data
        self.status = ContractStatus.ACTIVE

    def approve_by_staff(self, staff_user_id: UUID, now: datetime) -> None:
        if self.status in _TERMINAL_STATUSES:
            raise self._reject("approve")
        self.staff_approved_by = staff_user_id
        self.staff_approved_at = now

    def is_signed(self) -> bool:
        return self.member_signed_at is not None

    # ------------------------------------------------------------------
    # Cooling-off
    # ------------------------------------------------------------------

    def is_within_cooling_off(self, today: date) -> bool:
        """Inclusive of ``cooling_off_end_date``."""
        return today <= self.cooling_off_end_date

    def cooling_off_days_remaining(self, today: date) -> int:
        if today > self.cooling_off_end_date:
            return 0
        return (self.cooling_off_end_date - today).days + 1

    def cancel_within_cooling_off(self, reason: str | None, today: date) -> None:
        """Void the contract with no fee. Never combined with termination fees."""
        if self.status in _TERMINAL_STATUSES:
            raise self._reject("void")
        if not self.is_within_cooling_off(today):
            raise self._reject("void", "Cooling-off period has expired")
        self.status = ContractStatus.VOIDED
        self.suspended_from_status = None
        self.cancellation_type = CancellationType.COOLING_OFF
        self.cancellation_requested_at = today
        self.cancellation_effective_date = today
        self.effective_end_date = today
        self.cancellation_reason = reason

    # ------------------------------------------------------------------
    # Commitment & early termination
    # ------------------------------------------------------------------

    def is_within_commitment(self, today: date) -> bool:
        return self.commitment_end_date is not None and today < self.commitment_end_date

    def commitment_months_remaining(self, today: date) -> int:
        if self.commitment_end_date is None or today > self.commitment_end_date:
            return 0
        return max(0, months_between(today, self.commitment_end_date))

    def calculate_early_termination_fee(self, today: date) -> Money:
        """Fee owed if the member left today.

        Always zero inside the cooling-off window and outside the
        commitment period.
        """
        zero = Money.zero(self.currency)
        if self.is_within_cooling_off(today) or not self.is_within_commitment(today):
            return zero

        fee_type = self.early_termination_fee_type
        if fee_type == TerminationFeeType.NONE:
            return zero
        if fee_type == TerminationFeeType.FLAT_FEE:
            return Money(round_money(self.early_termination_fee_value or Decimal("0")), self.currency)

        monthly_fee = self.locked_membership_fee.gross_amount()
        remaining_value = monthly_fee.multiply(self.commitment_months_remaining(today))
        if fee_type == TerminationFeeType.REMAINING_MONTHS:
            return remaining_value.rounded()
        percentage = self.early_termination_fee_value or Decimal("0")
        return remaining_value.multiply(percentage).divide(100).rounded()

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def request_cancellation(
        self,
        cancellation_type: CancellationType,
        reason: str | None,
        today: date,
        *,
        effective_date: date | None = None,
    ) -> None:
        """ACTIVE -> IN_NOTICE_PERIOD.

        ``effective_date`` defaults to ``today + notice_period_days``.
        """
        if self.status != ContractStatus.ACTIVE:
            raise self._reject("request cancellation of", "Contract is not active")
        self.cancellation_requested_at = today
        self.cancellation_type = cancellation_type
        self.cancellation_reason = reason
        self.cancellation_effective_date = effective_date or today + timedelta(days=self.notice_period_days)
        self.status = ContractStatus.IN_NOTICE_PERIOD

    def is_in_notice_period(self) -> bool:
        """In notice, including a suspension that interrupted the notice period."""
        return self.status == ContractStatus.IN_NOTICE_PERIOD or (
            self.status == ContractStatus.SUSPENDED
            and self.suspended_from_status == ContractStatus.IN_NOTICE_PERIOD
        )

    def complete_cancellation(self, today: date) -> None:
        if not self.is_in_notice_period():
            raise self._reject("complete cancellation of", "Contract is not in notice period")
        self.status = ContractStatus.CANCELLED
        self.suspended_from_status = None
        self.effective_end_date = self.cancellation_effective_date or today

    def withdraw_cancellation_request(self) -> None:
        if self.status != ContractStatus.IN_NOTICE_PERIOD:
            raise self._reject("withdraw cancellation of", "Contract is not in notice period")
        self.status = ContractStatus.ACTIVE
        self.cancellation_requested_at = None
        self.cancellation_effective_date = None
        self.cancellation_type = None
        self.cancellation_reason = None

    def is_cancellation_due(self, today: date) -> bool:
        return (
            self.is_in_notice_period()
            and self.cancellation_effective_date is not None
            and self.cancellation_effective_date <= today
        )

    # ------------------------------------------------------------------
    # Suspension & expiry
    # ------------------------------------------------------------------

    def suspend(self) -> None:
        if self.status not in (ContractStatus.ACTIVE, ContractStatus.IN_NOTICE_PERIOD):
            raise self._reject("suspend")
        self.suspended_from_status = self.status
        self.status = ContractStatus.SUSPENDED

    def reactivate(self) -> None:
        """Return to the status the suspension interrupted."""
        if self.status != ContractStatus.SUSPENDED:
            raise self._reject("reactivate", "Contract is not suspended")
        self.status = self.suspended_from_status or ContractStatus.ACTIVE
        self.suspended_from_status = None

    def expire(self, today: date) -> bool:
        """ACTIVE -> EXPIRED once ``effective_end_date`` has passed.

        Returns:
            True when the status changed.
        """
        if (
            self.status == ContractStatus.ACTIVE
            and self.effective_end_date is not None
            and today > self.effective_end_date
        ):
            self.status = ContractStatus.EXPIRED
            return True
        return False

    def is_active(self) -> bool:
        return self.status == ContractStatus.ACTIVE

    def allows_access(self) -> bool:
        return self.status in (ContractStatus.ACTIVE, ContractStatus.IN_NOTICE_PERIOD)

    def link_subscription(self, subscription_id: UUID) -> None:
        self.subscription_id = subscription_id


def format_contract_number(prefix: str, year: int, sequence: int) -> str:
    """``PREFIX-YYYY-NNNNNN``."""
    return f"{prefix}-{year}-{sequence:06d}"