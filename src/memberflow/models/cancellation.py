"""Cancellation workflow models: requests, exit surveys and retention offers."""

from __future__ import annotations

import enum
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from memberflow.core.clock import ensure_utc
from memberflow.core.exceptions import (
    InvalidStateTransitionError,
    ValidationError,
    ValueOutOfRangeError,
)
from memberflow.core.money import LocalizedText, Money
from memberflow.membership import offer_text
from memberflow.models.base import Base, TenantMixin, TimestampMixin


class CancellationReasonCategory(str, enum.Enum):
    """Why a member is leaving."""
    PRICE = "price"
    RELOCATION = "relocation"
    HEALTH = "health"
    SCHEDULE = "schedule"
    NOT_USING = "not_using"
    SERVICE_QUALITY = "service_quality"
    FACILITIES = "facilities"
    COMPETITOR = "competitor"
    OTHER = "other"


class CancellationRequestStatus(str, enum.Enum):
    """Cancellation request status enum."""
    PENDING_NOTICE = "pending_notice"
    IN_NOTICE = "in_notice"
    SAVED = "saved"
    COMPLETED = "completed"
    WITHDRAWN = "withdrawn"


class RetentionOfferType(str, enum.Enum):
    """Retention offer type enum."""
    FREE_FREEZE = "free_freeze"
    DISCOUNT = "discount"
    CREDIT = "credit"
    DOWNGRADE = "downgrade"
    EXTENSION = "extension"
    PERSONAL_TRAINING = "personal_training"
    CUSTOM = "custom"


class RetentionOfferStatus(str, enum.Enum):
    """Retention offer status enum."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class DissatisfactionArea(str, enum.Enum):
    """Areas an exiting member can flag."""
    PRICE = "price"
    EQUIPMENT = "equipment"
    CLEANLINESS = "cleanliness"
    STAFF = "staff"
    CLASSES = "classes"
    CROWDING = "crowding"
    OPENING_HOURS = "opening_hours"
    LOCATION = "location"
    OTHER = "other"


_OPEN_REQUEST_STATUSES = frozenset(
    {CancellationRequestStatus.PENDING_NOTICE, CancellationRequestStatus.IN_NOTICE}
)


class CancellationRequest(Base, TenantMixin, TimestampMixin):
    """Member-initiated cancellation moving through a notice period.

    Notice end and effective dates are snapshotted at creation; a later
    change to the club's notice policy never moves an existing request.
    The termination fee is also a snapshot and may be waived by staff.
    """

    __tablename__ = "cancellation_requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    member_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    subscription_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    contract_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    reason_category: Mapped[CancellationReasonCategory] = mapped_column(
        Enum(CancellationReasonCategory, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    reason_detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    requested_date: Mapped[date] = mapped_column(Date, nullable=False)
    notice_period_days: Mapped[int] = mapped_column(Integer, nullable=False)
    notice_period_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)

    is_within_commitment: Mapped[bool] = mapped_column(Boolean, nullable=False)
    is_within_cooling_off: Mapped[bool] = mapped_column(Boolean, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    early_termination_fee_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    fee_waived: Mapped[bool] = mapped_column(Boolean, nullable=False)
    fee_waived_by: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    fee_waived_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[CancellationRequestStatus] = mapped_column(
        Enum(CancellationRequestStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    saved_by_offer_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    exit_survey_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    withdrawn_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    withdrawal_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_cancellation_requests_status_effective", "status", "effective_date"),
    )

    @classmethod
    def create(
        cls,
        *,
        tenant_id: UUID,
        member_id: UUID,
        subscription_id: UUID,
        reason_category: CancellationReasonCategory,
        notice_period_days: int,
        now: datetime,
        today: date,
        currency: str,
        reason_detail: str | None = None,
        contract_id: UUID | None = None,
        is_within_commitment: bool = False,
        is_within_cooling_off: bool = False,
        early_termination_fee: Money | None = None,
    ) -> CancellationRequest:
        if notice_period_days < 0:
            raise ValueOutOfRangeError(
                "Notice period must not be negative",
                field="notice_period_days",
                value=notice_period_days,
                constraint=">= 0",
            )
        if early_termination_fee is not None and early_termination_fee.is_negative():
            raise ValidationError(
                "Termination fee must not be negative",
                field="early_termination_fee",
                value=early_termination_fee.amount,
            )
        notice_period_end_date = today + timedelta(days=notice_period_days)
        return cls(
            id=uuid4(),
            tenant_id=tenant_id,
            member_id=member_id,
            subscription_id=subscription_id,
            contract_id=contract_id,
            reason_category=reason_category,
            reason_detail=reason_detail,
            requested_at=now,
            requested_date=today,
            notice_period_days=notice_period_days,
            notice_period_end_date=notice_period_end_date,
            effective_date=notice_period_end_date + timedelta(days=1),
            is_within_commitment=is_within_commitment,
            is_within_cooling_off=is_within_cooling_off,
            currency=currency,
            early_termination_fee_amount=(
                early_termination_fee.amount if early_termination_fee is not None else None
            ),
            fee_waived=False,
            fee_waived_by=None,
            fee_waived_reason=None,
            status=CancellationRequestStatus.PENDING_NOTICE,
            saved_by_offer_id=None,
            exit_survey_id=None,
            completed_at=None,
            withdrawn_at=None,
            withdrawal_reason=None,
        )

    def _reject(self, operation: str, message: str | None = None) -> InvalidStateTransitionError:
        return InvalidStateTransitionError(
            message,
            entity="cancellation request",
            current_status=self.status,
            operation=operation,
        )

    @property
    def early_termination_fee(self) -> Money | None:
        if self.early_termination_fee_amount is None:
            return None
        return Money(self.early_termination_fee_amount, self.currency)

    def effective_fee(self) -> Money:
        """Zero inside cooling-off or once waived, otherwise the snapshot fee."""
        fee = self.early_termination_fee
        if self.is_within_cooling_off or self.fee_waived or fee is None:
            return Money.zero(self.currency)
        return fee

    def is_open(self) -> bool:
        return self.status in _OPEN_REQUEST_STATUSES

    def start_notice_period(self) -> None:
        if self.status != CancellationRequestStatus.PENDING_NOTICE:
            raise self._reject("start notice period of")
        self.status = CancellationRequestStatus.IN_NOTICE

    def mark_saved(self, offer_id: UUID) -> None:
        if not self.is_open():
            raise self._reject("save")
        self.status = CancellationRequestStatus.SAVED
        self.saved_by_offer_id = offer_id

    def complete(self, now: datetime) -> None:
        if not self.is_open():
            raise self._reject("complete")
        self.status = CancellationRequestStatus.COMPLETED
        self.completed_at = now

    def withdraw(self, reason: str | None, now: datetime) -> None:
        if not self.is_open():
            raise self._reject("withdraw")
        self.status = CancellationRequestStatus.WITHDRAWN
        self.withdrawn_at = now
        self.withdrawal_reason = reason

    def waive_fee(self, staff_id: UUID, reason: str) -> None:
        """Waive the termination fee. Only while the request is still open."""
        if not self.is_open():
            raise self._reject("waive fee of")
        fee = self.early_termination_fee
        if fee is None or fee.is_zero():
            raise ValidationError(
                "There is no termination fee to waive",
                field="early_termination_fee",
            )
        self.fee_waived = True
        self.fee_waived_by = staff_id
        self.fee_waived_reason = reason

    def link_exit_survey(self, survey_id: UUID) -> None:
        self.exit_survey_id = survey_id

    def is_due_for_completion(self, today: date) -> bool:
        return self.status == CancellationRequestStatus.IN_NOTICE and self.effective_date <= today


def encode_dissatisfaction_areas(areas: Iterable[DissatisfactionArea]) -> list[str]:
    return [DissatisfactionArea(area).value for area in areas]


def decode_dissatisfaction_areas(raw: Sequence[str] | None) -> tuple[DissatisfactionArea, ...]:
    if not raw:
        return ()
    return tuple(DissatisfactionArea(value) for value in raw)


class ExitSurvey(Base, TenantMixin, TimestampMixin):
    """Feedback captured when a member leaves. Immutable once submitted."""

    __tablename__ = "exit_surveys"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    member_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    subscription_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    contract_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    reason_category: Mapped[CancellationReasonCategory] = mapped_column(
        Enum(CancellationReasonCategory, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    reason_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    nps_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    would_recommend: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    overall_satisfaction: Mapped[int | None] = mapped_column(Integer, nullable=True)
    dissatisfaction_areas_raw: Mapped[list[str]] = mapped_column(
        "dissatisfaction_areas", JSON, nullable=False
    )
    what_would_bring_back: Mapped[str | None] = mapped_column(Text, nullable=True)
    open_to_future_offers: Mapped[bool] = mapped_column(Boolean, nullable=False)
    competitor_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    competitor_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("subscription_id", name="uq_exit_surveys_subscription"),
    )

    @classmethod
    def create(
        cls,
        *,
        tenant_id: UUID,
        member_id: UUID,
        subscription_id: UUID,
        reason_category: CancellationReasonCategory,
        contract_id: UUID | None = None,
        reason_detail: str | None = None,
        feedback: str | None = None,
        nps_score: int | None = None,
        would_recommend: bool | None = None,
        overall_satisfaction: int | None = None,
        dissatisfaction_areas: Iterable[DissatisfactionArea] = (),
        what_would_bring_back: str | None = None,
        open_to_future_offers: bool = True,
        competitor_name: str | None = None,
        competitor_reason: str | None = None,
    ) -> ExitSurvey:
        if nps_score is not None and not 0 <= nps_score <= 10:
            raise ValueOutOfRangeError(
                "NPS score must be between 0 and 10",
                field="nps_score",
                value=nps_score,
                constraint="0-10",
            )
        if overall_satisfaction is not None and not 1 <= overall_satisfaction <= 5:
            raise ValueOutOfRangeError(
                "Overall satisfaction must be between 1 and 5",
                field="overall_satisfaction",
                value=overall_satisfaction,
                constraint="1-5",
            )
        return cls(
            id=uuid4(),
            tenant_id=tenant_id,
            member_id=member_id,
            subscription_id=subscription_id,
            contract_id=contract_id,
            reason_category=reason_category,
            reason_detail=reason_detail,
            feedback=feedback,
            nps_score=nps_score,
            would_recommend=would_recommend,
            overall_satisfaction=overall_satisfaction,
            dissatisfaction_areas_raw=encode_dissatisfaction_areas(dissatisfaction_areas),
            what_would_bring_back=what_would_bring_back,
            open_to_future_offers=open_to_future_offers,
            competitor_name=competitor_name,
            competitor_reason=competitor_reason,
        )

    @property
    def dissatisfaction_areas(self) -> tuple[DissatisfactionArea, ...]:
        return decode_dissatisfaction_areas(self.dissatisfaction_areas_raw)

    def is_detractor(self) -> bool:
        return self.nps_score is not None and self.nps_score <= 6

    def is_passive(self) -> bool:
        return self.nps_score is not None and 7 <= self.nps_score <= 8

    def is_promoter(self) -> bool:
        return self.nps_score is not None and self.nps_score >= 9


class RetentionOffer(Base, TenantMixin, TimestampMixin):
    """Incentive presented to a member who asked to cancel.

    Expiry is lazy: an offer past ``expires_at`` is treated as expired even
    while its stored status is still PENDING.
    """

    __tablename__ = "retention_offers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    member_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    subscription_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    contract_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    cancellation_request_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    offer_type: Mapped[RetentionOfferType] = mapped_column(
        Enum(RetentionOfferType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    title_en: Mapped[str] = mapped_column(String(200), nullable=False)
    title_ar: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description_en: Mapped[str | None] = mapped_column(Text, nullable=True)
    description_ar: Mapped[str | None] = mapped_column(Text, nullable=True)

    value_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    value_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    discount_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_months: Mapped[int | None] = mapped_column(Integer, nullable=True)
    session_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    alternative_plan_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    status: Mapped[RetentionOfferStatus] = mapped_column(
        Enum(RetentionOfferStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_retention_offers_subscription_status", "subscription_id", "status"),
    )

    @classmethod
    def _build(
        cls,
        *,
        tenant_id: UUID,
        member_id: UUID,
        subscription_id: UUID,
        offer_type: RetentionOfferType,
        title: LocalizedText,
        description: LocalizedText | None,
        expires_at: datetime | None,
        contract_id: UUID | None = None,
        cancellation_request_id: UUID | None = None,
        value: Money | None = None,
        discount_percentage: Decimal | None = None,
        duration_days: int | None = None,
        duration_months: int | None = None,
        session_count: int | None = None,
        alternative_plan_id: UUID | None = None,
        priority: int = 0,
    ) -> RetentionOffer:
        return cls(
            id=uuid4(),
            tenant_id=tenant_id,
            member_id=member_id,
            subscription_id=subscription_id,
            contract_id=contract_id,
            cancellation_request_id=cancellation_request_id,
            offer_type=offer_type,
            title_en=title.en,
            title_ar=title.ar,
            description_en=description.en if description else None,
            description_ar=description.ar if description else None,
            value_amount=value.amount if value is not None else None,
            value_currency=value.currency if value is not None else None,
            discount_percentage=discount_percentage,
            duration_days=duration_days,
            duration_months=duration_months,
            session_count=session_count,
            alternative_plan_id=alternative_plan_id,
            status=RetentionOfferStatus.PENDING,
            expires_at=expires_at,
            responded_at=None,
            priority=priority,
        )

    @classmethod
    def free_freeze(cls, *, freeze_days: int, **kwargs) -> RetentionOffer:
        if freeze_days <= 0:
            raise ValueOutOfRangeError("Freeze days must be positive", field="freeze_days", value=freeze_days)
        title, description = offer_text.free_freeze_text(freeze_days)
        return cls._build(
            offer_type=RetentionOfferType.FREE_FREEZE,
            title=title,
            description=description,
            duration_days=freeze_days,
            **kwargs,
        )

    @classmethod
    def discount(cls, *, percentage: Decimal, months: int, **kwargs) -> RetentionOffer:
        if not 0 < percentage <= 100:
            raise ValueOutOfRangeError(
                "Discount percentage must be between 0 and 100",
                field="percentage",
                value=percentage,
                constraint="(0, 100]",
            )
        if months <= 0:
            raise ValueOutOfRangeError("Discount months must be positive", field="months", value=months)
        title, description = offer_text.discount_text(percentage, months)
        return cls._build(
            offer_type=RetentionOfferType.DISCOUNT,
            title=title,
            description=description,
            discount_percentage=percentage,
            duration_months=months,
            **kwargs,
        )

    @classmethod
    def credit(cls, *, amount: Money, **kwargs) -> RetentionOffer:
        if not amount.is_positive():
            raise ValidationError("Credit amount must be positive", field="amount", value=amount.amount)
        title, description = offer_text.credit_text(amount)
        return cls._build(
            offer_type=RetentionOfferType.CREDIT,
            title=title,
            description=description,
            value=amount,
            **kwargs,
        )

    @classmethod
    def downgrade(
        cls,
        *,
        alternative_plan_id: UUID,
        alternative_plan_name: LocalizedText,
        alternative_plan_price: Money,
        **kwargs,
    ) -> RetentionOffer:
        title, description = offer_text.downgrade_text(alternative_plan_name, alternative_plan_price)
        return cls._build(
            offer_type=RetentionOfferType.DOWNGRADE,
            title=title,
            description=description,
            value=alternative_plan_price,
            alternative_plan_id=alternative_plan_id,
            **kwargs,
        )

    @classmethod
    def extension(cls, *, extra_days: int, **kwargs) -> RetentionOffer:
        if extra_days <= 0:
            raise ValueOutOfRangeError("Extension days must be positive", field="extra_days", value=extra_days)
        title, description = offer_text.extension_text(extra_days)
        return cls._build(
            offer_type=RetentionOfferType.EXTENSION,
            title=title,
            description=description,
            duration_days=extra_days,
            **kwargs,
        )

    @classmethod
    def personal_training(cls, *, sessions: int, **kwargs) -> RetentionOffer:
        if sessions <= 0:
            raise ValueOutOfRangeError("Sessions must be positive", field="sessions", value=sessions)
        title, description = offer_text.personal_training_text(sessions)
        return cls._build(
            offer_type=RetentionOfferType.PERSONAL_TRAINING,
            title=title,
            description=description,
            session_count=sessions,
            **kwargs,
        )

    @classmethod
    def custom(cls, *, title: LocalizedText, description: LocalizedText | None = None, **kwargs) -> RetentionOffer:
        return cls._build(
            offer_type=RetentionOfferType.CUSTOM,
            title=title,
            description=description,
            **kwargs,
        )

    @property
    def title(self) -> LocalizedText:
        return LocalizedText(self.title_en, self.title_ar)

    @property
    def description(self) -> LocalizedText | None:
        if self.description_en is None:
            return None
        return LocalizedText(self.description_en, self.description_ar)

    @property
    def value(self) -> Money | None:
        if self.value_amount is None or self.value_currency is None:
            return None
        return Money(self.value_amount, self.value_currency)

    def is_pending(self) -> bool:
        return self.status == RetentionOfferStatus.PENDING

    def is_expired(self, now: datetime) -> bool:
        if self.status == RetentionOfferStatus.EXPIRED:
            return True
        return self.expires_at is not None and ensure_utc(now) > ensure_utc(self.expires_at)

    def can_be_accepted(self, now: datetime) -> bool:
        return self.is_pending() and not self.is_expired(now)

    def accept(self, now: datetime) -> None:
        if not self.is_pending():
            raise InvalidStateTransitionError(
                entity="retention offer", current_status=self.status, operation="accept"
            )
        if self.is_expired(now):
            raise InvalidStateTransitionError(
                "Retention offer has expired",
                entity="retention offer",
                current_status=self.status,
                operation="accept",
            )
        self.status = RetentionOfferStatus.ACCEPTED
        self.responded_at = now

    def decline(self, now: datetime) -> None:
        if not self.is_pending():
            raise InvalidStateTransitionError(
                entity="retention offer", current_status=self.status, operation="decline"
            )
        if self.is_expired(now):
            raise InvalidStateTransitionError(
                "Retention offer has expired",
                entity="retention offer",
                current_status=self.status,
                operation="decline",
            )
        self.status = RetentionOfferStatus.DECLINED
        self.responded_at = now

    def mark_expired(self) -> bool:
        """Make lazy expiry visible. No-op unless still pending."""
        if self.status != RetentionOfferStatus.PENDING:
            return False
        self.status = RetentionOfferStatus.EXPIRED
        return True
