"""Cancellation workflow: notice periods, retention offers and exit surveys."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from memberflow.core.exceptions import (
    CancellationRequestNotFoundError,
    ConflictError,
    InvalidStateTransitionError,
    MemberFlowException,
    PlanNotFoundError,
    RetentionOfferNotFoundError,
    SubscriptionNotFoundError,
)
from memberflow.core.money import Money, round_money
from memberflow.core.service import TenantService
from memberflow.membership.contract_service import cooling_off_refund
from memberflow.membership.notifications import NotificationEvent, notify
from memberflow.membership.plan_change_service import PlanChangeService
from memberflow.membership.schemas import (
    CancellationCreate,
    CancellationPreview,
    CancellationResult,
    ExitSurveyAnalytics,
    ExitSurveyCreate,
    RetentionOfferAcceptanceResult,
    RetentionOfferPreview,
)
from memberflow.models.cancellation import (
    CancellationReasonCategory,
    CancellationRequest,
    CancellationRequestStatus,
    ExitSurvey,
    RetentionOffer,
    RetentionOfferStatus,
    RetentionOfferType,
)
from memberflow.models.contract import CancellationType, ContractStatus, MembershipContract
from memberflow.models.plan import MembershipPlan
from memberflow.models.plan_change import ScheduledPlanChange
from memberflow.models.subscription import Subscription, SubscriptionStatus
from memberflow.models.wallet import WalletTransaction
from memberflow.wallet.service import WalletService

_OPEN_STATUSES = (CancellationRequestStatus.PENDING_NOTICE, CancellationRequestStatus.IN_NOTICE)

_ENDED_CONTRACT_STATUSES = (ContractStatus.CANCELLED, ContractStatus.EXPIRED, ContractStatus.VOIDED)

_CONTRACT_CANCELLATION_TYPES = {
    CancellationReasonCategory.RELOCATION: CancellationType.RELOCATION,
    CancellationReasonCategory.HEALTH: CancellationType.MEDICAL,
}


class CancellationService(TenantService):
    """Service for member-initiated cancellations.

    A request inside the contract's cooling-off window completes at once
    with a refund. Any other request enters a notice period, during which
    the member is shown retention offers; accepting one saves the
    membership, and the ``process_completed_cancellations`` sweep finishes
    the rest once their effective date arrives.
    """

    @property
    def wallets(self) -> WalletService:
        return WalletService(self.db, self.tenant_id, **self._collaborator_kwargs())

    @property
    def plan_changes(self) -> PlanChangeService:
        return PlanChangeService(self.db, self.tenant_id, **self._collaborator_kwargs())

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_request(self, request_id: UUID, *, for_update: bool = False) -> CancellationRequest:
        return await self.repo.get(
            CancellationRequest, request_id, error=CancellationRequestNotFoundError, for_update=for_update
        )

    async def get_pending_for_subscription(self, subscription_id: UUID) -> CancellationRequest | None:
        return await self.repo.first(
            self.repo.select(CancellationRequest).where(
                CancellationRequest.subscription_id == subscription_id,
                CancellationRequest.status.in_(_OPEN_STATUSES),
            )
        )

    async def list_requests(
        self,
        status: CancellationRequestStatus | None = None,
        *,
        limit: int | None = None,
    ) -> list[CancellationRequest]:
        query = self.repo.select(CancellationRequest).order_by(CancellationRequest.requested_at.desc())
        if status is not None:
            query = query.where(CancellationRequest.status == status)
        if limit is not None:
            query = query.limit(limit)
        return await self.repo.all(query)

    async def list_offers(self, request_id: UUID) -> list[RetentionOffer]:
        return await self.repo.all(
            self.repo.select(RetentionOffer)
            .where(RetentionOffer.cancellation_request_id == request_id)
            .order_by(RetentionOffer.priority)
        )

    async def _subscription(self, subscription_id: UUID, *, for_update: bool = False) -> Subscription:
        return await self.repo.get(
            Subscription, subscription_id, error=SubscriptionNotFoundError, for_update=for_update
        )

    async def _contract(self, contract_id: UUID | None, *, for_update: bool = True) -> MembershipContract | None:
        if contract_id is None:
            return None
        return await self.repo.find(MembershipContract, contract_id, for_update=for_update)

    async def _live_contract(self, contract_id: UUID | None, *, for_update: bool = True) -> MembershipContract | None:
        """The linked contract unless it has already ended."""
        contract = await self._contract(contract_id, for_update=for_update)
        if contract is None or contract.status in _ENDED_CONTRACT_STATUSES:
            return None
        return contract

    # ------------------------------------------------------------------
    # Retention offers
    # ------------------------------------------------------------------

    async def _find_cheaper_plan(self, current_plan: MembershipPlan) -> MembershipPlan | None:
        """The most expensive active plan that is still cheaper than ``current_plan``."""
        today = self.clock.today()
        current_price = current_plan.recurring_total()
        plans = await self.repo.all(
            self.repo.select(MembershipPlan).where(
                MembershipPlan.is_active.is_(True),
                MembershipPlan.id != current_plan.id,
                MembershipPlan.currency == current_plan.currency,
            )
        )
        cheaper = [
            plan
            for plan in plans
            if plan.is_currently_available(today) and plan.recurring_total().is_less_than(current_price)
        ]
        if not cheaper:
            return None
        return max(cheaper, key=lambda plan: plan.recurring_total().amount)

    async def _generate_offers(
        self,
        subscription: Subscription,
        plan: MembershipPlan,
        *,
        cancellation_request_id: UUID | None,
        expires_at: datetime | None,
    ) -> list[tuple[RetentionOffer, MembershipPlan | None]]:
        common = {
            "tenant_id": self.tenant_id,
            "member_id": subscription.member_id,
            "subscription_id": subscription.id,
            "contract_id": subscription.contract_id,
            "cancellation_request_id": cancellation_request_id,
            "expires_at": expires_at,
        }
        settings = self.settings
        offers: list[tuple[RetentionOffer, MembershipPlan | None]] = []

        if settings.free_freeze_offer_days > 0:
            offers.append(
                (RetentionOffer.free_freeze(freeze_days=settings.free_freeze_offer_days, priority=1, **common), None)
            )

        tenure_days = (self.clock.today() - subscription.start_date).days
        if (
            tenure_days >= settings.loyalty_min_tenure_days
            and settings.loyalty_discount_percentage > 0
            and settings.loyalty_discount_months > 0
        ):
            offers.append(
                (
                    RetentionOffer.discount(
                        percentage=settings.loyalty_discount_percentage,
                        months=settings.loyalty_discount_months,
                        priority=2,
                        **common,
                    ),
                    None,
                )
            )

        cheaper_plan = await self._find_cheaper_plan(plan)
        if cheaper_plan is not None:
            offers.append(
                (
                    RetentionOffer.downgrade(
                        alternative_plan_id=cheaper_plan.id,
                        alternative_plan_name=cheaper_plan.name,
                        alternative_plan_price=cheaper_plan.recurring_total(),
                        priority=3,
                        **common,
                    ),
                    cheaper_plan,
                )
            )
        return offers

    # ------------------------------------------------------------------
    # Preview & request
    # ------------------------------------------------------------------

    async def preview_cancellation(self, subscription_id: UUID) -> CancellationPreview:
        """Fees, refund and offers the member would see if they cancelled today."""
        subscription = await self._subscription(subscription_id)
        plan = await self.repo.get(MembershipPlan, subscription.plan_id, error=PlanNotFoundError)
        contract = await self._live_contract(subscription.contract_id, for_update=False)
        today = self.clock.today()

        within_cooling_off = contract is not None and contract.is_within_cooling_off(today)
        within_commitment = contract is not None and contract.is_within_commitment(today)
        notice_days = self._notice_period_days(contract, within_cooling_off)
        notice_end = today + timedelta(days=notice_days)

        previews: list[RetentionOfferPreview] = []
        if not within_cooling_off:
            for offer, alternative in await self._generate_offers(
                subscription, plan, cancellation_request_id=None, expires_at=None
            ):
                previews.append(
                    RetentionOfferPreview.from_offer(offer, alternative.name if alternative else None)
                )

        return CancellationPreview(
            subscription_id=subscription.id,
            is_within_cooling_off=within_cooling_off,
            cooling_off_days_remaining=contract.cooling_off_days_remaining(today) if contract else 0,
            is_within_commitment=within_commitment,
            commitment_months_remaining=contract.commitment_months_remaining(today) if contract else 0,
            notice_period_days=notice_days,
            notice_period_end_date=notice_end,
            effective_date=today if within_cooling_off else notice_end + timedelta(days=1),
            early_termination_fee=(
                contract.calculate_early_termination_fee(today) if contract else Money.zero(plan.currency)
            ),
            refund_amount=cooling_off_refund(contract) if within_cooling_off else None,
            retention_offers=previews,
        )

    def _notice_period_days(self, contract: MembershipContract | None, within_cooling_off: bool) -> int:
        if within_cooling_off:
            return 0
        if contract is not None:
            return contract.notice_period_days
        return self.settings.default_notice_period_days

    async def request_cancellation(self, data: CancellationCreate) -> CancellationResult:
        """Open a cancellation request for a subscription.

        Raises:
            ConflictError: If the subscription already has an open request
            InvalidStateTransitionError: If the subscription cannot be cancelled
        """
        subscription = await self._subscription(data.subscription_id, for_update=True)
        existing = await self.get_pending_for_subscription(subscription.id)
        if existing is not None:
            raise ConflictError(
                "A cancellation request is already pending for this subscription",
                details={"cancellation_request_id": str(existing.id)},
            )
        if subscription.status not in (SubscriptionStatus.ACTIVE, SubscriptionStatus.FROZEN):
            raise InvalidStateTransitionError(
                entity="subscription", current_status=subscription.status, operation="request cancellation of"
            )

        plan = await self.repo.get(MembershipPlan, subscription.plan_id, error=PlanNotFoundError)
        contract = await self._live_contract(subscription.contract_id)
        today = self.clock.today()
        now = self.clock.now()

        within_cooling_off = contract is not None and contract.is_within_cooling_off(today)
        within_commitment = contract is not None and contract.is_within_commitment(today)
        fee = (
            contract.calculate_early_termination_fee(today)
            if contract is not None and within_commitment and not within_cooling_off
            else None
        )

        request = CancellationRequest.create(
            tenant_id=self.tenant_id,
            member_id=subscription.member_id,
            subscription_id=subscription.id,
            contract_id=contract.id if contract else None,
            reason_category=data.reason_category,
            reason_detail=data.reason_detail,
            notice_period_days=self._notice_period_days(contract, within_cooling_off),
            now=now,
            today=today,
            currency=plan.currency,
            is_within_commitment=within_commitment,
            is_within_cooling_off=within_cooling_off,
            early_termination_fee=fee,
        )
        self.db.add(request)

        if within_cooling_off:
            return await self._complete_within_cooling_off(request, subscription, contract, data)

        subscription.mark_pending_cancellation(
            request_id=request.id,
            notice_period_end_date=request.notice_period_end_date,
            effective_date=request.effective_date,
        )
        request.start_notice_period()
        if contract is not None and contract.status == ContractStatus.ACTIVE:
            contract.request_cancellation(
                _CONTRACT_CANCELLATION_TYPES.get(data.reason_category, CancellationType.MEMBER_REQUEST),
                data.reason_detail,
                today,
                effective_date=request.effective_date,
            )

        expires_at = now + timedelta(hours=self.settings.retention_offer_expiry_hours)
        offers = [
            offer
            for offer, _ in await self._generate_offers(
                subscription, plan, cancellation_request_id=request.id, expires_at=expires_at
            )
        ]
        self.db.add_all(offers)
        await self.db.flush()

        self.logger.info(
            "cancellation_requested",
            cancellation_request_id=str(request.id),
            subscription_id=str(subscription.id),
            reason=data.reason_category.value,
            effective_date=request.effective_date.isoformat(),
            early_termination_fee=str(request.effective_fee()),
            offers=len(offers),
        )
        await notify(
            self.notifier,
            NotificationEvent.CANCELLATION_REQUESTED,
            cancellation_request_id=request.id,
            subscription_id=subscription.id,
            member_id=subscription.member_id,
            effective_date=request.effective_date,
            early_termination_fee=request.effective_fee(),
        )
        if offers:
            await notify(
                self.notifier,
                NotificationEvent.RETENTION_OFFER_PRESENTED,
                cancellation_request_id=request.id,
                member_id=subscription.member_id,
                offer_count=len(offers),
                expires_at=expires_at,
            )
        return CancellationResult(
            cancellation_request=request,
            subscription=subscription,
            retention_offers=offers,
            was_immediate=False,
        )

    async def _complete_within_cooling_off(
        self,
        request: CancellationRequest,
        subscription: Subscription,
        contract: MembershipContract,
        data: CancellationCreate,
    ) -> CancellationResult:
        today = self.clock.today()
        request.start_notice_period()
        request.complete(self.clock.now())
        contract.cancel_within_cooling_off(data.reason_detail, today)
        subscription.cancel(today)
        subscription.reactivation_eligible_until = today + timedelta(
            days=self.settings.reactivation_window_days
        )

        refund = cooling_off_refund(contract)
        refund_transaction: WalletTransaction | None = None
        if refund.is_positive():
            refund_transaction = await self.wallets.refund(
                subscription.member_id,
                refund,
                f"Cooling-off refund for contract {contract.contract_number}",
                reference_type="cancellation_request",
                reference_id=request.id,
            )
        await self.db.flush()

        self.logger.info(
            "cancellation_completed_in_cooling_off",
            cancellation_request_id=str(request.id),
            subscription_id=str(subscription.id),
            contract_id=str(contract.id),
            refund=str(refund),
        )
        await notify(
            self.notifier,
            NotificationEvent.CANCELLATION_COMPLETED,
            cancellation_request_id=request.id,
            subscription_id=subscription.id,
            member_id=subscription.member_id,
            effective_date=today,
            refund_amount=refund if refund.is_positive() else None,
        )
        return CancellationResult(
            cancellation_request=request,
            subscription=subscription,
            retention_offers=[],
            was_immediate=True,
            refund_transaction=refund_transaction,
        )

    # ------------------------------------------------------------------
    # Offer responses
    # ------------------------------------------------------------------

    async def accept_offer(self, offer_id: UUID) -> RetentionOfferAcceptanceResult:
        """Accept an offer: the member stays and the offer's benefit is applied.

        Raises:
            InvalidStateTransitionError: If the offer is no longer pending or has expired
        """
        offer = await self.repo.get(RetentionOffer, offer_id, error=RetentionOfferNotFoundError, for_update=True)
        if offer.cancellation_request_id is None:
            raise InvalidStateTransitionError(
                "Offer is not attached to a cancellation request",
                entity="retention offer",
                current_status=offer.status,
                operation="accept",
            )
        request = await self.get_request(offer.cancellation_request_id, for_update=True)
        subscription = await self._subscription(offer.subscription_id, for_update=True)
        now = self.clock.now()

        if not request.is_open():
            raise InvalidStateTransitionError(
                entity="cancellation request", current_status=request.status, operation="save"
            )
        offer.accept(now)
        request.mark_saved(offer.id)
        subscription.clear_pending_cancellation()

        contract = await self._contract(request.contract_id)
        if contract is not None and contract.status == ContractStatus.IN_NOTICE_PERIOD:
            contract.withdraw_cancellation_request()

        transaction, scheduled_change = await self._apply_benefit(offer, subscription)
        await self._close_sibling_offers(request.id, offer.id, now)
        await self.db.flush()

        self.logger.info(
            "retention_offer_accepted",
            offer_id=str(offer.id),
            offer_type=offer.offer_type.value,
            cancellation_request_id=str(request.id),
            subscription_id=str(subscription.id),
        )
        await notify(
            self.notifier,
            NotificationEvent.RETENTION_OFFER_ACCEPTED,
            offer_id=offer.id,
            offer_type=offer.offer_type.value,
            member_id=subscription.member_id,
            subscription_id=subscription.id,
        )
        return RetentionOfferAcceptanceResult(
            offer=offer,
            cancellation_request=request,
            subscription=subscription,
            member_saved=True,
            wallet_transaction=transaction,
            scheduled_change=scheduled_change,
        )

    async def _apply_benefit(
        self,
        offer: RetentionOffer,
        subscription: Subscription,
    ) -> tuple[WalletTransaction | None, ScheduledPlanChange | None]:
        offer_type = offer.offer_type
        if offer_type == RetentionOfferType.FREE_FREEZE and offer.duration_days:
            subscription.add_freeze_days(offer.duration_days)
        elif offer_type == RetentionOfferType.EXTENSION and offer.duration_days:
            subscription.extend(offer.duration_days)
        elif offer_type == RetentionOfferType.DISCOUNT:
            plan = await self.repo.get(MembershipPlan, subscription.plan_id, error=PlanNotFoundError)
            percentage = offer.discount_percentage or Decimal("0")
            months = offer.duration_months or 0
            credit = Money(
                round_money(plan.recurring_total().amount * percentage / Decimal("100") * months),
                plan.currency,
            )
            if credit.is_positive():
                transaction = await self.wallets.credit(
                    subscription.member_id,
                    credit,
                    f"Loyalty discount: {percentage}% for {months} months",
                    reference_type="retention_offer",
                    reference_id=offer.id,
                )
                return transaction, None
        elif offer_type == RetentionOfferType.CREDIT and offer.value is not None:
            transaction = await self.wallets.credit(
                subscription.member_id,
                offer.value,
                "Retention credit",
                reference_type="retention_offer",
                reference_id=offer.id,
            )
            return transaction, None
        elif offer_type == RetentionOfferType.DOWNGRADE and offer.alternative_plan_id is not None:
            scheduled = await self.plan_changes.schedule_downgrade(
                subscription.id, offer.alternative_plan_id, initiated_by_member=True
            )
            return None, scheduled
        else:
            self.logger.info(
                "retention_benefit_requires_fulfilment",
                offer_id=str(offer.id),
                offer_type=offer_type.value,
            )
        return None, None

    async def _pending_offers(self, request_id: UUID) -> list[RetentionOffer]:
        return await self.repo.all(
            self.repo.select(RetentionOffer).where(
                RetentionOffer.cancellation_request_id == request_id,
                RetentionOffer.status == RetentionOfferStatus.PENDING,
            )
        )

    async def _close_sibling_offers(self, request_id: UUID, accepted_offer_id: UUID, now: datetime) -> None:
        for offer in await self._pending_offers(request_id):
            if offer.id == accepted_offer_id:
                continue
            if offer.can_be_accepted(now):
                offer.decline(now)
            else:
                offer.mark_expired()

    async def decline_offer(self, offer_id: UUID) -> RetentionOffer:
        offer = await self.repo.get(RetentionOffer, offer_id, error=RetentionOfferNotFoundError, for_update=True)
        offer.decline(self.clock.now())
        await self.db.flush()
        self.logger.info("retention_offer_declined", offer_id=str(offer.id), offer_type=offer.offer_type.value)
        return offer

    # ------------------------------------------------------------------
    # Withdraw, complete, waive
    # ------------------------------------------------------------------

    async def withdraw_cancellation(self, request_id: UUID, reason: str | None = None) -> CancellationRequest:
        """Member changed their mind; the subscription and contract carry on."""
        request = await self.get_request(request_id, for_update=True)
        request.withdraw(reason, self.clock.now())

        subscription = await self._subscription(request.subscription_id, for_update=True)
        subscription.clear_pending_cancellation()
        contract = await self._contract(request.contract_id)
        if contract is not None and contract.status == ContractStatus.IN_NOTICE_PERIOD:
            contract.withdraw_cancellation_request()
        for offer in await self._pending_offers(request.id):
            offer.mark_expired()
        await self.db.flush()

        self.logger.info(
            "cancellation_withdrawn",
            cancellation_request_id=str(request.id),
            subscription_id=str(subscription.id),
        )
        await notify(
            self.notifier,
            NotificationEvent.CANCELLATION_WITHDRAWN,
            cancellation_request_id=request.id,
            subscription_id=subscription.id,
            member_id=subscription.member_id,
        )
        return request

    async def complete_cancellation(self, request_id: UUID) -> CancellationRequest:
        """Finish a request whose notice period is running.

        Cancels the subscription at the request's effective date, opens the
        reactivation window and debits any unwaived termination fee.
        """
        request = await self.get_request(request_id, for_update=True)
        if request.status != CancellationRequestStatus.IN_NOTICE:
            raise InvalidStateTransitionError(
                "Cancellation is not in notice period",
                entity="cancellation request",
                current_status=request.status,
                operation="complete",
            )
        subscription = await self._subscription(request.subscription_id, for_update=True)
        today = self.clock.today()

        fee = request.effective_fee()
        if fee.is_positive():
            await self.wallets.debit(
                request.member_id,
                fee,
                "Early termination fee",
                reference_type="cancellation_request",
                reference_id=request.id,
            )

        request.complete(self.clock.now())
        if subscription.status != SubscriptionStatus.CANCELLED:
            subscription.cancel(request.effective_date)
        subscription.reactivation_eligible_until = request.effective_date + timedelta(
            days=self.settings.reactivation_window_days
        )

        contract = await self._contract(request.contract_id)
        if contract is not None and contract.is_in_notice_period():
            contract.complete_cancellation(today)
        for offer in await self._pending_offers(request.id):
            offer.mark_expired()
        await self.db.flush()

        self.logger.info(
            "cancellation_completed",
            cancellation_request_id=str(request.id),
            subscription_id=str(subscription.id),
            early_termination_fee=str(fee),
        )
        await notify(
            self.notifier,
            NotificationEvent.CANCELLATION_COMPLETED,
            cancellation_request_id=request.id,
            subscription_id=subscription.id,
            member_id=subscription.member_id,
            effective_date=request.effective_date,
            early_termination_fee=fee if fee.is_positive() else None,
        )
        return request

    async def process_completed_cancellations(self, batch_size: int | None = None) -> int:
        """Complete every request whose effective date has arrived.

        Each request completes inside its own savepoint. One that fails is
        rolled back and left for the next run.

        Returns:
            Number of requests completed
        """
        today = self.clock.today()
        due = await self.repo.all(
            self.repo.select(CancellationRequest)
            .where(
                CancellationRequest.status == CancellationRequestStatus.IN_NOTICE,
                CancellationRequest.effective_date <= today,
            )
            .order_by(CancellationRequest.effective_date)
            .limit(batch_size or self.settings.sweep_batch_size)
        )
        completed = 0
        for request_id in [request.id for request in due]:
            try:
                async with self.db.begin_nested():
                    await self.complete_cancellation(request_id)
            except MemberFlowException as e:
                self.logger.error(
                    "cancellation_completion_failed",
                    cancellation_request_id=str(request_id),
                    error_code=e.error_code.value,
                    error=e.message,
                )
                continue
            completed += 1
        return completed

    async def waive_fee(self, request_id: UUID, staff_id: UUID, reason: str) -> CancellationRequest:
        request = await self.get_request(request_id, for_update=True)
        request.waive_fee(staff_id, reason)
        await self.db.flush()
        self.logger.info(
            "termination_fee_waived",
            cancellation_request_id=str(request.id),
            staff_id=str(staff_id),
            fee=str(request.early_termination_fee),
        )
        return request

    async def expire_retention_offers(self, batch_size: int | None = None) -> int:
        """Persist lazy expiry for pending offers past their deadline.

        Returns:
            Number of offers marked expired
        """
        now = self.clock.now()
        candidates = await self.repo.all(
            self.repo.select(RetentionOffer)
            .where(
                RetentionOffer.status == RetentionOfferStatus.PENDING,
                RetentionOffer.expires_at.is_not(None),
                RetentionOffer.expires_at <= now,
            )
            .limit(batch_size or self.settings.sweep_batch_size)
        )
        expired = sum(1 for offer in candidates if offer.is_expired(now) and offer.mark_expired())
        await self.db.flush()
        if expired:
            self.logger.info("retention_offers_expired", count=expired)
        return expired

    # ------------------------------------------------------------------
    # Exit surveys & analytics
    # ------------------------------------------------------------------

    async def submit_exit_survey(self, data: ExitSurveyCreate) -> ExitSurvey:
        """Record an exit survey. One survey per subscription.

        Raises:
            ConflictError: If the subscription already has a survey
        """
        subscription = await self._subscription(data.subscription_id)
        existing = await self.repo.first(
            self.repo.select(ExitSurvey).where(ExitSurvey.subscription_id == subscription.id)
        )
        if existing is not None:
            raise ConflictError(
                "Exit survey already submitted for this subscription",
                details={"exit_survey_id": str(existing.id)},
            )

        survey = ExitSurvey.create(
            tenant_id=self.tenant_id,
            member_id=subscription.member_id,
            subscription_id=subscription.id,
            contract_id=subscription.contract_id,
            reason_category=data.reason_category,
            reason_detail=data.reason_detail,
            feedback=data.feedback,
            nps_score=data.nps_score,
            would_recommend=data.would_recommend,
            overall_satisfaction=data.overall_satisfaction,
            dissatisfaction_areas=data.dissatisfaction_areas,
            what_would_bring_back=data.what_would_bring_back,
            open_to_future_offers=data.open_to_future_offers,
            competitor_name=data.competitor_name,
            competitor_reason=data.competitor_reason,
        )
        self.db.add(survey)

        request = await self.repo.first(
            self.repo.select(CancellationRequest)
            .where(
                CancellationRequest.subscription_id == subscription.id,
                CancellationRequest.status.in_((*_OPEN_STATUSES, CancellationRequestStatus.COMPLETED)),
                CancellationRequest.exit_survey_id.is_(None),
            )
            .order_by(CancellationRequest.requested_at.desc())
        )
        if request is not None:
            request.link_exit_survey(survey.id)
        await self.db.flush()

        self.logger.info(
            "exit_survey_submitted",
            exit_survey_id=str(survey.id),
            subscription_id=str(subscription.id),
            reason=survey.reason_category.value,
            nps_score=survey.nps_score,
        )
        return survey

    async def retention_rate(self) -> float:
        """Share of closed requests that ended with the member saved.

        Withdrawn and still-open requests are not counted. Returns 0.0 when
        no request has closed yet.
        """
        saved = await self.repo.count(
            CancellationRequest, CancellationRequest.status == CancellationRequestStatus.SAVED
        )
        completed = await self.repo.count(
            CancellationRequest, CancellationRequest.status == CancellationRequestStatus.COMPLETED
        )
        total = saved + completed
        return saved / total if total else 0.0

    async def exit_survey_analytics(self) -> ExitSurveyAnalytics:
        surveys = await self.repo.all(self.repo.select(ExitSurvey))
        scored = [survey.nps_score for survey in surveys if survey.nps_score is not None]
        promoters = sum(1 for survey in surveys if survey.is_promoter())
        passives = sum(1 for survey in surveys if survey.is_passive())
        detractors = sum(1 for survey in surveys if survey.is_detractor())

        return ExitSurveyAnalytics(
            total_surveys=len(surveys),
            average_nps=sum(scored) / len(scored) if scored else None,
            nps_score=(promoters - detractors) * 100 / len(scored) if scored else None,
            promoters=promoters,
            passives=passives,
            detractors=detractors,
            reason_counts=dict(Counter(survey.reason_category.value for survey in surveys)),
        )
