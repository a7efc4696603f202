"""Upgrade, downgrade and lateral plan changes with proration."""

from __future__ import annotations

from uuid import UUID

from memberflow.core.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    PlanNotFoundError,
    ScheduledPlanChangeNotFoundError,
    SubscriptionNotFoundError,
    ValidationError,
)
from memberflow.core.money import Money
from memberflow.core.service import TenantService
from memberflow.membership.notifications import NotificationEvent, notify
from memberflow.membership.proration import (
    ProrationResult,
    calculate_proration,
    default_proration_mode,
    determine_change_type,
    format_proration_summary,
    period_days,
)
from memberflow.membership.schemas import PlanChangePreview, PlanChangeRequest, PlanChangeResult
from memberflow.models.contract import MembershipContract
from memberflow.models.plan import MembershipPlan
from memberflow.models.plan_change import (
    PlanChangeHistory,
    PlanChangeType,
    ProrationMode,
    ScheduledChangeStatus,
    ScheduledPlanChange,
)
from memberflow.models.subscription import Subscription, SubscriptionStatus
from memberflow.wallet.service import WalletService

_CHANGEABLE_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.FROZEN)


class PlanChangeService(TenantService):
    """Service for moving subscriptions between plans.

    Immediate modes write a history row and post the net amount to the
    member's wallet as a single adjustment. END_OF_PERIOD creates a
    scheduled change that ``process_scheduled_changes`` executes on the
    day after the current billing period ends.
    """

    @property
    def wallets(self) -> WalletService:
        return WalletService(self.db, self.tenant_id, **self._collaborator_kwargs())

    async def _current_fee(self, subscription: Subscription, plan: MembershipPlan) -> Money:
        """Locked contract price when a live contract exists, else the plan's price."""
        if subscription.contract_id is not None:
            contract = await self.repo.find(MembershipContract, subscription.contract_id)
            if contract is not None and contract.allows_access():
                return contract.locked_monthly_total()
        return plan.recurring_total()

    async def _load(
        self, subscription_id: UUID, new_plan_id: UUID
    ) -> tuple[Subscription, MembershipPlan, MembershipPlan]:
        subscription = await self.repo.get(
            Subscription, subscription_id, error=SubscriptionNotFoundError, for_update=True
        )
        current_plan = await self.repo.get(MembershipPlan, subscription.plan_id, error=PlanNotFoundError)
        new_plan = await self.repo.get(MembershipPlan, new_plan_id, error=PlanNotFoundError)

        if subscription.status not in _CHANGEABLE_STATUSES:
            raise InvalidStateTransitionError(
                entity="subscription", current_status=subscription.status, operation="change plan of"
            )
        if new_plan.id == current_plan.id:
            raise ValidationError(
                "Subscription is already on this plan", field="new_plan_id", value=str(new_plan.id)
            )
        if not new_plan.is_currently_available(self.clock.today()):
            raise ValidationError(
                "Plan is not available", field="new_plan_id", value=str(new_plan.id)
            )
        if new_plan.currency != current_plan.currency:
            raise ValidationError(
                "Plans must share a currency", field="new_plan_id", value=new_plan.currency
            )
        return subscription, current_plan, new_plan

    async def _price(
        self,
        subscription: Subscription,
        current_plan: MembershipPlan,
        new_plan: MembershipPlan,
        mode: ProrationMode | None,
    ) -> ProrationResult:
        old_fee = await self._current_fee(subscription, current_plan)
        new_fee = new_plan.recurring_total()
        change_type = determine_change_type(old_fee, new_fee)
        period_start, period_end = subscription.billing_period()
        return calculate_proration(
            old_fee=old_fee,
            new_fee=new_fee,
            billing_period_start=period_start,
            billing_period_end=period_end,
            change_date=self.clock.today(),
            mode=mode or default_proration_mode(change_type),
            change_type=change_type,
        )

    async def preview_change(self, data: PlanChangeRequest, locale: str = "en") -> PlanChangePreview:
        subscription, current_plan, new_plan = await self._load(data.subscription_id, data.new_plan_id)
        proration = await self._price(subscription, current_plan, new_plan, data.proration_mode)
        return PlanChangePreview(
            subscription_id=subscription.id,
            current_plan_id=current_plan.id,
            current_plan_name=current_plan.name.get(locale),
            new_plan_id=new_plan.id,
            new_plan_name=new_plan.name.get(locale),
            change_type=proration.change_type,
            proration_mode=proration.mode,
            effective_date=proration.effective_date,
            credit=proration.credit,
            charge=proration.charge,
            net_amount=proration.net,
            days_remaining=proration.days_remaining,
            total_days=proration.total_days,
            summary=format_proration_summary(proration, locale),
        )

    async def change_plan(self, data: PlanChangeRequest) -> PlanChangeResult:
        """Execute or schedule a plan change.

        Raises:
            ConflictError: If a change is already scheduled for the subscription
            ValidationError: If the target plan is the current plan or unavailable
        """
        subscription, current_plan, new_plan = await self._load(data.subscription_id, data.new_plan_id)
        await self._ensure_no_pending_change(subscription)
        proration = await self._price(subscription, current_plan, new_plan, data.proration_mode)

        if not proration.is_immediate:
            scheduled = await self._schedule(
                subscription,
                current_plan,
                new_plan,
                proration.change_type,
                proration,
                initiated_by_user_id=data.initiated_by_user_id,
                initiated_by_member=data.initiated_by_member,
            )
            return PlanChangeResult(
                subscription=subscription,
                history=None,
                scheduled_change=scheduled,
                change_type=proration.change_type,
                effective_date=scheduled.scheduled_date,
                was_immediate=False,
            )

        history = PlanChangeHistory.record(
            tenant_id=self.tenant_id,
            subscription_id=subscription.id,
            contract_id=subscription.contract_id,
            member_id=subscription.member_id,
            old_plan_id=current_plan.id,
            new_plan_id=new_plan.id,
            change_type=proration.change_type,
            proration_mode=proration.mode,
            effective_date=proration.effective_date,
            billing_period_start=proration.billing_period_start,
            billing_period_end=proration.billing_period_end,
            days_remaining=proration.days_remaining,
            total_days=proration.total_days,
            currency=current_plan.currency,
            credit=proration.credit,
            charge=proration.charge,
            net=proration.net,
            initiated_by_user_id=data.initiated_by_user_id,
            initiated_by_member=data.initiated_by_member,
            notes=data.notes,
        )
        self.db.add(history)

        transaction = None
        net = proration.net_or_zero(current_plan.currency)
        if not net.is_zero():
            # A positive net is owed by the member, so the wallet moves by -net.
            transaction = await self.wallets.post_adjustment(
                subscription.member_id,
                net.negate(),
                f"Plan change: {current_plan.name_en} to {new_plan.name_en}",
                reference_type="plan_change",
                reference_id=history.id,
                created_by=data.initiated_by_user_id,
            )
            history.wallet_transaction_id = transaction.id

        subscription.change_plan(new_plan)
        await self.db.flush()

        self.logger.info(
            "plan_changed",
            subscription_id=str(subscription.id),
            old_plan_id=str(current_plan.id),
            new_plan_id=str(new_plan.id),
            change_type=proration.change_type.value,
            proration_mode=proration.mode.value,
            net_amount=str(net),
        )
        await notify(
            self.notifier,
            NotificationEvent.PLAN_CHANGED,
            subscription_id=subscription.id,
            member_id=subscription.member_id,
            old_plan_id=current_plan.id,
            new_plan_id=new_plan.id,
            change_type=proration.change_type.value,
            net_amount=proration.net,
        )
        return PlanChangeResult(
            subscription=subscription,
            history=history,
            scheduled_change=None,
            change_type=proration.change_type,
            effective_date=proration.effective_date,
            was_immediate=True,
            wallet_transaction=transaction,
        )

    async def schedule_downgrade(
        self,
        subscription_id: UUID,
        new_plan_id: UUID,
        *,
        initiated_by_member: bool = True,
    ) -> ScheduledPlanChange:
        """Schedule a move to ``new_plan_id`` at the end of the current billing period."""
        subscription, current_plan, new_plan = await self._load(subscription_id, new_plan_id)
        await self._ensure_no_pending_change(subscription)
        proration = await self._price(subscription, current_plan, new_plan, ProrationMode.END_OF_PERIOD)
        return await self._schedule(
            subscription,
            current_plan,
            new_plan,
            proration.change_type,
            proration,
            initiated_by_member=initiated_by_member,
        )

    async def _ensure_no_pending_change(self, subscription: Subscription) -> None:
        pending = await self.get_pending_change(subscription.id)
        if pending is not None:
            raise ConflictError(
                "A plan change is already scheduled for this subscription",
                details={"scheduled_change_id": str(pending.id)},
            )

    async def _schedule(
        self,
        subscription: Subscription,
        current_plan: MembershipPlan,
        new_plan: MembershipPlan,
        change_type: PlanChangeType,
        proration: ProrationResult,
        *,
        initiated_by_user_id: UUID | None = None,
        initiated_by_member: bool = False,
    ) -> ScheduledPlanChange:
        scheduled = ScheduledPlanChange.create(
            tenant_id=self.tenant_id,
            subscription_id=subscription.id,
            contract_id=subscription.contract_id,
            member_id=subscription.member_id,
            current_plan_id=current_plan.id,
            new_plan_id=new_plan.id,
            change_type=change_type,
            scheduled_date=proration.effective_date,
            initiated_by_user_id=initiated_by_user_id,
            initiated_by_member=initiated_by_member,
        )
        self.db.add(scheduled)
        subscription.schedule_change(scheduled.id)
        await self.db.flush()

        self.logger.info(
            "plan_change_scheduled",
            subscription_id=str(subscription.id),
            scheduled_change_id=str(scheduled.id),
            new_plan_id=str(new_plan.id),
            scheduled_date=scheduled.scheduled_date.isoformat(),
        )
        await notify(
            self.notifier,
            NotificationEvent.PLAN_CHANGE_SCHEDULED,
            subscription_id=subscription.id,
            member_id=subscription.member_id,
            new_plan_id=new_plan.id,
            scheduled_date=scheduled.scheduled_date,
        )
        return scheduled

    async def cancel_scheduled_change(
        self,
        scheduled_change_id: UUID,
        reason: str | None = None,
        cancelled_by: UUID | None = None,
    ) -> ScheduledPlanChange:
        scheduled = await self.repo.get(
            ScheduledPlanChange, scheduled_change_id, error=ScheduledPlanChangeNotFoundError, for_update=True
        )
        scheduled.cancel(reason, cancelled_by, self.clock.now())
        subscription = await self.repo.find(Subscription, scheduled.subscription_id)
        if subscription is not None and subscription.scheduled_plan_change_id == scheduled.id:
            subscription.clear_scheduled_change()
        await self.db.flush()

        self.logger.info(
            "scheduled_plan_change_cancelled",
            scheduled_change_id=str(scheduled.id),
            reason=reason,
        )
        return scheduled

    async def process_scheduled_changes(self, batch_size: int | None = None) -> int:
        """Execute pending changes whose date has arrived.

        Changes for subscriptions that are no longer active are cancelled
        instead. Safe to run repeatedly for the same day.

        Returns:
            Number of changes applied
        """
        today = self.clock.today()
        now = self.clock.now()
        query = (
            self.repo.select(ScheduledPlanChange)
            .where(
                ScheduledPlanChange.status == ScheduledChangeStatus.PENDING,
                ScheduledPlanChange.scheduled_date <= today,
            )
            .order_by(ScheduledPlanChange.scheduled_date)
            .limit(batch_size or self.settings.sweep_batch_size)
        )

        applied = 0
        for scheduled in await self.repo.all(query):
            subscription = await self.repo.get(
                Subscription, scheduled.subscription_id, error=SubscriptionNotFoundError
            )
            if subscription.status not in _CHANGEABLE_STATUSES:
                scheduled.cancel("Subscription is no longer active", None, now)
                subscription.clear_scheduled_change()
                self.logger.info(
                    "scheduled_plan_change_skipped",
                    scheduled_change_id=str(scheduled.id),
                    subscription_status=subscription.status.value,
                )
                continue

            new_plan = await self.repo.get(MembershipPlan, scheduled.new_plan_id, error=PlanNotFoundError)
            period_start, period_end = subscription.billing_period()
            days_remaining, total_days = period_days(period_start, period_end, today)
            history = PlanChangeHistory.record(
                tenant_id=self.tenant_id,
                subscription_id=subscription.id,
                contract_id=subscription.contract_id,
                member_id=subscription.member_id,
                old_plan_id=subscription.plan_id,
                new_plan_id=new_plan.id,
                change_type=scheduled.change_type,
                proration_mode=ProrationMode.END_OF_PERIOD,
                effective_date=today,
                billing_period_start=period_start,
                billing_period_end=period_end,
                days_remaining=days_remaining,
                total_days=total_days,
                currency=new_plan.currency,
                scheduled_change_id=scheduled.id,
                initiated_by_user_id=scheduled.initiated_by_user_id,
                initiated_by_member=scheduled.initiated_by_member,
            )
            self.db.add(history)
            subscription.change_plan(new_plan)
            scheduled.mark_processed(history.id, now)
            applied += 1

            self.logger.info(
                "scheduled_plan_change_applied",
                scheduled_change_id=str(scheduled.id),
                subscription_id=str(subscription.id),
                new_plan_id=str(new_plan.id),
            )
            await notify(
                self.notifier,
                NotificationEvent.PLAN_CHANGED,
                subscription_id=subscription.id,
                member_id=subscription.member_id,
                old_plan_id=history.old_plan_id,
                new_plan_id=new_plan.id,
                change_type=scheduled.change_type.value,
            )

        await self.db.flush()
        return applied

    async def get_history(self, subscription_id: UUID) -> list[PlanChangeHistory]:
        return await self.repo.all(
            self.repo.select(PlanChangeHistory)
            .where(PlanChangeHistory.subscription_id == subscription_id)
            .order_by(PlanChangeHistory.created_at)
        )

    async def get_pending_change(self, subscription_id: UUID) -> ScheduledPlanChange | None:
        return await self.repo.first(
            self.repo.select(ScheduledPlanChange).where(
                ScheduledPlanChange.subscription_id == subscription_id,
                ScheduledPlanChange.status == ScheduledChangeStatus.PENDING,
            )
        )
