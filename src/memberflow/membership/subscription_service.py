"""Subscription lifecycle service."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from datetime import date, timedelta
from uuid import UUID

from memberflow.core.exceptions import (
    ConflictError,
    ContractNotFoundError,
    InvalidStateTransitionError,
    MemberFlowException,
    PlanNotFoundError,
    SubscriptionNotFoundError,
    ValidationError,
)
from memberflow.core.money import Money
from memberflow.core.service import TenantService
from memberflow.membership.notifications import NotificationEvent, notify
from memberflow.membership.schemas import BulkOperationResult, SubscriptionCreate, SubscriptionRenew
from memberflow.models.contract import MembershipContract
from memberflow.models.plan import MembershipPlan
from memberflow.models.subscription import Subscription, SubscriptionStatus
from memberflow.wallet.service import WalletService

_LIVE_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.FROZEN,
    SubscriptionStatus.PENDING_PAYMENT,
)


class SubscriptionService(TenantService):
    """Service for enrolling members and moving subscriptions through their lifecycle."""

    @property
    def wallets(self) -> WalletService:
        return WalletService(self.db, self.tenant_id, **self._collaborator_kwargs())

    async def create_subscription(self, data: SubscriptionCreate) -> Subscription:
        """Enrol a member in a plan.

        Without a payment the subscription starts PENDING_PAYMENT and the
        recurring total is charged to the member's wallet; it activates
        right away when the wallet covers the charge.

        Raises:
            ConflictError: If the member already has a live subscription
            ValidationError: If the plan cannot be sold today
        """
        today = self.clock.today()
        existing = await self.find_live_for_member(data.member_id)
        if existing is not None:
            raise ConflictError(
                "Member already has an active subscription",
                details={"subscription_id": str(existing.id), "status": existing.status.value},
            )

        plan = await self.repo.get(MembershipPlan, data.plan_id, error=PlanNotFoundError)
        if not plan.is_currently_available(today):
            raise ValidationError(
                "Plan is not available for new subscriptions",
                field="plan_id",
                value=str(plan.id),
            )

        paid = Money(data.paid_amount, plan.currency) if data.paid_amount is not None else None
        subscription = Subscription.create(
            tenant_id=self.tenant_id,
            member_id=data.member_id,
            plan=plan,
            start_date=data.start_date or today,
            paid_amount=paid,
            auto_renew=data.auto_renew,
            notes=data.notes,
        )
        self.db.add(subscription)
        await self.db.flush()

        if subscription.status == SubscriptionStatus.PENDING_PAYMENT:
            await self._charge_for_activation(subscription, plan)

        self.logger.info(
            "subscription_created",
            subscription_id=str(subscription.id),
            member_id=str(subscription.member_id),
            plan_id=str(plan.id),
            status=subscription.status.value,
            end_date=subscription.end_date.isoformat(),
        )
        await notify(
            self.notifier,
            NotificationEvent.SUBSCRIPTION_CREATED,
            subscription_id=subscription.id,
            member_id=subscription.member_id,
            plan_id=plan.id,
            status=subscription.status.value,
            start_date=subscription.start_date,
            end_date=subscription.end_date,
        )
        return subscription

    async def _charge_for_activation(self, subscription: Subscription, plan: MembershipPlan) -> None:
        amount = plan.recurring_total()
        if not amount.is_positive():
            return
        transaction = await self.wallets.charge_subscription(
            subscription.member_id,
            subscription.id,
            amount,
            f"Subscription to {plan.name_en}",
        )
        if transaction.balance_after >= 0:
            subscription.confirm_payment(amount)
            await self.db.flush()
            await notify(
                self.notifier,
                NotificationEvent.PAYMENT_RECEIVED,
                subscription_id=subscription.id,
                member_id=subscription.member_id,
                amount=amount,
            )

    async def get_subscription(self, subscription_id: UUID, *, for_update: bool = False) -> Subscription:
        return await self.repo.get(
            Subscription, subscription_id, error=SubscriptionNotFoundError, for_update=for_update
        )

    async def find_live_for_member(self, member_id: UUID) -> Subscription | None:
        return await self.repo.first(
            self.repo.select(Subscription)
            .where(Subscription.member_id == member_id, Subscription.status.in_(_LIVE_STATUSES))
            .order_by(Subscription.start_date.desc())
        )

    async def get_active_for_member(self, member_id: UUID) -> Subscription | None:
        """The member's ACTIVE or FROZEN subscription, if any."""
        return await self.repo.first(
            self.repo.select(Subscription)
            .where(
                Subscription.member_id == member_id,
                Subscription.status.in_((SubscriptionStatus.ACTIVE, SubscriptionStatus.FROZEN)),
            )
            .order_by(Subscription.start_date.desc())
        )

    async def list_subscriptions(
        self,
        *,
        member_id: UUID | None = None,
        status: SubscriptionStatus | None = None,
        limit: int | None = None,
    ) -> list[Subscription]:
        query = self.repo.select(Subscription).order_by(Subscription.start_date.desc())
        if member_id is not None:
            query = query.where(Subscription.member_id == member_id)
        if status is not None:
            query = query.where(Subscription.status == status)
        if limit is not None:
            query = query.limit(limit)
        return await self.repo.all(query)

    async def freeze_subscription(self, subscription_id: UUID) -> Subscription:
        subscription = await self.get_subscription(subscription_id, for_update=True)
        today = self.clock.today()
        subscription.freeze(today)
        await self.db.flush()

        self.logger.info(
            "subscription_frozen",
            subscription_id=str(subscription.id),
            freeze_days_remaining=subscription.freeze_days_remaining,
        )
        await notify(
            self.notifier,
            NotificationEvent.SUBSCRIPTION_FROZEN,
            subscription_id=subscription.id,
            member_id=subscription.member_id,
            frozen_at=today,
            freeze_days_remaining=subscription.freeze_days_remaining,
        )
        return subscription

    async def unfreeze_subscription(self, subscription_id: UUID) -> Subscription:
        """Resume a frozen subscription, pushing its end date out by the frozen days."""
        subscription = await self.get_subscription(subscription_id, for_update=True)
        frozen_days = subscription.unfreeze(self.clock.today())
        await self.db.flush()

        self.logger.info(
            "subscription_unfrozen",
            subscription_id=str(subscription.id),
            frozen_days=frozen_days,
            end_date=subscription.end_date.isoformat(),
            freeze_days_remaining=subscription.freeze_days_remaining,
        )
        await notify(
            self.notifier,
            NotificationEvent.SUBSCRIPTION_UNFROZEN,
            subscription_id=subscription.id,
            member_id=subscription.member_id,
            frozen_days=frozen_days,
            end_date=subscription.end_date,
        )
        return subscription

    async def cancel_subscription(
        self,
        subscription_id: UUID,
        *,
        effective_end_date: date | None = None,
        reason: str | None = None,
    ) -> Subscription:
        """Cancel outright, bypassing the notice-period workflow."""
        subscription = await self.get_subscription(subscription_id, for_update=True)
        subscription.cancel(effective_end_date)
        await self.db.flush()

        self.logger.info(
            "subscription_cancelled",
            subscription_id=str(subscription.id),
            end_date=subscription.end_date.isoformat(),
            reason=reason,
        )
        await notify(
            self.notifier,
            NotificationEvent.SUBSCRIPTION_CANCELLED,
            subscription_id=subscription.id,
            member_id=subscription.member_id,
            end_date=subscription.end_date,
            reason=reason,
        )
        return subscription

    async def renew_subscription(self, subscription_id: UUID, data: SubscriptionRenew) -> Subscription:
        """Renew for another plan duration (or to an explicit end date) and reset allowances."""
        subscription = await self.get_subscription(subscription_id, for_update=True)
        plan = await self.repo.get(MembershipPlan, subscription.plan_id, error=PlanNotFoundError)

        new_end_date = data.new_end_date or subscription.end_date + timedelta(
            days=plan.effective_duration_days()
        )
        subscription.renew(new_end_date)
        subscription.reset_allowances(plan)
        if data.paid_amount is not None:
            subscription.paid_amount = Money(data.paid_amount, plan.currency).amount
            subscription.paid_currency = plan.currency
        await self.db.flush()

        self.logger.info(
            "subscription_renewed",
            subscription_id=str(subscription.id),
            end_date=subscription.end_date.isoformat(),
        )
        await notify(
            self.notifier,
            NotificationEvent.SUBSCRIPTION_RENEWED,
            subscription_id=subscription.id,
            member_id=subscription.member_id,
            end_date=subscription.end_date,
        )
        return subscription

    def _require_access(self, subscription: Subscription, operation: str) -> None:
        if not subscription.allows_access(self.clock.today()):
            raise InvalidStateTransitionError(
                "Subscription does not currently allow access",
                entity="subscription",
                current_status=subscription.status,
                operation=operation,
            )

    async def use_class(self, subscription_id: UUID) -> Subscription:
        subscription = await self.get_subscription(subscription_id, for_update=True)
        self._require_access(subscription, "book a class with")
        subscription.use_class()
        await self.db.flush()
        self.logger.info(
            "class_used",
            subscription_id=str(subscription.id),
            classes_remaining=subscription.classes_remaining,
        )
        return subscription

    async def use_guest_pass(self, subscription_id: UUID) -> Subscription:
        subscription = await self.get_subscription(subscription_id, for_update=True)
        self._require_access(subscription, "use a guest pass with")
        subscription.use_guest_pass()
        await self.db.flush()
        self.logger.info(
            "guest_pass_used",
            subscription_id=str(subscription.id),
            guest_passes_remaining=subscription.guest_passes_remaining,
        )
        return subscription

    async def confirm_payment(self, subscription_id: UUID, amount: Money) -> Subscription:
        """Record a payment received for a subscription pending payment.

        The payment is credited to the member's wallet, settling the charge
        posted at enrolment, and the subscription is activated.

        Raises:
            InvalidStateTransitionError: If the subscription is not pending payment
        """
        subscription = await self.get_subscription(subscription_id, for_update=True)
        if subscription.status != SubscriptionStatus.PENDING_PAYMENT:
            raise InvalidStateTransitionError(
                "Subscription is not pending payment",
                entity="subscription",
                current_status=subscription.status,
                operation="confirm payment for",
            )
        await self.wallets.credit(
            subscription.member_id,
            amount,
            "Subscription payment",
            reference_type="subscription",
            reference_id=subscription.id,
        )
        self.logger.info(
            "subscription_payment_confirmed",
            subscription_id=str(subscription.id),
            amount=str(amount),
        )
        if subscription.status != SubscriptionStatus.PENDING_PAYMENT:
            return subscription

        subscription.confirm_payment(amount)
        await self.db.flush()
        await notify(
            self.notifier,
            NotificationEvent.PAYMENT_RECEIVED,
            subscription_id=subscription.id,
            member_id=subscription.member_id,
            amount=amount,
        )
        return subscription

    async def _bulk(
        self,
        operation: str,
        subscription_ids: Iterable[UUID],
        action: Callable[[UUID], Awaitable[Subscription]],
    ) -> BulkOperationResult:
        result = BulkOperationResult()
        for subscription_id in subscription_ids:
            try:
                async with self.db.begin_nested():
                    result.succeeded[subscription_id] = await action(subscription_id)
            except MemberFlowException as e:
                result.failed[subscription_id] = e.message

        self.logger.info(
            "bulk_operation_completed",
            operation=operation,
            succeeded=result.success_count,
            failed=result.failure_count,
        )
        return result

    async def bulk_freeze(self, subscription_ids: Iterable[UUID]) -> BulkOperationResult:
        """Freeze each subscription independently; one failure does not stop the rest."""
        return await self._bulk("freeze", subscription_ids, self.freeze_subscription)

    async def bulk_unfreeze(self, subscription_ids: Iterable[UUID]) -> BulkOperationResult:
        return await self._bulk("unfreeze", subscription_ids, self.unfreeze_subscription)

    async def bulk_cancel(self, subscription_ids: Iterable[UUID], reason: str | None = None) -> BulkOperationResult:
        async def cancel(subscription_id: UUID) -> Subscription:
            return await self.cancel_subscription(subscription_id, reason=reason)

        return await self._bulk("cancel", subscription_ids, cancel)

    async def expire_subscriptions(self, batch_size: int | None = None) -> int:
        """Expire ACTIVE subscriptions past their end date.

        Safe to run repeatedly for the same day. A linked ACTIVE contract
        expires with its subscription.

        Returns:
            Number of subscriptions expired
        """
        today = self.clock.today()
        query = (
            self.repo.select(Subscription)
            .where(Subscription.status == SubscriptionStatus.ACTIVE, Subscription.end_date < today)
            .order_by(Subscription.end_date)
            .limit(batch_size or self.settings.sweep_batch_size)
        )
        expired = 0
        for subscription in await self.repo.all(query):
            if not subscription.expire(today):
                continue
            expired += 1
            if subscription.contract_id is not None:
                await self._expire_contract(subscription)

            self.logger.info(
                "subscription_expired",
                subscription_id=str(subscription.id),
                end_date=subscription.end_date.isoformat(),
            )
            await notify(
                self.notifier,
                NotificationEvent.SUBSCRIPTION_EXPIRED,
                subscription_id=subscription.id,
                member_id=subscription.member_id,
                end_date=subscription.end_date,
            )

        await self.db.flush()
        if expired:
            self.logger.info("subscriptions_expired", count=expired, as_of=today.isoformat())
        return expired

    async def _expire_contract(self, subscription: Subscription) -> None:
        contract = await self.repo.get(
            MembershipContract, subscription.contract_id, error=ContractNotFoundError
        )
        if contract.is_active() and contract.effective_end_date is None:
            contract.effective_end_date = subscription.end_date
        if contract.expire(self.clock.today()):
            self.logger.info(
                "contract_expired",
                contract_id=str(contract.id),
                subscription_id=str(subscription.id),
            )
