"""Membership contract service."""

from __future__ import annotations

from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import and_, or_

from memberflow.core.exceptions import (
    ContractNotFoundError,
    PlanNotFoundError,
    SubscriptionNotFoundError,
)
from memberflow.core.money import Money, TaxableFee
from memberflow.core.service import TenantService
from memberflow.membership.notifications import NotificationEvent, notify
from memberflow.membership.schemas import ContractCancellationPreview, ContractCreate, ContractVoidResult
from memberflow.models.contract import (
    CancellationType,
    ContractStatus,
    ContractType,
    MembershipContract,
    format_contract_number,
)
from memberflow.models.plan import ContractPricingTier, ContractTerm, MembershipPlan
from memberflow.models.subscription import Subscription, SubscriptionStatus
from memberflow.wallet.service import WalletService


def cooling_off_refund(contract: MembershipContract) -> Money:
    """Amount returned when a contract is voided: join fee plus first membership fee, gross."""
    return contract.locked_join_fee.gross_amount().add(contract.locked_membership_fee.gross_amount())


class ContractService(TenantService):
    """Service for drafting, signing and terminating membership contracts."""

    @property
    def wallets(self) -> WalletService:
        return WalletService(self.db, self.tenant_id, **self._collaborator_kwargs())

    async def _next_contract_number(self, year: int) -> str:
        prefix = self.settings.contract_number_prefix
        issued = await self.repo.count(
            MembershipContract,
            MembershipContract.contract_number.like(f"{prefix}-{year}-%"),
        )
        return format_contract_number(prefix, year, issued + 1)

    async def _locked_membership_fee(self, plan: MembershipPlan, contract_term: ContractTerm) -> TaxableFee:
        tier = await self.repo.first(
            self.repo.select(ContractPricingTier).where(
                ContractPricingTier.plan_id == plan.id,
                ContractPricingTier.contract_term == contract_term,
                ContractPricingTier.is_active.is_(True),
            )
        )
        if tier is None:
            return plan.membership_fee
        monthly = tier.effective_monthly_fee(plan.membership_fee.net_amount())
        return TaxableFee(monthly.amount, plan.currency, plan.membership_fee_tax_rate)

    async def create_contract(self, data: ContractCreate) -> MembershipContract:
        """Draft a contract with prices locked from the plan and its pricing tier.

        Args:
            data: Contract creation data

        Returns:
            Contract awaiting the member's signature
        """
        plan = await self.repo.get(MembershipPlan, data.plan_id, error=PlanNotFoundError)
        start_date = data.start_date or self.clock.today()

        commitment_months = data.commitment_months
        if commitment_months is None:
            commitment_months = (
                data.contract_term.months if data.contract_type == ContractType.FIXED_TERM else 0
            )

        contract = MembershipContract.create(
            tenant_id=self.tenant_id,
            contract_number=await self._next_contract_number(start_date.year),
            member_id=data.member_id,
            plan_id=plan.id,
            subscription_id=data.subscription_id,
            contract_type=data.contract_type,
            contract_term=data.contract_term,
            start_date=start_date,
            locked_membership_fee=await self._locked_membership_fee(plan, data.contract_term),
            locked_admin_fee=plan.administration_fee,
            locked_join_fee=plan.join_fee,
            commitment_months=commitment_months,
            notice_period_days=(
                data.notice_period_days
                if data.notice_period_days is not None
                else self.settings.default_notice_period_days
            ),
            cooling_off_days=(
                data.cooling_off_days
                if data.cooling_off_days is not None
                else self.settings.default_cooling_off_days
            ),
            early_termination_fee_type=data.early_termination_fee_type,
            early_termination_fee_value=data.early_termination_fee_value,
        )
        self.db.add(contract)

        if data.subscription_id is not None:
            subscription = await self.repo.get(
                Subscription, data.subscription_id, error=SubscriptionNotFoundError
            )
            subscription.link_contract(contract.id)

        await self.db.flush()

        self.logger.info(
            "contract_created",
            contract_id=str(contract.id),
            contract_number=contract.contract_number,
            member_id=str(contract.member_id),
            commitment_months=contract.commitment_months,
            locked_monthly_total=str(contract.locked_monthly_total()),
        )
        return contract

    async def get_contract(self, contract_id: UUID, *, for_update: bool = False) -> MembershipContract:
        return await self.repo.get(
            MembershipContract, contract_id, error=ContractNotFoundError, for_update=for_update
        )

    async def get_by_number(self, contract_number: str) -> MembershipContract:
        contract = await self.repo.first(
            self.repo.select(MembershipContract).where(
                MembershipContract.contract_number == contract_number
            )
        )
        if contract is None:
            raise ContractNotFoundError(resource_type="MembershipContract", resource_id=contract_number)
        return contract

    async def find_for_subscription(self, subscription_id: UUID) -> MembershipContract | None:
        return await self.repo.first(
            self.repo.select(MembershipContract)
            .where(MembershipContract.subscription_id == subscription_id)
            .order_by(MembershipContract.start_date.desc())
        )

    async def list_for_member(self, member_id: UUID) -> list[MembershipContract]:
        return await self.repo.all(
            self.repo.select(MembershipContract)
            .where(MembershipContract.member_id == member_id)
            .order_by(MembershipContract.start_date.desc())
        )

    async def sign_contract(self, contract_id: UUID, signature_data: str) -> MembershipContract:
        contract = await self.get_contract(contract_id, for_update=True)
        contract.sign_by_member(signature_data, self.clock.now())
        await self.db.flush()

        self.logger.info("contract_signed", contract_id=str(contract.id))
        await notify(
            self.notifier,
            NotificationEvent.CONTRACT_SIGNED,
            contract_id=contract.id,
            contract_number=contract.contract_number,
            member_id=contract.member_id,
            cooling_off_end_date=contract.cooling_off_end_date,
        )
        return contract

    async def approve_contract(self, contract_id: UUID, staff_user_id: UUID) -> MembershipContract:
        contract = await self.get_contract(contract_id, for_update=True)
        contract.approve_by_staff(staff_user_id, self.clock.now())
        await self.db.flush()
        self.logger.info(
            "contract_approved",
            contract_id=str(contract.id),
            staff_user_id=str(staff_user_id),
        )
        return contract

    async def preview_cancellation(self, contract_id: UUID) -> ContractCancellationPreview:
        """What the member would pay, or get back, if they cancelled today."""
        contract = await self.get_contract(contract_id)
        today = self.clock.today()
        within_cooling_off = contract.is_within_cooling_off(today)

        return ContractCancellationPreview(
            contract_id=contract.id,
            is_within_cooling_off=within_cooling_off,
            cooling_off_days_remaining=contract.cooling_off_days_remaining(today),
            is_within_commitment=contract.is_within_commitment(today),
            commitment_months_remaining=contract.commitment_months_remaining(today),
            early_termination_fee=contract.calculate_early_termination_fee(today),
            refund_amount=cooling_off_refund(contract) if within_cooling_off else None,
            notice_period_days=0 if within_cooling_off else contract.notice_period_days,
            effective_date=(
                today if within_cooling_off else today + timedelta(days=contract.notice_period_days)
            ),
        )

    async def cancel_within_cooling_off(self, contract_id: UUID, reason: str | None = None) -> ContractVoidResult:
        """Void the contract, cancel its subscription and refund the wallet.

        Raises:
            InvalidStateTransitionError: If the cooling-off window has closed
        """
        contract = await self.get_contract(contract_id, for_update=True)
        today = self.clock.today()
        contract.cancel_within_cooling_off(reason, today)

        subscription = None
        if contract.subscription_id is not None:
            subscription = await self.repo.get(
                Subscription, contract.subscription_id, error=SubscriptionNotFoundError
            )
            if subscription.status != SubscriptionStatus.CANCELLED:
                subscription.cancel(today)
            subscription.clear_pending_cancellation()

        refund = cooling_off_refund(contract)
        refund_transaction = None
        if refund.is_positive():
            refund_transaction = await self.wallets.refund(
                contract.member_id,
                refund,
                f"Cooling-off refund for contract {contract.contract_number}",
                reference_type="contract",
                reference_id=contract.id,
            )
        await self.db.flush()

        self.logger.info(
            "contract_voided",
            contract_id=str(contract.id),
            refund=str(refund),
            subscription_id=str(subscription.id) if subscription else None,
        )
        await notify(
            self.notifier,
            NotificationEvent.CONTRACT_VOIDED,
            contract_id=contract.id,
            contract_number=contract.contract_number,
            member_id=contract.member_id,
            refund_amount=refund if refund.is_positive() else None,
        )
        return ContractVoidResult(
            contract=contract,
            subscription=subscription,
            refund_transaction=refund_transaction,
        )

    async def request_cancellation(
        self,
        contract_id: UUID,
        cancellation_type: CancellationType,
        reason: str | None = None,
        *,
        effective_date: date | None = None,
    ) -> MembershipContract:
        contract = await self.get_contract(contract_id, for_update=True)
        contract.request_cancellation(
            cancellation_type, reason, self.clock.today(), effective_date=effective_date
        )
        await self.db.flush()

        self.logger.info(
            "contract_cancellation_requested",
            contract_id=str(contract.id),
            cancellation_type=cancellation_type.value,
            effective_date=contract.cancellation_effective_date.isoformat(),
        )
        return contract

    async def withdraw_cancellation(self, contract_id: UUID) -> MembershipContract:
        contract = await self.get_contract(contract_id, for_update=True)
        contract.withdraw_cancellation_request()
        await self.db.flush()
        self.logger.info("contract_cancellation_withdrawn", contract_id=str(contract.id))
        return contract

    async def complete_cancellation(self, contract_id: UUID) -> MembershipContract:
        contract = await self.get_contract(contract_id, for_update=True)
        await self._complete(contract)
        await self.db.flush()
        return contract

    async def _complete(self, contract: MembershipContract) -> None:
        contract.complete_cancellation(self.clock.today())
        if contract.subscription_id is not None:
            subscription = await self.repo.get(
                Subscription, contract.subscription_id, error=SubscriptionNotFoundError
            )
            if subscription.status != SubscriptionStatus.CANCELLED:
                subscription.cancel(contract.effective_end_date)

        self.logger.info(
            "contract_cancelled",
            contract_id=str(contract.id),
            effective_end_date=contract.effective_end_date.isoformat(),
        )

    async def suspend_contract(self, contract_id: UUID) -> MembershipContract:
        contract = await self.get_contract(contract_id, for_update=True)
        contract.suspend()
        await self.db.flush()
        self.logger.info(
            "contract_suspended",
            contract_id=str(contract.id),
            suspended_from=contract.suspended_from_status.value,
        )
        return contract

    async def reactivate_contract(self, contract_id: UUID) -> MembershipContract:
        contract = await self.get_contract(contract_id, for_update=True)
        contract.reactivate()
        await self.db.flush()
        self.logger.info(
            "contract_reactivated",
            contract_id=str(contract.id),
            status=contract.status.value,
        )
        return contract

    async def link_subscription(self, contract_id: UUID, subscription_id: UUID) -> MembershipContract:
        contract = await self.get_contract(contract_id, for_update=True)
        subscription = await self.repo.get(Subscription, subscription_id, error=SubscriptionNotFoundError)
        contract.link_subscription(subscription.id)
        subscription.link_contract(contract.id)
        await self.db.flush()
        return contract

    async def complete_due_cancellations(self, batch_size: int | None = None) -> int:
        """Complete contracts whose notice period has run out.

        Returns:
            Number of contracts cancelled
        """
        today = self.clock.today()
        query = (
            self.repo.select(MembershipContract)
            .where(
                or_(
                    MembershipContract.status == ContractStatus.IN_NOTICE_PERIOD,
                    and_(
                        MembershipContract.status == ContractStatus.SUSPENDED,
                        MembershipContract.suspended_from_status == ContractStatus.IN_NOTICE_PERIOD,
                    ),
                ),
                MembershipContract.cancellation_effective_date <= today,
            )
            .order_by(MembershipContract.cancellation_effective_date)
            .limit(batch_size or self.settings.sweep_batch_size)
        )
        completed = 0
        for contract in await self.repo.all(query):
            if contract.is_cancellation_due(today):
                await self._complete(contract)
                completed += 1

        await self.db.flush()
        if completed:
            self.logger.info("contract_cancellations_completed", count=completed, as_of=today.isoformat())
        return completed
