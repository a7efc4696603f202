"""Tests for membership contracts: cooling-off, commitment and termination."""

from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from memberflow.core.exceptions import ContractNotFoundError, InvalidStateTransitionError
from memberflow.core.money import Money, TaxableFee
from memberflow.membership.contract_service import ContractService, cooling_off_refund
from memberflow.membership.notifications import NotificationEvent
from memberflow.membership.plan_service import MembershipPlanService
from memberflow.membership.schemas import ContractCreate, PlanCreate, PricingTierCreate
from memberflow.membership.subscription_service import SubscriptionService
from memberflow.models.contract import (
    CancellationType,
    ContractStatus,
    ContractType,
    MembershipContract,
    TerminationFeeType,
    format_contract_number,
)
from memberflow.models.plan import ContractTerm, MembershipPlan
from memberflow.models.subscription import Subscription, SubscriptionStatus
from memberflow.wallet.service import WalletService

SIGNED_AT = datetime(2024, 1, 1, 10, 0, tzinfo=UTC)


def make_contract(
    *,
    fee_type: TerminationFeeType = TerminationFeeType.REMAINING_MONTHS,
    fee_value: Decimal | None = None,
    commitment_months: int = 12,
    signed: bool = True,
) -> MembershipContract:
    contract = MembershipContract.create(
        tenant_id=uuid4(),
        contract_number="MF-2024-000001",
        member_id=uuid4(),
        plan_id=uuid4(),
        contract_type=ContractType.FIXED_TERM,
        contract_term=ContractTerm.ANNUAL,
        start_date=date(2024, 1, 1),
        locked_membership_fee=TaxableFee.of("500", "SAR"),
        locked_join_fee=TaxableFee.of("100", "SAR", "0.15"),
        commitment_months=commitment_months,
        early_termination_fee_type=fee_type,
        early_termination_fee_value=fee_value,
    )
    if signed:
        contract.sign_by_member("signature", SIGNED_AT)
    return contract


class TestCoolingOff:
    """Tests for the cooling-off window."""

    def test_window_is_inclusive(self) -> None:
        contract = make_contract()
        assert contract.cooling_off_end_date == date(2024, 1, 8)
        assert contract.is_within_cooling_off(date(2024, 1, 7))
        assert contract.is_within_cooling_off(date(2024, 1, 8))
        assert not contract.is_within_cooling_off(date(2024, 1, 9))

    def test_no_fee_during_cooling_off(self) -> None:
        contract = make_contract()
        assert contract.is_within_commitment(date(2024, 1, 7))
        assert contract.calculate_early_termination_fee(date(2024, 1, 7)).is_zero()

    def test_days_remaining(self) -> None:
        contract = make_contract()
        assert contract.cooling_off_days_remaining(date(2024, 1, 7)) == 2
        assert contract.cooling_off_days_remaining(date(2024, 1, 9)) == 0

    def test_void_within_window(self) -> None:
        contract = make_contract()
        contract.cancel_within_cooling_off("Changed my mind", date(2024, 1, 5))
        assert contract.status == ContractStatus.VOIDED
        assert contract.cancellation_type == CancellationType.COOLING_OFF
        assert contract.effective_end_date == date(2024, 1, 5)

    def test_void_after_window_rejected(self) -> None:
        contract = make_contract()
        with pytest.raises(InvalidStateTransitionError):
            contract.cancel_within_cooling_off(None, date(2024, 1, 9))
        assert contract.status == ContractStatus.ACTIVE

    def test_refund_is_join_plus_membership_gross(self) -> None:
        assert cooling_off_refund(make_contract()) == Money.of("615.00")


class TestEarlyTerminationFee:
    """Tests for fee calculation within the commitment period."""

    def test_remaining_months(self) -> None:
        contract = make_contract()
        assert contract.commitment_end_date == date(2025, 1, 1)
        assert contract.commitment_months_remaining(date(2024, 9, 1)) == 4
        assert contract.calculate_early_termination_fee(date(2024, 9, 1)) == Money.of("2000.00")

    def test_flat_fee(self) -> None:
        contract = make_contract(fee_type=TerminationFeeType.FLAT_FEE, fee_value=Decimal("750"))
        assert contract.calculate_early_termination_fee(date(2024, 9, 1)) == Money.of("750.00")

    def test_percentage_of_remaining(self) -> None:
        contract = make_contract(fee_type=TerminationFeeType.PERCENTAGE, fee_value=Decimal("50"))
        assert contract.calculate_early_termination_fee(date(2024, 9, 1)) == Money.of("1000.00")

    def test_no_fee_type(self) -> None:
        contract = make_contract(fee_type=TerminationFeeType.NONE)
        assert contract.calculate_early_termination_fee(date(2024, 9, 1)).is_zero()

    def test_no_fee_after_commitment(self) -> None:
        contract = make_contract()
        assert not contract.is_within_commitment(date(2025, 1, 1))
        assert contract.calculate_early_termination_fee(date(2025, 1, 1)).is_zero()

    def test_month_to_month_has_no_commitment(self) -> None:
        contract = make_contract(commitment_months=0)
        assert contract.commitment_end_date is None
        assert contract.calculate_early_termination_fee(date(2024, 9, 1)).is_zero()


class TestContractStateMachine:
    """Tests for MembershipContract transitions."""

    def test_sign_activates_once(self) -> None:
        contract = make_contract(signed=False)
        assert contract.status == ContractStatus.PENDING_SIGNATURE
        contract.sign_by_member("signature", SIGNED_AT)
        assert contract.is_signed()
        with pytest.raises(InvalidStateTransitionError):
            contract.sign_by_member("again", SIGNED_AT)

    def test_request_and_withdraw_cancellation(self) -> None:
        contract = make_contract()
        contract.request_cancellation(CancellationType.MEMBER_REQUEST, "Moving", date(2024, 3, 1))
        assert contract.status == ContractStatus.IN_NOTICE_PERIOD
        assert contract.cancellation_effective_date == date(2024, 3, 31)
        assert contract.allows_access()

        contract.withdraw_cancellation_request()
        assert contract.status == ContractStatus.ACTIVE
        assert contract.cancellation_type is None

    def test_request_cancellation_requires_active(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            make_contract(signed=False).request_cancellation(
                CancellationType.MEMBER_REQUEST, None, date(2024, 3, 1)
            )

    def test_complete_cancellation(self) -> None:
        contract = make_contract()
        contract.request_cancellation(CancellationType.RELOCATION, None, date(2024, 3, 1))
        assert not contract.is_cancellation_due(date(2024, 3, 30))
        assert contract.is_cancellation_due(date(2024, 3, 31))
        contract.complete_cancellation(date(2024, 3, 31))
        assert contract.status == ContractStatus.CANCELLED
        assert contract.effective_end_date == date(2024, 3, 31)

    def test_suspend_returns_to_interrupted_status(self) -> None:
        contract = make_contract()
        contract.request_cancellation(CancellationType.MEMBER_REQUEST, None, date(2024, 3, 1))
        contract.suspend()
        assert contract.status == ContractStatus.SUSPENDED
        assert not contract.allows_access()
        contract.reactivate()
        assert contract.status == ContractStatus.IN_NOTICE_PERIOD

    def test_suspension_during_notice_still_completes(self) -> None:
        contract = make_contract()
        contract.request_cancellation(CancellationType.MEMBER_REQUEST, None, date(2024, 3, 1))
        contract.suspend()
        assert contract.is_in_notice_period()
        assert contract.is_cancellation_due(date(2024, 3, 31))
        contract.complete_cancellation(date(2024, 3, 31))
        assert contract.status == ContractStatus.CANCELLED
        assert contract.suspended_from_status is None

    def test_suspended_active_contract_is_not_due(self) -> None:
        contract = make_contract()
        contract.suspend()
        assert not contract.is_in_notice_period()
        with pytest.raises(InvalidStateTransitionError):
            contract.complete_cancellation(date(2024, 3, 31))

    def test_terminal_contract_cannot_be_voided(self) -> None:
        contract = make_contract()
        contract.cancel_within_cooling_off(None, date(2024, 1, 2))
        with pytest.raises(InvalidStateTransitionError):
            contract.cancel_within_cooling_off(None, date(2024, 1, 3))

    def test_expire_after_effective_end(self) -> None:
        contract = make_contract()
        contract.effective_end_date = date(2024, 12, 31)
        assert not contract.expire(date(2024, 12, 31))
        assert contract.expire(date(2025, 1, 1))
        assert contract.status == ContractStatus.EXPIRED

    def test_contract_number_format(self) -> None:
        assert format_contract_number("MF", 2024, 7) == "MF-2024-000007"


class TestContractService:
    """Tests for ContractService."""

    @pytest.mark.asyncio
    async def test_create_locks_prices_and_numbers_sequentially(
        self,
        contract_service: ContractService,
        standard_plan: MembershipPlan,
        member_id: UUID,
    ) -> None:
        first = await contract_service.create_contract(
            ContractCreate(member_id=member_id, plan_id=standard_plan.id)
        )
        second = await contract_service.create_contract(
            ContractCreate(member_id=uuid4(), plan_id=standard_plan.id, contract_type=ContractType.MONTH_TO_MONTH)
        )

        assert first.contract_number == "MF-2024-000001"
        assert second.contract_number == "MF-2024-000002"
        assert first.status == ContractStatus.PENDING_SIGNATURE
        assert first.commitment_months == 12
        assert second.commitment_months == 0
        assert first.notice_period_days == 30
        assert first.cooling_off_end_date == date(2024, 1, 8)
        assert first.locked_monthly_total() == Money.of("460.00")

    @pytest.mark.asyncio
    async def test_numbering_is_per_tenant(
        self,
        db_session,
        contract_service: ContractService,
        standard_plan: MembershipPlan,
        member_id: UUID,
        clock,
        notifier,
        settings,
    ) -> None:
        other_tenant = uuid4()
        kwargs = {"clock": clock, "notifier": notifier, "settings": settings}
        other_plan = await MembershipPlanService(db_session, other_tenant, **kwargs).create_plan(
            PlanCreate(name_en="Standard", name_ar="قياسي", membership_fee=Decimal("400"))
        )
        other_contracts = ContractService(db_session, other_tenant, **kwargs)

        ours = await contract_service.create_contract(
            ContractCreate(member_id=member_id, plan_id=standard_plan.id)
        )
        theirs = await other_contracts.create_contract(
            ContractCreate(member_id=uuid4(), plan_id=other_plan.id)
        )

        assert ours.contract_number == "MF-2024-000001"
        assert theirs.contract_number == "MF-2024-000001"
        assert (await other_contracts.get_by_number("MF-2024-000001")).id == theirs.id
        assert (await contract_service.get_by_number("MF-2024-000001")).id == ours.id

    @pytest.mark.asyncio
    async def test_pricing_tier_discount_is_locked(
        self,
        contract_service: ContractService,
        plan_service: MembershipPlanService,
        standard_plan: MembershipPlan,
        member_id: UUID,
    ) -> None:
        await plan_service.create_pricing_tier(
            PricingTierCreate(
                plan_id=standard_plan.id,
                contract_term=ContractTerm.ANNUAL,
                discount_percentage=Decimal("25"),
            )
        )
        contract = await contract_service.create_contract(
            ContractCreate(member_id=member_id, plan_id=standard_plan.id, contract_term=ContractTerm.ANNUAL)
        )
        # 400 net less 25%, then 15% VAT
        assert contract.locked_membership_fee.gross_amount() == Money.of("345.00")

    @pytest.mark.asyncio
    async def test_sign_links_subscription_and_notifies(
        self,
        signed_contract: MembershipContract,
        active_subscription: Subscription,
        notifier,
    ) -> None:
        assert signed_contract.status == ContractStatus.ACTIVE
        assert active_subscription.contract_id == signed_contract.id
        payload = notifier.payloads(NotificationEvent.CONTRACT_SIGNED)[0]
        assert payload["cooling_off_end_date"] == "2024-01-08"

    @pytest.mark.asyncio
    async def test_lookups(
        self,
        contract_service: ContractService,
        signed_contract: MembershipContract,
        active_subscription: Subscription,
        member_id: UUID,
    ) -> None:
        assert (await contract_service.get_by_number("MF-2024-000001")).id == signed_contract.id
        assert (await contract_service.find_for_subscription(active_subscription.id)).id == signed_contract.id
        assert len(await contract_service.list_for_member(member_id)) == 1
        with pytest.raises(ContractNotFoundError):
            await contract_service.get_by_number("MF-2024-999999")

    @pytest.mark.asyncio
    async def test_preview_inside_and_outside_cooling_off(
        self,
        contract_service: ContractService,
        signed_contract: MembershipContract,
        clock,
    ) -> None:
        clock.advance(days=6)
        inside = await contract_service.preview_cancellation(signed_contract.id)
        assert inside.is_within_cooling_off
        assert inside.early_termination_fee.is_zero()
        assert inside.refund_amount == Money.of("575.00")
        assert inside.effective_date == date(2024, 1, 7)

        clock.set(datetime(2024, 9, 1, 9, 0, tzinfo=UTC))
        outside = await contract_service.preview_cancellation(signed_contract.id)
        assert not outside.is_within_cooling_off
        assert outside.refund_amount is None
        assert outside.commitment_months_remaining == 4
        assert outside.early_termination_fee == Money.of("1840.00")
        assert outside.effective_date == date(2024, 10, 1)

    @pytest.mark.asyncio
    async def test_cancel_within_cooling_off_refunds_wallet(
        self,
        contract_service: ContractService,
        wallet_service: WalletService,
        signed_contract: MembershipContract,
        active_subscription: Subscription,
        member_id: UUID,
        clock,
        notifier,
    ) -> None:
        clock.advance(days=3)
        result = await contract_service.cancel_within_cooling_off(signed_contract.id, "Changed my mind")

        assert result.contract.status == ContractStatus.VOIDED
        assert result.subscription is not None
        assert result.subscription.status == SubscriptionStatus.CANCELLED
        assert result.refund_transaction is not None
        assert await wallet_service.get_balance(member_id) == Money.of("575.00")
        assert NotificationEvent.CONTRACT_VOIDED in notifier.events()

    @pytest.mark.asyncio
    async def test_cancel_after_cooling_off_rejected(
        self,
        contract_service: ContractService,
        wallet_service: WalletService,
        signed_contract: MembershipContract,
        member_id: UUID,
        clock,
    ) -> None:
        clock.advance(days=8)
        with pytest.raises(InvalidStateTransitionError):
            await contract_service.cancel_within_cooling_off(signed_contract.id)
        assert signed_contract.status == ContractStatus.ACTIVE
        assert (await wallet_service.get_balance(member_id)).is_zero()

    @pytest.mark.asyncio
    async def test_notice_period_sweep_cancels_contract_and_subscription(
        self,
        contract_service: ContractService,
        signed_contract: MembershipContract,
        active_subscription: Subscription,
        clock,
    ) -> None:
        clock.advance(days=20)
        await contract_service.request_cancellation(signed_contract.id, CancellationType.MEMBER_REQUEST)
        assert signed_contract.cancellation_effective_date == date(2024, 2, 20)

        clock.set(datetime(2024, 2, 19, 9, 0, tzinfo=UTC))
        assert await contract_service.complete_due_cancellations() == 0

        clock.advance(days=1)
        assert await contract_service.complete_due_cancellations() == 1
        assert signed_contract.status == ContractStatus.CANCELLED
        assert active_subscription.status == SubscriptionStatus.CANCELLED
        assert active_subscription.end_date == date(2024, 2, 20)
        assert await contract_service.complete_due_cancellations() == 0

    @pytest.mark.asyncio
    async def test_notice_period_sweep_completes_suspended_contract(
        self,
        contract_service: ContractService,
        signed_contract: MembershipContract,
        active_subscription: Subscription,
        clock,
    ) -> None:
        clock.advance(days=20)
        await contract_service.request_cancellation(signed_contract.id, CancellationType.MEMBER_REQUEST)
        await contract_service.suspend_contract(signed_contract.id)

        clock.set(datetime(2024, 2, 20, 9, 0, tzinfo=UTC))
        assert await contract_service.complete_due_cancellations() == 1
        assert signed_contract.status == ContractStatus.CANCELLED
        assert signed_contract.effective_end_date == date(2024, 2, 20)
        assert active_subscription.status == SubscriptionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_withdraw_suspend_reactivate(
        self,
        contract_service: ContractService,
        signed_contract: MembershipContract,
    ) -> None:
        await contract_service.request_cancellation(signed_contract.id, CancellationType.MEDICAL, "Injury")
        await contract_service.withdraw_cancellation(signed_contract.id)
        assert signed_contract.status == ContractStatus.ACTIVE

        await contract_service.suspend_contract(signed_contract.id)
        await contract_service.reactivate_contract(signed_contract.id)
        assert signed_contract.status == ContractStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_expiring_subscription_expires_contract(
        self,
        subscription_service: SubscriptionService,
        signed_contract: MembershipContract,
        active_subscription: Subscription,
        clock,
    ) -> None:
        clock.set(datetime(2024, 2, 1, 9, 0, tzinfo=UTC))
        assert await subscription_service.expire_subscriptions() == 1
        assert signed_contract.status == ContractStatus.EXPIRED
        assert signed_contract.effective_end_date == date(2024, 1, 31)

    @pytest.mark.asyncio
    async def test_approve_and_link(
        self,
        contract_service: ContractService,
        standard_plan: MembershipPlan,
        active_subscription: Subscription,
        member_id: UUID,
    ) -> None:
        contract = await contract_service.create_contract(
            ContractCreate(member_id=member_id, plan_id=standard_plan.id)
        )
        staff_id = uuid4()
        await contract_service.approve_contract(contract.id, staff_id)
        await contract_service.link_subscription(contract.id, active_subscription.id)

        assert contract.staff_approved_by == staff_id
        assert contract.subscription_id == active_subscription.id
        assert active_subscription.contract_id == contract.id
        assert contract.staff_approved_at == datetime(2024, 1, 1, 9, 0, tzinfo=UTC)
