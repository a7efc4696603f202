"""Tests for the plan catalog and contract pricing tiers."""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError as SchemaValidationError

from memberflow.core.exceptions import (
    ConflictError,
    PlanNotFoundError,
    PricingTierNotFoundError,
    ValidationError,
    ValueOutOfRangeError,
)
from memberflow.core.money import LocalizedText, Money, TaxableFee
from memberflow.membership.plan_service import MembershipPlanService
from memberflow.membership.schemas import PlanCreate, PlanUpdate, PricingTierCreate
from memberflow.models.plan import BillingPeriod, ContractPricingTier, ContractTerm, MembershipPlan


def make_plan(**overrides) -> MembershipPlan:
    params = {
        "tenant_id": uuid4(),
        "name": LocalizedText("Standard", "قياسي"),
        "billing_period": BillingPeriod.MONTHLY,
        "membership_fee": TaxableFee.of("400", "SAR", "0.15"),
    }
    params.update(overrides)
    return MembershipPlan.create(**params)


class TestMembershipPlan:
    """Tests for plan construction and pricing."""

    def test_recurring_total_is_gross_membership_plus_admin(self) -> None:
        plan = make_plan(
            administration_fee=TaxableFee.of("50", "SAR"),
            join_fee=TaxableFee.of("100", "SAR", "0.15"),
        )
        assert plan.recurring_total() == Money.of("510.00")
        assert plan.join_fee.gross_amount() == Money.of("115.00")

    def test_fees_must_share_currency(self) -> None:
        with pytest.raises(ValidationError):
            make_plan(administration_fee=TaxableFee.of("50", "USD"))

    def test_plan_needs_a_recurring_fee(self) -> None:
        with pytest.raises(ValidationError):
            make_plan(membership_fee=TaxableFee.of("0", "SAR"))

    def test_admin_fee_alone_is_enough(self) -> None:
        plan = make_plan(
            membership_fee=TaxableFee.of("0", "SAR"),
            administration_fee=TaxableFee.of("25", "SAR"),
        )
        assert plan.recurring_total() == Money.of("25")

    def test_negative_allowance_rejected(self) -> None:
        with pytest.raises(ValueOutOfRangeError):
            make_plan(freeze_days_allowed=-1)

    def test_availability_window_order(self) -> None:
        with pytest.raises(ValidationError):
            make_plan(available_from=date(2024, 2, 1), available_until=date(2024, 1, 1))

    def test_duration_defaults_to_billing_period(self) -> None:
        assert make_plan().effective_duration_days() == 30
        assert make_plan(billing_period=BillingPeriod.ANNUAL).effective_duration_days() == 365
        assert make_plan(duration_days=45).effective_duration_days() == 45

    def test_is_currently_available(self) -> None:
        plan = make_plan(available_from=date(2024, 1, 10), available_until=date(2024, 1, 20))
        assert not plan.is_currently_available(date(2024, 1, 9))
        assert plan.is_currently_available(date(2024, 1, 10))
        assert plan.is_currently_available(date(2024, 1, 20))
        assert not plan.is_currently_available(date(2024, 1, 21))

        plan.deactivate()
        assert not plan.is_currently_available(date(2024, 1, 15))

    def test_allowances(self) -> None:
        plan = make_plan(max_classes_per_period=8, guest_passes_count=2, freeze_days_allowed=20)
        assert plan.allowances() == (8, 2, 20)
        assert plan.has_guest_passes
        assert make_plan().allowances() == (None, 0, 0)


class TestContractPricingTier:
    """Tests for per-term pricing."""

    def test_override_wins_over_discount(self) -> None:
        tier = ContractPricingTier.create(
            tenant_id=uuid4(),
            plan_id=uuid4(),
            contract_term=ContractTerm.ANNUAL,
            currency="SAR",
            discount_percentage=Decimal("10"),
            override_monthly_fee=Decimal("300"),
        )
        assert tier.effective_monthly_fee(Money.of("400")) == Money.of("300")

    def test_discount(self) -> None:
        tier = ContractPricingTier.create(
            tenant_id=uuid4(),
            plan_id=uuid4(),
            contract_term=ContractTerm.SEMI_ANNUAL,
            currency="SAR",
            discount_percentage=Decimal("10"),
        )
        assert tier.effective_monthly_fee(Money.of("500")) == Money.of("450.00")
        assert tier.savings(Money.of("500")) == Money.of("50.00")

    def test_savings_never_negative(self) -> None:
        tier = ContractPricingTier.create(
            tenant_id=uuid4(),
            plan_id=uuid4(),
            contract_term=ContractTerm.MONTHLY,
            currency="SAR",
            override_monthly_fee=Decimal("600"),
        )
        assert tier.savings(Money.of("500")).is_zero()

    def test_requires_a_pricing_path(self) -> None:
        with pytest.raises(ValidationError):
            ContractPricingTier.create(
                tenant_id=uuid4(), plan_id=uuid4(), contract_term=ContractTerm.ANNUAL, currency="SAR"
            )

    def test_discount_range(self) -> None:
        with pytest.raises(ValueOutOfRangeError):
            ContractPricingTier.create(
                tenant_id=uuid4(),
                plan_id=uuid4(),
                contract_term=ContractTerm.ANNUAL,
                currency="SAR",
                discount_percentage=Decimal("150"),
            )


class TestMembershipPlanService:
    """Tests for the plan catalog service."""

    @pytest.mark.asyncio
    async def test_create_plan(self, plan_service: MembershipPlanService) -> None:
        plan = await plan_service.create_plan(
            PlanCreate(
                name_en="Gold",
                name_ar="ذهبي",
                membership_fee=Decimal("500"),
                membership_tax_rate=Decimal("0.15"),
                admin_fee=Decimal("20"),
            )
        )
        assert plan.is_active
        assert plan.currency == "SAR"
        assert plan.recurring_total() == Money.of("595.00")

    @pytest.mark.asyncio
    async def test_duplicate_name_conflicts(self, plan_service: MembershipPlanService, standard_plan) -> None:
        with pytest.raises(ConflictError):
            await plan_service.create_plan(PlanCreate(name_en="Standard", membership_fee=Decimal("1")))

    @pytest.mark.asyncio
    async def test_same_name_allowed_for_other_club(
        self, db_session, clock, notifier, settings, standard_plan
    ) -> None:
        other_club = MembershipPlanService(
            db_session, uuid4(), clock=clock, notifier=notifier, settings=settings
        )
        plan = await other_club.create_plan(PlanCreate(name_en="Standard", membership_fee=Decimal("1")))
        assert plan.tenant_id != standard_plan.tenant_id

    @pytest.mark.asyncio
    async def test_other_club_cannot_read_plan(
        self, db_session, clock, notifier, settings, standard_plan
    ) -> None:
        other_club = MembershipPlanService(
            db_session, uuid4(), clock=clock, notifier=notifier, settings=settings
        )
        with pytest.raises(PlanNotFoundError):
            await other_club.get_plan(standard_plan.id)

    @pytest.mark.asyncio
    async def test_update_plan(self, plan_service: MembershipPlanService, standard_plan) -> None:
        updated = await plan_service.update_plan(
            standard_plan.id, PlanUpdate(membership_fee=Decimal("500"), guest_passes_count=0)
        )
        assert updated.membership_fee == TaxableFee.of("500", "SAR", "0.15")
        assert updated.guest_passes_count == 0
        assert not updated.has_guest_passes
        assert updated.name_en == "Standard"

    @pytest.mark.asyncio
    async def test_invalid_update_leaves_plan_untouched(
        self, plan_service: MembershipPlanService, standard_plan
    ) -> None:
        with pytest.raises(ValidationError):
            await plan_service.update_plan(
                standard_plan.id,
                PlanUpdate(available_from=date(2024, 3, 1), available_until=date(2024, 2, 1)),
            )
        assert standard_plan.available_from is None

    @pytest.mark.asyncio
    async def test_list_available_plans(
        self, plan_service: MembershipPlanService, budget_plan, standard_plan, premium_plan, clock
    ) -> None:
        await plan_service.deactivate_plan(budget_plan.id)
        await plan_service.update_plan(
            premium_plan.id, PlanUpdate(available_from=clock.today() + timedelta(days=1))
        )

        available = await plan_service.list_available_plans()
        assert [plan.name_en for plan in available] == ["Standard"]
        assert len(await plan_service.list_plans()) == 3

        await plan_service.activate_plan(budget_plan.id)
        assert len(await plan_service.list_plans(active_only=True)) == 3

    @pytest.mark.asyncio
    async def test_pricing_tiers(self, plan_service: MembershipPlanService, standard_plan) -> None:
        tier = await plan_service.create_pricing_tier(
            PricingTierCreate(
                plan_id=standard_plan.id,
                contract_term=ContractTerm.ANNUAL,
                discount_percentage=Decimal("20"),
            )
        )
        assert tier.currency == "SAR"
        found = await plan_service.get_pricing_tier(standard_plan.id, ContractTerm.ANNUAL)
        assert found.id == tier.id
        assert len(await plan_service.list_pricing_tiers(standard_plan.id)) == 1

        with pytest.raises(ConflictError):
            await plan_service.create_pricing_tier(
                PricingTierCreate(
                    plan_id=standard_plan.id,
                    contract_term=ContractTerm.ANNUAL,
                    override_monthly_fee=Decimal("300"),
                )
            )
        with pytest.raises(PricingTierNotFoundError):
            await plan_service.get_pricing_tier(standard_plan.id, ContractTerm.MONTHLY)

    def test_pricing_tier_schema_requires_price(self) -> None:
        with pytest.raises(SchemaValidationError):
            PricingTierCreate(plan_id=uuid4(), contract_term=ContractTerm.ANNUAL)
