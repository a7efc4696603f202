"""Plan catalog and contract pricing tiers."""

from __future__ import annotations

from uuid import UUID

from memberflow.core.exceptions import ConflictError, PlanNotFoundError, PricingTierNotFoundError
from memberflow.core.money import LocalizedText, TaxableFee
from memberflow.core.service import TenantService
from memberflow.membership.schemas import PlanCreate, PlanUpdate, PricingTierCreate
from memberflow.models.plan import ContractPricingTier, ContractTerm, MembershipPlan


class MembershipPlanService(TenantService):
    """Service for managing the plan catalog."""

    async def create_plan(self, plan_data: PlanCreate) -> MembershipPlan:
        """Create a new membership plan.

        Args:
            plan_data: Plan creation data

        Returns:
            Created plan

        Raises:
            ConflictError: If a plan with the same English name exists
            ValidationError: If the fees or allowances are invalid
        """
        existing = await self.repo.first(
            self.repo.select(MembershipPlan).where(MembershipPlan.name_en == plan_data.name_en)
        )
        if existing is not None:
            raise ConflictError(
                f"Plan '{plan_data.name_en}' already exists",
                details={"plan_id": str(existing.id)},
            )

        currency = plan_data.currency.upper()
        plan = MembershipPlan.create(
            tenant_id=self.tenant_id,
            name=LocalizedText(plan_data.name_en, plan_data.name_ar),
            description=(
                LocalizedText(plan_data.description_en, plan_data.description_ar)
                if plan_data.description_en
                else None
            ),
            billing_period=plan_data.billing_period,
            membership_fee=TaxableFee(plan_data.membership_fee, currency, plan_data.membership_tax_rate),
            administration_fee=TaxableFee(plan_data.admin_fee, currency, plan_data.admin_tax_rate),
            join_fee=TaxableFee(plan_data.join_fee, currency, plan_data.join_tax_rate),
            duration_days=plan_data.duration_days,
            max_classes_per_period=plan_data.max_classes_per_period,
            guest_passes_count=plan_data.guest_passes_count,
            freeze_days_allowed=plan_data.freeze_days_allowed,
            has_locker_access=plan_data.has_locker_access,
            has_sauna_access=plan_data.has_sauna_access,
            has_pool_access=plan_data.has_pool_access,
            available_from=plan_data.available_from,
            available_until=plan_data.available_until,
        )
        self.db.add(plan)
        await self.db.flush()

        self.logger.info(
            "plan_created",
            plan_id=str(plan.id),
            name=plan.name_en,
            recurring_total=str(plan.recurring_total()),
        )
        return plan

    async def get_plan(self, plan_id: UUID) -> MembershipPlan:
        return await self.repo.get(MembershipPlan, plan_id, error=PlanNotFoundError)

    async def list_plans(self, *, active_only: bool = False) -> list[MembershipPlan]:
        query = self.repo.select(MembershipPlan).order_by(MembershipPlan.name_en)
        if active_only:
            query = query.where(MembershipPlan.is_active.is_(True))
        return await self.repo.all(query)

    async def list_available_plans(self) -> list[MembershipPlan]:
        """Active plans that can be sold today."""
        today = self.clock.today()
        plans = await self.list_plans(active_only=True)
        return [plan for plan in plans if plan.is_currently_available(today)]

    async def update_plan(self, plan_id: UUID, update: PlanUpdate) -> MembershipPlan:
        """Apply a partial update.

        Fee changes affect new subscriptions and contracts only; signed
        contracts keep their locked prices.
        """
        plan = await self.get_plan(plan_id)
        changes = update.model_dump(exclude_unset=True)

        fee_fields = {
            "membership_fee": ("membership_fee_amount", "membership_fee_tax_rate", "membership_tax_rate"),
            "admin_fee": ("admin_fee_amount", "admin_fee_tax_rate", "admin_tax_rate"),
            "join_fee": ("join_fee_amount", "join_fee_tax_rate", "join_tax_rate"),
        }
        candidate = {
            "name": LocalizedText(changes.get("name_en", plan.name_en), changes.get("name_ar", plan.name_ar)),
            "billing_period": plan.billing_period,
            "duration_days": changes.get("duration_days", plan.duration_days),
            "max_classes_per_period": changes.get("max_classes_per_period", plan.max_classes_per_period),
            "guest_passes_count": changes.get("guest_passes_count", plan.guest_passes_count),
            "freeze_days_allowed": changes.get("freeze_days_allowed", plan.freeze_days_allowed),
            "available_from": changes.get("available_from", plan.available_from),
            "available_until": changes.get("available_until", plan.available_until),
        }
        fees = {}
        for key, (amount_attr, rate_attr, rate_key) in fee_fields.items():
            fees[key] = TaxableFee(
                changes.get(key, getattr(plan, amount_attr)),
                plan.currency,
                changes.get(rate_key, getattr(plan, rate_attr)),
            )
        # Run the same validation as creation before touching the row.
        validated = MembershipPlan.create(
            tenant_id=self.tenant_id,
            membership_fee=fees["membership_fee"],
            administration_fee=fees["admin_fee"],
            join_fee=fees["join_fee"],
            **candidate,
        )

        for column in (
            "name_en",
            "name_ar",
            "membership_fee_amount",
            "membership_fee_tax_rate",
            "admin_fee_amount",
            "admin_fee_tax_rate",
            "join_fee_amount",
            "join_fee_tax_rate",
            "duration_days",
            "max_classes_per_period",
            "has_guest_passes",
            "guest_passes_count",
            "freeze_days_allowed",
            "available_from",
            "available_until",
        ):
            setattr(plan, column, getattr(validated, column))
        if "description_en" in changes:
            plan.description_en = changes["description_en"]
        if "description_ar" in changes:
            plan.description_ar = changes["description_ar"]

        await self.db.flush()

        self.logger.info("plan_updated", plan_id=str(plan.id), fields=sorted(changes))
        return plan

    async def activate_plan(self, plan_id: UUID) -> MembershipPlan:
        plan = await self.get_plan(plan_id)
        plan.activate()
        await self.db.flush()
        self.logger.info("plan_activated", plan_id=str(plan.id))
        return plan

    async def deactivate_plan(self, plan_id: UUID) -> MembershipPlan:
        """Stop selling a plan. Existing subscriptions are unaffected."""
        plan = await self.get_plan(plan_id)
        plan.deactivate()
        await self.db.flush()
        self.logger.info("plan_deactivated", plan_id=str(plan.id))
        return plan

    async def create_pricing_tier(self, tier_data: PricingTierCreate) -> ContractPricingTier:
        plan = await self.get_plan(tier_data.plan_id)
        existing = await self.find_pricing_tier(plan.id, tier_data.contract_term)
        if existing is not None:
            raise ConflictError(
                f"Plan already has a {tier_data.contract_term.value} pricing tier",
                details={"pricing_tier_id": str(existing.id)},
            )

        tier = ContractPricingTier.create(
            tenant_id=self.tenant_id,
            plan_id=plan.id,
            contract_term=tier_data.contract_term,
            currency=plan.currency,
            discount_percentage=tier_data.discount_percentage,
            override_monthly_fee=tier_data.override_monthly_fee,
        )
        self.db.add(tier)
        await self.db.flush()

        self.logger.info(
            "pricing_tier_created",
            pricing_tier_id=str(tier.id),
            plan_id=str(plan.id),
            contract_term=tier.contract_term.value,
        )
        return tier

    async def find_pricing_tier(self, plan_id: UUID, contract_term: ContractTerm) -> ContractPricingTier | None:
        return await self.repo.first(
            self.repo.select(ContractPricingTier).where(
                ContractPricingTier.plan_id == plan_id,
                ContractPricingTier.contract_term == contract_term,
                ContractPricingTier.is_active.is_(True),
            )
        )

    async def get_pricing_tier(self, plan_id: UUID, contract_term: ContractTerm) -> ContractPricingTier:
        tier = await self.find_pricing_tier(plan_id, contract_term)
        if tier is None:
            raise PricingTierNotFoundError(
                resource_type="ContractPricingTier",
                resource_id=f"{plan_id}/{contract_term.value}",
            )
        return tier

    async def list_pricing_tiers(self, plan_id: UUID) -> list[ContractPricingTier]:
        return await self.repo.all(
            self.repo.select(ContractPricingTier)
            .where(ContractPricingTier.plan_id == plan_id)
            .order_by(ContractPricingTier.contract_term)
        )
