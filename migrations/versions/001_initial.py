"""Initial migration - create plan, subscription, contract, cancellation, plan change and wallet tables.

Revision ID: 001_initial
Revises:
Create Date: 2024-01-14

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUM_TYPES: dict[str, tuple[str, ...]] = {
    "billingperiod": (
        "daily",
        "weekly",
        "biweekly",
        "monthly",
        "quarterly",
        "semi_annual",
        "annual",
        "one_time",
    ),
    "contractterm": ("monthly", "quarterly", "semi_annual", "annual"),
    "subscriptionstatus": ("active", "expired", "cancelled", "frozen", "pending_payment"),
    "contracttype": ("month_to_month", "fixed_term"),
    "contractstatus": (
        "pending_signature",
        "active",
        "in_notice_period",
        "cancelled",
        "expired",
        "suspended",
        "voided",
    ),
    "contractstatus_suspended_from": (
        "pending_signature",
        "active",
        "in_notice_period",
        "cancelled",
        "expired",
        "suspended",
        "voided",
    ),
    "terminationfeetype": ("none", "flat_fee", "remaining_months", "percentage"),
    "cancellationtype": (
        "cooling_off",
        "member_request",
        "non_payment",
        "relocation",
        "medical",
        "administrative",
    ),
    "cancellationreasoncategory": (
        "price",
        "relocation",
        "health",
        "schedule",
        "not_using",
        "service_quality",
        "facilities",
        "competitor",
        "other",
    ),
    "cancellationrequeststatus": ("pending_notice", "in_notice", "saved", "completed", "withdrawn"),
    "retentionoffertype": (
        "free_freeze",
        "discount",
        "credit",
        "downgrade",
        "extension",
        "personal_training",
        "custom",
    ),
    "retentionofferstatus": ("pending", "accepted", "declined", "expired"),
    "planchangetype": ("upgrade", "downgrade", "lateral"),
    "prorationmode": ("prorate_immediately", "end_of_period", "full_period_credit", "no_proration"),
    "scheduledchangestatus": ("pending", "processed", "cancelled"),
    "wallettransactiontype": ("credit", "debit", "subscription_charge", "refund", "adjustment"),
}


def _enum(name: str) -> postgresql.ENUM:
    # Types are created up front; several tables share one.
    return postgresql.ENUM(*ENUM_TYPES[name], name=name, create_type=False)


def _money(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(precision=14, scale=2), nullable=nullable)


def _tax_rate(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(precision=6, scale=4), nullable=False)


def _common_columns() -> list[sa.Column]:
    """id, tenant and timestamp columns every table carries."""
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUM_TYPES.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # Create membership_plans table
    op.create_table(
        "membership_plans",
        *_common_columns(),
        sa.Column("name_en", sa.String(200), nullable=False),
        sa.Column("name_ar", sa.String(200), nullable=True),
        sa.Column("description_en", sa.Text(), nullable=True),
        sa.Column("description_ar", sa.Text(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        _money("membership_fee_amount"),
        _tax_rate("membership_fee_tax_rate"),
        _money("admin_fee_amount"),
        _tax_rate("admin_fee_tax_rate"),
        _money("join_fee_amount"),
        _tax_rate("join_fee_tax_rate"),
        sa.Column("billing_period", _enum("billingperiod"), nullable=False),
        sa.Column("duration_days", sa.Integer(), nullable=True),
        sa.Column("max_classes_per_period", sa.Integer(), nullable=True),
        sa.Column("has_guest_passes", sa.Boolean(), nullable=False),
        sa.Column("guest_passes_count", sa.Integer(), nullable=False),
        sa.Column("freeze_days_allowed", sa.Integer(), nullable=False),
        sa.Column("has_locker_access", sa.Boolean(), nullable=False),
        sa.Column("has_sauna_access", sa.Boolean(), nullable=False),
        sa.Column("has_pool_access", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("available_from", sa.Date(), nullable=True),
        sa.Column("available_until", sa.Date(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_membership_plans"),
        sa.UniqueConstraint("tenant_id", "name_en", name="uq_membership_plans_tenant_name"),
    )
    op.create_index("ix_membership_plans_tenant_id", "membership_plans", ["tenant_id"])
    op.create_index(
        "ix_membership_plans_tenant_active", "membership_plans", ["tenant_id", "is_active"]
    )

    # Create contract_pricing_tiers table
    op.create_table(
        "contract_pricing_tiers",
        *_common_columns(),
        sa.Column("plan_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("contract_term", _enum("contractterm"), nullable=False),
        sa.Column("discount_percentage", sa.Numeric(precision=5, scale=2), nullable=True),
        _money("override_monthly_fee", nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_contract_pricing_tiers"),
        sa.ForeignKeyConstraint(
            ["plan_id"],
            ["membership_plans.id"],
            name="fk_contract_pricing_tiers_plan_id",
        ),
        sa.UniqueConstraint("plan_id", "contract_term", name="uq_pricing_tier_plan_term"),
    )
    op.create_index("ix_contract_pricing_tiers_tenant_id", "contract_pricing_tiers", ["tenant_id"])
    op.create_index("ix_contract_pricing_tiers_plan_id", "contract_pricing_tiers", ["plan_id"])

    # Create subscriptions table
    op.create_table(
        "subscriptions",
        *_common_columns(),
        sa.Column("member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("plan_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("contract_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("status", _enum("subscriptionstatus"), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("auto_renew", sa.Boolean(), nullable=False),
        _money("paid_amount", nullable=True),
        sa.Column("paid_currency", sa.String(3), nullable=True),
        sa.Column("classes_remaining", sa.Integer(), nullable=True),
        sa.Column("guest_passes_remaining", sa.Integer(), nullable=False),
        sa.Column("freeze_days_remaining", sa.Integer(), nullable=False),
        sa.Column("frozen_at", sa.Date(), nullable=True),
        sa.Column("total_freeze_days_used", sa.Integer(), nullable=False),
        sa.Column("current_billing_period_start", sa.Date(), nullable=True),
        sa.Column("current_billing_period_end", sa.Date(), nullable=True),
        sa.Column("scheduled_plan_change_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("cancellation_request_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("notice_period_end_date", sa.Date(), nullable=True),
        sa.Column("cancellation_effective_date", sa.Date(), nullable=True),
        sa.Column("reactivation_eligible_until", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_subscriptions"),
        sa.ForeignKeyConstraint(
            ["plan_id"],
            ["membership_plans.id"],
            name="fk_subscriptions_plan_id",
        ),
    )
    op.create_index("ix_subscriptions_tenant_id", "subscriptions", ["tenant_id"])
    op.create_index("ix_subscriptions_member_id", "subscriptions", ["member_id"])
    op.create_index("ix_subscriptions_plan_id", "subscriptions", ["plan_id"])
    op.create_index(
        "ix_subscriptions_tenant_member_status",
        "subscriptions",
        ["tenant_id", "member_id", "status"],
    )
    op.create_index("ix_subscriptions_status_end_date", "subscriptions", ["status", "end_date"])

    # Create membership_contracts table
    op.create_table(
        "membership_contracts",
        *_common_columns(),
        sa.Column("contract_number", sa.String(32), nullable=False),
        sa.Column("member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("plan_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("subscription_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("contract_type", _enum("contracttype"), nullable=False),
        sa.Column("contract_term", _enum("contractterm"), nullable=False),
        sa.Column("commitment_months", sa.Integer(), nullable=False),
        sa.Column("notice_period_days", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("commitment_end_date", sa.Date(), nullable=True),
        sa.Column("effective_end_date", sa.Date(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False),
        _money("locked_membership_fee_amount"),
        _tax_rate("locked_membership_fee_tax_rate"),
        _money("locked_admin_fee_amount"),
        _tax_rate("locked_admin_fee_tax_rate"),
        _money("locked_join_fee_amount"),
        _tax_rate("locked_join_fee_tax_rate"),
        sa.Column("early_termination_fee_type", _enum("terminationfeetype"), nullable=False),
        _money("early_termination_fee_value", nullable=True),
        sa.Column("cooling_off_days", sa.Integer(), nullable=False),
        sa.Column("cooling_off_end_date", sa.Date(), nullable=False),
        sa.Column("status", _enum("contractstatus"), nullable=False),
        sa.Column("suspended_from_status", _enum("contractstatus_suspended_from"), nullable=True),
        sa.Column("member_signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("member_signature_data", sa.Text(), nullable=True),
        sa.Column("staff_approved_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("staff_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_requested_at", sa.Date(), nullable=True),
        sa.Column("cancellation_effective_date", sa.Date(), nullable=True),
        sa.Column("cancellation_type", _enum("cancellationtype"), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_membership_contracts"),
        sa.ForeignKeyConstraint(
            ["plan_id"],
            ["membership_plans.id"],
            name="fk_membership_contracts_plan_id",
        ),
        sa.UniqueConstraint("tenant_id", "contract_number", name="uq_membership_contracts_tenant_number"),
    )
    op.create_index("ix_membership_contracts_tenant_id", "membership_contracts", ["tenant_id"])
    op.create_index("ix_membership_contracts_member_id", "membership_contracts", ["member_id"])
    op.create_index(
        "ix_membership_contracts_subscription_id", "membership_contracts", ["subscription_id"]
    )
    op.create_index(
        "ix_membership_contracts_tenant_status", "membership_contracts", ["tenant_id", "status"]
    )
    op.create_index(
        "ix_membership_contracts_cancellation_due",
        "membership_contracts",
        ["status", "cancellation_effective_date"],
    )

    # Create cancellation_requests table
    op.create_table(
        "cancellation_requests",
        *_common_columns(),
        sa.Column("member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("subscription_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("contract_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("reason_category", _enum("cancellationreasoncategory"), nullable=False),
        sa.Column("reason_detail", sa.Text(), nullable=True),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("requested_date", sa.Date(), nullable=False),
        sa.Column("notice_period_days", sa.Integer(), nullable=False),
        sa.Column("notice_period_end_date", sa.Date(), nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.Column("is_within_commitment", sa.Boolean(), nullable=False),
        sa.Column("is_within_cooling_off", sa.Boolean(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        _money("early_termination_fee_amount", nullable=True),
        sa.Column("fee_waived", sa.Boolean(), nullable=False),
        sa.Column("fee_waived_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("fee_waived_reason", sa.Text(), nullable=True),
        sa.Column("status", _enum("cancellationrequeststatus"), nullable=False),
        sa.Column("saved_by_offer_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("exit_survey_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("withdrawn_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("withdrawal_reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_cancellation_requests"),
    )
    op.create_index("ix_cancellation_requests_tenant_id", "cancellation_requests", ["tenant_id"])
    op.create_index("ix_cancellation_requests_member_id", "cancellation_requests", ["member_id"])
    op.create_index(
        "ix_cancellation_requests_subscription_id", "cancellation_requests", ["subscription_id"]
    )
    op.create_index(
        "ix_cancellation_requests_contract_id", "cancellation_requests", ["contract_id"]
    )
    op.create_index(
        "ix_cancellation_requests_status_effective",
        "cancellation_requests",
        ["status", "effective_date"],
    )

    # Create exit_surveys table
    op.create_table(
        "exit_surveys",
        *_common_columns(),
        sa.Column("member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("subscription_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("contract_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("reason_category", _enum("cancellationreasoncategory"), nullable=False),
        sa.Column("reason_detail", sa.Text(), nullable=True),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("nps_score", sa.Integer(), nullable=True),
        sa.Column("would_recommend", sa.Boolean(), nullable=True),
        sa.Column("overall_satisfaction", sa.Integer(), nullable=True),
        sa.Column("dissatisfaction_areas", sa.JSON(), nullable=False),
        sa.Column("what_would_bring_back", sa.Text(), nullable=True),
        sa.Column("open_to_future_offers", sa.Boolean(), nullable=False),
        sa.Column("competitor_name", sa.String(200), nullable=True),
        sa.Column("competitor_reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_exit_surveys"),
        sa.UniqueConstraint("subscription_id", name="uq_exit_surveys_subscription"),
    )
    op.create_index("ix_exit_surveys_tenant_id", "exit_surveys", ["tenant_id"])
    op.create_index("ix_exit_surveys_member_id", "exit_surveys", ["member_id"])

    # Create retention_offers table
    op.create_table(
        "retention_offers",
        *_common_columns(),
        sa.Column("member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("subscription_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("contract_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("cancellation_request_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("offer_type", _enum("retentionoffertype"), nullable=False),
        sa.Column("title_en", sa.String(200), nullable=False),
        sa.Column("title_ar", sa.String(200), nullable=True),
        sa.Column("description_en", sa.Text(), nullable=True),
        sa.Column("description_ar", sa.Text(), nullable=True),
        _money("value_amount", nullable=True),
        sa.Column("value_currency", sa.String(3), nullable=True),
        sa.Column("discount_percentage", sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column("duration_days", sa.Integer(), nullable=True),
        sa.Column("duration_months", sa.Integer(), nullable=True),
        sa.Column("session_count", sa.Integer(), nullable=True),
        sa.Column("alternative_plan_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("status", _enum("retentionofferstatus"), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_retention_offers"),
    )
    op.create_index("ix_retention_offers_tenant_id", "retention_offers", ["tenant_id"])
    op.create_index("ix_retention_offers_member_id", "retention_offers", ["member_id"])
    op.create_index("ix_retention_offers_subscription_id", "retention_offers", ["subscription_id"])
    op.create_index(
        "ix_retention_offers_cancellation_request_id",
        "retention_offers",
        ["cancellation_request_id"],
    )
    op.create_index(
        "ix_retention_offers_subscription_status",
        "retention_offers",
        ["subscription_id", "status"],
    )

    # Create plan_change_history table
    op.create_table(
        "plan_change_history",
        *_common_columns(),
        sa.Column("subscription_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("contract_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("old_plan_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("new_plan_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("change_type", _enum("planchangetype"), nullable=False),
        sa.Column("proration_mode", _enum("prorationmode"), nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.Column("billing_period_start", sa.Date(), nullable=False),
        sa.Column("billing_period_end", sa.Date(), nullable=False),
        sa.Column("days_remaining", sa.Integer(), nullable=False),
        sa.Column("total_days", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        _money("credit_amount", nullable=True),
        _money("charge_amount", nullable=True),
        _money("net_amount", nullable=True),
        sa.Column("wallet_transaction_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("scheduled_change_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("initiated_by_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("initiated_by_member", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_plan_change_history"),
    )
    op.create_index("ix_plan_change_history_tenant_id", "plan_change_history", ["tenant_id"])
    op.create_index(
        "ix_plan_change_history_subscription_id", "plan_change_history", ["subscription_id"]
    )

    # Create scheduled_plan_changes table
    op.create_table(
        "scheduled_plan_changes",
        *_common_columns(),
        sa.Column("subscription_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("contract_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("current_plan_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("new_plan_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("change_type", _enum("planchangetype"), nullable=False),
        sa.Column("scheduled_date", sa.Date(), nullable=False),
        sa.Column("status", _enum("scheduledchangestatus"), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("history_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("initiated_by_user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("initiated_by_member", sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_scheduled_plan_changes"),
    )
    op.create_index("ix_scheduled_plan_changes_tenant_id", "scheduled_plan_changes", ["tenant_id"])
    op.create_index(
        "ix_scheduled_plan_changes_subscription_id", "scheduled_plan_changes", ["subscription_id"]
    )
    op.create_index(
        "ix_scheduled_plan_changes_status_date",
        "scheduled_plan_changes",
        ["status", "scheduled_date"],
    )

    # Create member_wallets table
    op.create_table(
        "member_wallets",
        *_common_columns(),
        sa.Column("member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        _money("balance_amount"),
        sa.Column("transaction_count", sa.Integer(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_member_wallets"),
        sa.UniqueConstraint("tenant_id", "member_id", name="uq_member_wallets_tenant_member"),
    )
    op.create_index("ix_member_wallets_tenant_id", "member_wallets", ["tenant_id"])

    # Create wallet_transactions table
    op.create_table(
        "wallet_transactions",
        *_common_columns(),
        sa.Column("wallet_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sequence_number", sa.Integer(), nullable=False),
        sa.Column("transaction_type", _enum("wallettransactiontype"), nullable=False),
        _money("amount"),
        sa.Column("currency", sa.String(3), nullable=False),
        _money("balance_after"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("reference_type", sa.String(50), nullable=True),
        sa.Column("reference_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_wallet_transactions"),
        sa.ForeignKeyConstraint(
            ["wallet_id"],
            ["member_wallets.id"],
            name="fk_wallet_transactions_wallet_id",
        ),
        sa.UniqueConstraint("wallet_id", "sequence_number", name="uq_wallet_transactions_sequence"),
    )
    op.create_index("ix_wallet_transactions_tenant_id", "wallet_transactions", ["tenant_id"])
    op.create_index("ix_wallet_transactions_wallet_id", "wallet_transactions", ["wallet_id"])
    op.create_index("ix_wallet_transactions_member_id", "wallet_transactions", ["member_id"])


def downgrade() -> None:
    op.drop_table("wallet_transactions")
    op.drop_table("member_wallets")
    op.drop_table("scheduled_plan_changes")
    op.drop_table("plan_change_history")
    op.drop_table("retention_offers")
    op.drop_table("exit_surveys")
    op.drop_table("cancellation_requests")
    op.drop_table("membership_contracts")
    op.drop_table("subscriptions")
    op.drop_table("contract_pricing_tiers")
    op.drop_table("membership_plans")

    bind = op.get_bind()
    for name in reversed(list(ENUM_TYPES)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
