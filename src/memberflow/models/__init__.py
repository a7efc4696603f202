"""SQLAlchemy models."""

from memberflow.models.base import Base, TenantMixin, TimestampMixin
from memberflow.models.cancellation import (
    CancellationReasonCategory,
    CancellationRequest,
    CancellationRequestStatus,
    DissatisfactionArea,
    ExitSurvey,
    RetentionOffer,
    RetentionOfferStatus,
    RetentionOfferType,
)
from memberflow.models.contract import (
    CancellationType,
    ContractStatus,
    ContractType,
    MembershipContract,
    TerminationFeeType,
)
from memberflow.models.plan import (
    BillingPeriod,
    ContractPricingTier,
    ContractTerm,
    MembershipPlan,
)
from memberflow.models.plan_change import (
    PlanChangeHistory,
    PlanChangeType,
    ProrationMode,
    ScheduledChangeStatus,
    ScheduledPlanChange,
)
from memberflow.models.subscription import Subscription, SubscriptionStatus
from memberflow.models.wallet import MemberWallet, WalletTransaction, WalletTransactionType

__all__ = [
    "Base",
    "BillingPeriod",
    "CancellationReasonCategory",
    "CancellationRequest",
    "CancellationRequestStatus",
    "CancellationType",
    "ContractPricingTier",
    "ContractStatus",
    "ContractTerm",
    "ContractType",
    "DissatisfactionArea",
    "ExitSurvey",
    "MemberWallet",
    "MembershipContract",
    "MembershipPlan",
    "PlanChangeHistory",
    "PlanChangeType",
    "ProrationMode",
    "RetentionOffer",
    "RetentionOfferStatus",
    "RetentionOfferType",
    "ScheduledChangeStatus",
    "ScheduledPlanChange",
    "Subscription",
    "SubscriptionStatus",
    "TenantMixin",
    "TerminationFeeType",
    "TimestampMixin",
    "WalletTransaction",
    "WalletTransactionType",
]
