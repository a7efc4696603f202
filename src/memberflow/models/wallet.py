"""Member wallet and its append-only transaction log."""

from __future__ import annotations

import enum
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from memberflow.core.exceptions import ValidationError
from memberflow.core.money import Money
from memberflow.models.base import Base, TenantMixin, TimestampMixin


class WalletTransactionType(str, enum.Enum):
    """Wallet transaction type enum."""
    CREDIT = "credit"
    DEBIT = "debit"
    SUBSCRIPTION_CHARGE = "subscription_charge"
    REFUND = "refund"
    ADJUSTMENT = "adjustment"


class MemberWallet(Base, TenantMixin, TimestampMixin):
    """Per-member running balance. Negative means the member owes the club.

    Only the mutation methods below change ``balance_amount``; each returns
    the transaction row that must be persisted in the same unit of work.
    ``version`` is an optimistic lock so a lost update fails loudly.
    """

    __tablename__ = "member_wallets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    member_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    balance_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("tenant_id", "member_id", name="uq_member_wallets_tenant_member"),
    )

    @classmethod
    def open(cls, *, tenant_id: UUID, member_id: UUID, currency: str) -> MemberWallet:
        return cls(
            id=uuid4(),
            tenant_id=tenant_id,
            member_id=member_id,
            currency=currency.upper(),
            balance_amount=Decimal("0.00"),
            transaction_count=0,
        )

    @property
    def balance(self) -> Money:
        return Money(self.balance_amount, self.currency)

    def has_sufficient_balance(self, amount: Money) -> bool:
        return self.balance.is_greater_or_equal(amount)

    def _require_positive(self, amount: Money, operation: str) -> None:
        # Checked after rounding to the ledger precision
        if not amount.rounded().is_positive():
            raise ValidationError(
                f"{operation} amount must be positive",
                field="amount",
                value=amount.amount,
                constraint="> 0",
            )

    def _post(
        self,
        transaction_type: WalletTransactionType,
        delta: Money,
        description: str | None,
        reference_type: str | None,
        reference_id: UUID | None,
        created_by: UUID | None,
    ) -> WalletTransaction:
        new_balance = self.balance.add(delta.rounded())
        self.balance_amount = new_balance.amount
        self.transaction_count += 1
        return WalletTransaction(
            id=uuid4(),
            tenant_id=self.tenant_id,
            wallet_id=self.id,
            member_id=self.member_id,
            sequence_number=self.transaction_count,
            transaction_type=transaction_type,
            amount=delta.rounded().amount,
            currency=self.currency,
            balance_after=new_balance.amount,
            description=description,
            reference_type=reference_type,
            reference_id=reference_id,
            created_by=created_by,
        )

    def credit(
        self,
        amount: Money,
        description: str | None = None,
        *,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        created_by: UUID | None = None,
    ) -> WalletTransaction:
        self._require_positive(amount, "Credit")
        return self._post(
            WalletTransactionType.CREDIT, amount, description, reference_type, reference_id, created_by
        )

    def debit(
        self,
        amount: Money,
        description: str | None = None,
        *,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        created_by: UUID | None = None,
    ) -> WalletTransaction:
        self._require_positive(amount, "Debit")
        return self._post(
            WalletTransactionType.DEBIT, amount.negate(), description, reference_type, reference_id, created_by
        )

    def charge_subscription(
        self,
        amount: Money,
        subscription_id: UUID,
        description: str | None = None,
    ) -> WalletTransaction:
        self._require_positive(amount, "Charge")
        return self._post(
            WalletTransactionType.SUBSCRIPTION_CHARGE,
            amount.negate(),
            description or "Subscription charge",
            "subscription",
            subscription_id,
            None,
        )

    def refund(
        self,
        amount: Money,
        description: str | None = None,
        *,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        created_by: UUID | None = None,
    ) -> WalletTransaction:
        self._require_positive(amount, "Refund")
        return self._post(
            WalletTransactionType.REFUND, amount, description, reference_type, reference_id, created_by
        )

    def adjust(
        self,
        delta: Money,
        description: str | None = None,
        *,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        created_by: UUID | None = None,
    ) -> WalletTransaction:
        """Signed adjustment: positive credits the member, negative debits."""
        if delta.rounded().is_zero():
            raise ValidationError("Adjustment must not be zero", field="amount", value=delta.amount)
        return self._post(
            WalletTransactionType.ADJUSTMENT, delta, description, reference_type, reference_id, created_by
        )


class WalletTransaction(Base, TenantMixin, TimestampMixin):
    """Immutable log entry. ``amount`` is the signed effect on the balance."""

    __tablename__ = "wallet_transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    wallet_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("member_wallets.id"), index=True)
    member_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_type: Mapped[WalletTransactionType] = mapped_column(
        Enum(WalletTransactionType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    created_by: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    __table_args__ = (
        UniqueConstraint("wallet_id", "sequence_number", name="uq_wallet_transactions_sequence"),
    )

    @property
    def signed_amount(self) -> Money:
        return Money(self.amount, self.currency)


def replay_balance(transactions: list[WalletTransaction], currency: str) -> Money:
    """Rebuild a balance from zero by summing the log in sequence order."""
    balance = Money.zero(currency)
    for transaction in sorted(transactions, key=lambda t: t.sequence_number):
        balance = balance.add(transaction.signed_amount)
    return balance
