"""Wallet service: the single writer of member balances."""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from memberflow.core.exceptions import ConcurrentModificationError, WalletNotFoundError
from memberflow.core.money import Money
from memberflow.core.service import TenantService
from memberflow.membership.notifications import NotificationEvent, notify
from memberflow.membership.schemas import LedgerVerification
from memberflow.models.subscription import Subscription, SubscriptionStatus
from memberflow.models.wallet import (
    MemberWallet,
    WalletTransaction,
    WalletTransactionType,
    replay_balance,
)

_EVENTS = {
    WalletTransactionType.CREDIT: "wallet_credited",
    WalletTransactionType.DEBIT: "wallet_debited",
    WalletTransactionType.SUBSCRIPTION_CHARGE: "wallet_subscription_charged",
    WalletTransactionType.REFUND: "wallet_refunded",
    WalletTransactionType.ADJUSTMENT: "wallet_adjusted",
}


class WalletService(TenantService):
    """Posts credits, debits and charges to member wallets.

    Each mutation locks the wallet row (``SELECT ... FOR UPDATE``), updates
    the balance and appends the matching transaction in the same flush. The
    wallet's version column turns any remaining lost update into
    ``ConcurrentModificationError``.
    """

    async def find_wallet(self, member_id: UUID, *, for_update: bool = False) -> MemberWallet | None:
        query = self.repo.select(MemberWallet).where(MemberWallet.member_id == member_id)
        if for_update:
            query = query.with_for_update()
        return await self.repo.first(query)

    async def get_wallet(self, member_id: UUID) -> MemberWallet:
        """Get a member's wallet.

        Raises:
            WalletNotFoundError: If the member has no wallet yet
        """
        wallet = await self.find_wallet(member_id)
        if wallet is None:
            raise WalletNotFoundError(resource_type="MemberWallet", resource_id=str(member_id))
        return wallet

    async def get_or_create_wallet(
        self,
        member_id: UUID,
        currency: str | None = None,
        *,
        for_update: bool = False,
    ) -> MemberWallet:
        wallet = await self.find_wallet(member_id, for_update=for_update)
        if wallet is not None:
            return wallet

        wallet = MemberWallet.open(
            tenant_id=self.tenant_id,
            member_id=member_id,
            currency=currency or self.settings.default_currency,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(wallet)
        except IntegrityError as e:
            # Another transaction opened the wallet first
            existing = await self.find_wallet(member_id, for_update=for_update)
            if existing is None:
                raise ConcurrentModificationError(
                    "Wallet could not be created",
                    details={"tenant_id": str(self.tenant_id), "member_id": str(member_id)},
                ) from e
            return existing

        self.logger.info(
            "wallet_created",
            wallet_id=str(wallet.id),
            member_id=str(member_id),
            currency=wallet.currency,
        )
        return wallet

    async def _apply(
        self,
        member_id: UUID,
        currency: str,
        operation: Callable[[MemberWallet], WalletTransaction],
    ) -> WalletTransaction:
        wallet = await self.get_or_create_wallet(member_id, currency, for_update=True)
        transaction = operation(wallet)
        self.db.add(transaction)
        await self._flush()

        self.logger.info(
            _EVENTS[transaction.transaction_type],
            wallet_id=str(wallet.id),
            member_id=str(member_id),
            transaction_id=str(transaction.id),
            amount=str(transaction.amount),
            balance_after=str(transaction.balance_after),
        )
        return transaction

    async def _flush(self) -> None:
        try:
            await self.db.flush()
        except StaleDataError as e:
            raise ConcurrentModificationError(
                "Wallet was updated by another transaction",
                details={"tenant_id": str(self.tenant_id)},
            ) from e

    async def credit(
        self,
        member_id: UUID,
        amount: Money,
        description: str | None = None,
        *,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        created_by: UUID | None = None,
    ) -> WalletTransaction:
        """Credit a wallet.

        Once the balance is back to zero or above, subscriptions still
        pending payment for a charge already on the ledger are activated.
        """
        transaction = await self._apply(
            member_id,
            amount.currency,
            lambda wallet: wallet.credit(
                amount,
                description,
                reference_type=reference_type,
                reference_id=reference_id,
                created_by=created_by,
            ),
        )
        if transaction.balance_after >= 0:
            await self._settle_pending_subscriptions(member_id)
        return transaction

    async def _settle_pending_subscriptions(self, member_id: UUID) -> None:
        charges = await self.repo.all(
            self.repo.select(WalletTransaction).where(
                WalletTransaction.member_id == member_id,
                WalletTransaction.transaction_type == WalletTransactionType.SUBSCRIPTION_CHARGE,
            )
        )
        charged = {charge.reference_id: charge.signed_amount.negate() for charge in charges}
        if not charged:
            return

        pending = await self.repo.all(
            self.repo.select(Subscription)
            .where(
                Subscription.member_id == member_id,
                Subscription.status == SubscriptionStatus.PENDING_PAYMENT,
                Subscription.id.in_(list(charged)),
            )
            .order_by(Subscription.start_date)
        )
        for subscription in pending:
            amount = charged[subscription.id]
            subscription.confirm_payment(amount)
            await self.db.flush()

            self.logger.info(
                "subscription_paid_from_wallet",
                subscription_id=str(subscription.id),
                member_id=str(member_id),
                amount=str(amount),
            )
            await notify(
                self.notifier,
                NotificationEvent.PAYMENT_RECEIVED,
                subscription_id=subscription.id,
                member_id=member_id,
                amount=amount,
            )

    async def debit(
        self,
        member_id: UUID,
        amount: Money,
        description: str | None = None,
        *,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        created_by: UUID | None = None,
    ) -> WalletTransaction:
        """Debit a wallet. The balance may go negative (member owes the club)."""
        return await self._apply(
            member_id,
            amount.currency,
            lambda wallet: wallet.debit(
                amount,
                description,
                reference_type=reference_type,
                reference_id=reference_id,
                created_by=created_by,
            ),
        )

    async def charge_subscription(
        self,
        member_id: UUID,
        subscription_id: UUID,
        amount: Money,
        description: str | None = None,
    ) -> WalletTransaction:
        transaction = await self._apply(
            member_id,
            amount.currency,
            lambda wallet: wallet.charge_subscription(amount, subscription_id, description),
        )
        await notify(
            self.notifier,
            NotificationEvent.WALLET_CHARGED,
            member_id=member_id,
            subscription_id=subscription_id,
            amount=amount,
            balance_after=transaction.balance_after,
        )
        return transaction

    async def refund(
        self,
        member_id: UUID,
        amount: Money,
        description: str | None = None,
        *,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        created_by: UUID | None = None,
    ) -> WalletTransaction:
        return await self._apply(
            member_id,
            amount.currency,
            lambda wallet: wallet.refund(
                amount,
                description,
                reference_type=reference_type,
                reference_id=reference_id,
                created_by=created_by,
            ),
        )

    async def post_adjustment(
        self,
        member_id: UUID,
        delta: Money,
        description: str | None = None,
        *,
        reference_type: str | None = None,
        reference_id: UUID | None = None,
        created_by: UUID | None = None,
    ) -> WalletTransaction:
        """Post a single signed adjustment (positive credits, negative debits)."""
        return await self._apply(
            member_id,
            delta.currency,
            lambda wallet: wallet.adjust(
                delta,
                description,
                reference_type=reference_type,
                reference_id=reference_id,
                created_by=created_by,
            ),
        )

    async def get_balance(self, member_id: UUID) -> Money:
        wallet = await self.find_wallet(member_id)
        if wallet is None:
            return Money.zero(self.settings.default_currency)
        return wallet.balance

    async def has_sufficient_balance(self, member_id: UUID, amount: Money) -> bool:
        wallet = await self.find_wallet(member_id)
        if wallet is None:
            return not amount.is_positive()
        return wallet.has_sufficient_balance(amount)

    async def list_transactions(
        self,
        member_id: UUID,
        *,
        limit: int | None = None,
    ) -> list[WalletTransaction]:
        """Transactions in posting order."""
        query = (
            self.repo.select(WalletTransaction)
            .where(WalletTransaction.member_id == member_id)
            .order_by(WalletTransaction.sequence_number)
        )
        if limit is not None:
            query = query.limit(limit)
        return await self.repo.all(query)

    async def verify_ledger(self, member_id: UUID) -> LedgerVerification:
        """Replay the log from zero and compare it with the stored balance."""
        wallet = await self.get_wallet(member_id)
        transactions = await self.list_transactions(member_id)

        broken: list[int] = []
        running = Money.zero(wallet.currency)
        for transaction in transactions:
            running = running.add(transaction.signed_amount)
            if running.amount != transaction.balance_after:
                broken.append(transaction.sequence_number)

        verification = LedgerVerification(
            wallet_id=wallet.id,
            stored_balance=wallet.balance,
            replayed_balance=replay_balance(transactions, wallet.currency),
            transaction_count=len(transactions),
            broken_sequence_numbers=broken,
        )
        if not verification.is_consistent:
            self.logger.error(
                "wallet_ledger_inconsistent",
                wallet_id=str(wallet.id),
                stored_balance=str(verification.stored_balance.amount),
                replayed_balance=str(verification.replayed_balance.amount),
                broken_sequence_numbers=broken,
            )
        return verification
