"""Tests for member wallets and the transaction log."""

from uuid import UUID, uuid4

import pytest

from memberflow.core.exceptions import CurrencyMismatchError, ValidationError, WalletNotFoundError
from memberflow.core.money import Money
from memberflow.membership.notifications import NotificationEvent
from memberflow.models.wallet import MemberWallet, WalletTransactionType, replay_balance
from memberflow.wallet.service import WalletService


def open_wallet() -> MemberWallet:
    return MemberWallet.open(tenant_id=uuid4(), member_id=uuid4(), currency="sar")


class TestMemberWallet:
    """Tests for wallet mutations."""

    def test_open_with_zero_balance(self) -> None:
        wallet = open_wallet()
        assert wallet.currency == "SAR"
        assert wallet.balance.is_zero()
        assert wallet.transaction_count == 0

    def test_each_mutation_appends_a_numbered_transaction(self) -> None:
        wallet = open_wallet()
        first = wallet.credit(Money.of("100"))
        second = wallet.debit(Money.of("30.5"))
        third = wallet.refund(Money.of("10"))

        assert [t.sequence_number for t in (first, second, third)] == [1, 2, 3]
        assert second.amount == Money.of("-30.50").amount
        assert third.balance_after == Money.of("79.50").amount
        assert wallet.balance == Money.of("79.50")
        assert replay_balance([third, first, second], "SAR") == wallet.balance

    def test_debit_may_go_negative(self) -> None:
        wallet = open_wallet()
        wallet.debit(Money.of("25"))
        assert wallet.balance == Money.of("-25.00")
        assert not wallet.has_sufficient_balance(Money.of("1"))

    def test_subscription_charge_references_subscription(self) -> None:
        wallet = open_wallet()
        subscription_id = uuid4()
        transaction = wallet.charge_subscription(Money.of("460"), subscription_id)
        assert transaction.transaction_type == WalletTransactionType.SUBSCRIPTION_CHARGE
        assert transaction.reference_type == "subscription"
        assert transaction.reference_id == subscription_id
        assert transaction.description == "Subscription charge"

    def test_amounts_must_be_positive(self) -> None:
        wallet = open_wallet()
        for operation in (wallet.credit, wallet.debit, wallet.refund):
            with pytest.raises(ValidationError):
                operation(Money.zero())
        with pytest.raises(ValidationError):
            wallet.credit(Money.of("-5"))
        with pytest.raises(ValidationError):
            wallet.credit(Money.of("0.004"))
        with pytest.raises(ValidationError):
            wallet.debit(Money.of("0.001"))
        assert wallet.transaction_count == 0

    def test_adjustment_is_signed(self) -> None:
        wallet = open_wallet()
        wallet.adjust(Money.of("-12.34"))
        assert wallet.balance == Money.of("-12.34")
        with pytest.raises(ValidationError):
            wallet.adjust(Money.zero())
        with pytest.raises(ValidationError):
            wallet.adjust(Money.of("-0.004"))
        assert wallet.transaction_count == 1

    def test_currency_must_match(self) -> None:
        wallet = open_wallet()
        with pytest.raises(CurrencyMismatchError):
            wallet.credit(Money.of("10", "USD"))

    def test_amounts_are_rounded(self) -> None:
        wallet = open_wallet()
        transaction = wallet.credit(Money.of("10.005"))
        assert transaction.amount == Money.of("10.01").amount


class TestWalletService:
    """Tests for WalletService."""

    @pytest.mark.asyncio
    async def test_wallet_created_on_first_posting(
        self, wallet_service: WalletService, member_id: UUID
    ) -> None:
        assert await wallet_service.find_wallet(member_id) is None
        with pytest.raises(WalletNotFoundError):
            await wallet_service.get_wallet(member_id)

        await wallet_service.credit(member_id, Money.of("200"), "Top up")
        wallet = await wallet_service.get_wallet(member_id)
        assert wallet.balance == Money.of("200.00")

    @pytest.mark.asyncio
    async def test_get_or_create_is_idempotent(self, wallet_service: WalletService, member_id: UUID) -> None:
        first = await wallet_service.get_or_create_wallet(member_id)
        second = await wallet_service.get_or_create_wallet(member_id)
        assert first.id == second.id

    @pytest.mark.asyncio
    async def test_wallet_opened_concurrently_is_reused(
        self,
        wallet_service: WalletService,
        member_id: UUID,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        opened = await wallet_service.get_or_create_wallet(member_id)
        lookup = wallet_service.find_wallet
        lookups: list[UUID] = []

        async def miss_first_lookup(member_id: UUID, *, for_update: bool = False) -> MemberWallet | None:
            lookups.append(member_id)
            if len(lookups) == 1:
                return None
            return await lookup(member_id, for_update=for_update)

        monkeypatch.setattr(wallet_service, "find_wallet", miss_first_lookup)
        wallet = await wallet_service.get_or_create_wallet(member_id)

        assert wallet.id == opened.id
        assert len(lookups) == 2
        await wallet_service.credit(member_id, Money.of("25"), "Top up")
        assert wallet.balance == Money.of("25.00")

    @pytest.mark.asyncio
    async def test_balance_and_sufficiency(self, wallet_service: WalletService, member_id: UUID) -> None:
        assert (await wallet_service.get_balance(member_id)).is_zero()
        assert await wallet_service.has_sufficient_balance(member_id, Money.zero())
        assert not await wallet_service.has_sufficient_balance(member_id, Money.of("1"))

        await wallet_service.credit(member_id, Money.of("50"))
        assert await wallet_service.has_sufficient_balance(member_id, Money.of("50"))
        assert not await wallet_service.has_sufficient_balance(member_id, Money.of("50.01"))

    @pytest.mark.asyncio
    async def test_list_transactions_in_posting_order(
        self, wallet_service: WalletService, member_id: UUID
    ) -> None:
        await wallet_service.credit(member_id, Money.of("100"))
        await wallet_service.debit(member_id, Money.of("40"), "Locker rental")
        await wallet_service.post_adjustment(member_id, Money.of("-5"), "Correction")

        transactions = await wallet_service.list_transactions(member_id)
        assert [t.transaction_type for t in transactions] == [
            WalletTransactionType.CREDIT,
            WalletTransactionType.DEBIT,
            WalletTransactionType.ADJUSTMENT,
        ]
        assert [t.balance_after for t in transactions] == [
            Money.of("100.00").amount,
            Money.of("60.00").amount,
            Money.of("55.00").amount,
        ]
        assert len(await wallet_service.list_transactions(member_id, limit=2)) == 2

    @pytest.mark.asyncio
    async def test_verify_ledger(self, wallet_service: WalletService, member_id: UUID) -> None:
        await wallet_service.credit(member_id, Money.of("100"))
        await wallet_service.debit(member_id, Money.of("120"))

        verification = await wallet_service.verify_ledger(member_id)
        assert verification.is_consistent
        assert verification.transaction_count == 2
        assert verification.replayed_balance == Money.of("-20.00")

    @pytest.mark.asyncio
    async def test_verify_ledger_detects_tampering(
        self, wallet_service: WalletService, member_id: UUID
    ) -> None:
        await wallet_service.credit(member_id, Money.of("100"))
        wallet = await wallet_service.get_wallet(member_id)
        wallet.balance_amount = Money.of("999").amount

        verification = await wallet_service.verify_ledger(member_id)
        assert not verification.is_consistent
        assert verification.stored_balance == Money.of("999")
        assert verification.replayed_balance == Money.of("100.00")

    @pytest.mark.asyncio
    async def test_wallets_are_per_club(
        self, wallet_service: WalletService, db_session, clock, notifier, settings, member_id: UUID
    ) -> None:
        await wallet_service.credit(member_id, Money.of("100"))
        other_club = WalletService(db_session, uuid4(), clock=clock, notifier=notifier, settings=settings)
        assert (await other_club.get_balance(member_id)).is_zero()

    @pytest.mark.asyncio
    async def test_charge_subscription_notifies(
        self, wallet_service: WalletService, member_id: UUID, notifier
    ) -> None:
        subscription_id = uuid4()
        await wallet_service.charge_subscription(member_id, subscription_id, Money.of("460"))

        payload = notifier.payloads(NotificationEvent.WALLET_CHARGED)[0]
        assert payload["subscription_id"] == str(subscription_id)
        assert payload["balance_after"] == "-460.00"
