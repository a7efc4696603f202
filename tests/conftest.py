"""Test configuration and fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import UTC, date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from memberflow.core.clock import FixedClock
from memberflow.core.config import Settings
from memberflow.membership.cancellation_service import CancellationService
from memberflow.membership.contract_service import ContractService
from memberflow.membership.notifications import NotificationEvent, NotificationPublisher
from memberflow.membership.plan_change_service import PlanChangeService
from memberflow.membership.plan_service import MembershipPlanService
from memberflow.membership.schemas import ContractCreate, PlanCreate, SubscriptionCreate
from memberflow.membership.subscription_service import SubscriptionService
from memberflow.models.base import Base
from memberflow.models.contract import MembershipContract
from memberflow.models.plan import MembershipPlan
from memberflow.models.subscription import Subscription
from memberflow.wallet.service import WalletService

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class RecordingPublisher(NotificationPublisher):
    """Keeps every published notification in memory."""

    def __init__(self) -> None:
        self.published: list[tuple[NotificationEvent, dict[str, str]]] = []

    async def publish(self, event: NotificationEvent, payload: dict[str, str]) -> None:
        self.published.append((event, payload))

    def events(self) -> list[NotificationEvent]:
        return [event for event, _ in self.published]

    def payloads(self, event: NotificationEvent) -> list[dict[str, str]]:
        return [payload for published, payload in self.published if published == event]


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url=TEST_DATABASE_URL,
        timezone="Asia/Riyadh",
        default_currency="SAR",
        default_cooling_off_days=7,
        default_notice_period_days=30,
        contract_number_prefix="MF",
        retention_offer_expiry_hours=72,
        free_freeze_offer_days=30,
        loyalty_discount_percentage=Decimal("25"),
        loyalty_discount_months=3,
        loyalty_min_tenure_days=90,
        reactivation_window_days=90,
        sweep_batch_size=100,
    )


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at 2024-01-01 09:00 UTC."""
    return FixedClock(datetime(2024, 1, 1, 9, 0, tzinfo=UTC))


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def member_id() -> UUID:
    return uuid4()


@pytest.fixture
def notifier() -> RecordingPublisher:
    return RecordingPublisher()


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session on a fresh in-memory schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest inside the session transaction
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


def _service_kwargs(
    clock: FixedClock, notifier: RecordingPublisher, settings: Settings
) -> dict:
    return {"clock": clock, "notifier": notifier, "settings": settings}


@pytest.fixture
def plan_service(
    db_session: AsyncSession,
    tenant_id: UUID,
    clock: FixedClock,
    notifier: RecordingPublisher,
    settings: Settings,
) -> MembershipPlanService:
    return MembershipPlanService(db_session, tenant_id, **_service_kwargs(clock, notifier, settings))


@pytest.fixture
def subscription_service(
    db_session: AsyncSession,
    tenant_id: UUID,
    clock: FixedClock,
    notifier: RecordingPublisher,
    settings: Settings,
) -> SubscriptionService:
    return SubscriptionService(db_session, tenant_id, **_service_kwargs(clock, notifier, settings))


@pytest.fixture
def contract_service(
    db_session: AsyncSession,
    tenant_id: UUID,
    clock: FixedClock,
    notifier: RecordingPublisher,
    settings: Settings,
) -> ContractService:
    return ContractService(db_session, tenant_id, **_service_kwargs(clock, notifier, settings))


@pytest.fixture
def cancellation_service(
    db_session: AsyncSession,
    tenant_id: UUID,
    clock: FixedClock,
    notifier: RecordingPublisher,
    settings: Settings,
) -> CancellationService:
    return CancellationService(db_session, tenant_id, **_service_kwargs(clock, notifier, settings))


@pytest.fixture
def plan_change_service(
    db_session: AsyncSession,
    tenant_id: UUID,
    clock: FixedClock,
    notifier: RecordingPublisher,
    settings: Settings,
) -> PlanChangeService:
    return PlanChangeService(db_session, tenant_id, **_service_kwargs(clock, notifier, settings))


@pytest.fixture
def wallet_service(
    db_session: AsyncSession,
    tenant_id: UUID,
    clock: FixedClock,
    notifier: RecordingPublisher,
    settings: Settings,
) -> WalletService:
    return WalletService(db_session, tenant_id, **_service_kwargs(clock, notifier, settings))


# Plans: 15% VAT, so the recurring totals are 230, 460 and 690 SAR.


@pytest_asyncio.fixture
async def budget_plan(plan_service: MembershipPlanService) -> MembershipPlan:
    return await plan_service.create_plan(
        PlanCreate(
            name_en="Budget",
            name_ar="اقتصادي",
            membership_fee=Decimal("200"),
            membership_tax_rate=Decimal("0.15"),
            freeze_days_allowed=10,
        )
    )


@pytest_asyncio.fixture
async def standard_plan(plan_service: MembershipPlanService) -> MembershipPlan:
    return await plan_service.create_plan(
        PlanCreate(
            name_en="Standard",
            name_ar="قياسي",
            membership_fee=Decimal("400"),
            membership_tax_rate=Decimal("0.15"),
            join_fee=Decimal("100"),
            join_tax_rate=Decimal("0.15"),
            max_classes_per_period=8,
            guest_passes_count=2,
            freeze_days_allowed=20,
        )
    )


@pytest_asyncio.fixture
async def premium_plan(plan_service: MembershipPlanService) -> MembershipPlan:
    return await plan_service.create_plan(
        PlanCreate(
            name_en="Premium",
            name_ar="مميز",
            membership_fee=Decimal("600"),
            membership_tax_rate=Decimal("0.15"),
            guest_passes_count=5,
            freeze_days_allowed=30,
            has_pool_access=True,
        )
    )


@pytest_asyncio.fixture
async def active_subscription(
    subscription_service: SubscriptionService,
    standard_plan: MembershipPlan,
    member_id: UUID,
) -> Subscription:
    """Paid Standard subscription starting 2024-01-01 and ending 2024-01-31."""
    return await subscription_service.create_subscription(
        SubscriptionCreate(
            member_id=member_id,
            plan_id=standard_plan.id,
            start_date=date(2024, 1, 1),
            paid_amount=Decimal("460.00"),
        )
    )


@pytest_asyncio.fixture
async def signed_contract(
    contract_service: ContractService,
    active_subscription: Subscription,
    standard_plan: MembershipPlan,
    member_id: UUID,
) -> MembershipContract:
    """Signed 12-month contract linked to ``active_subscription``."""
    contract = await contract_service.create_contract(
        ContractCreate(
            member_id=member_id,
            plan_id=standard_plan.id,
            subscription_id=active_subscription.id,
            start_date=date(2024, 1, 1),
        )
    )
    return await contract_service.sign_contract(contract.id, "signature-data")
