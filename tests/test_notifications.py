"""Tests for notification payloads and publishing."""

from datetime import UTC, date, datetime
from uuid import uuid4

import pytest
from structlog.testing import capture_logs

from memberflow.core.money import Money
from memberflow.membership.notifications import (
    LoggingNotificationPublisher,
    NotificationEvent,
    NotificationPublisher,
    notify,
    to_payload,
)


class FailingPublisher(NotificationPublisher):
    async def publish(self, event: NotificationEvent, payload: dict[str, str]) -> None:
        raise ConnectionError("sms gateway down")


class TestToPayload:
    """Tests for payload flattening."""

    def test_values_become_strings(self) -> None:
        subscription_id = uuid4()
        payload = to_payload(
            {
                "subscription_id": subscription_id,
                "amount": Money.of("155.8"),
                "effective_date": date(2024, 2, 1),
                "requested_at": datetime(2024, 1, 21, 9, 0, tzinfo=UTC),
                "immediate": False,
                "freeze_days": 30,
                "note": None,
            }
        )
        assert payload == {
            "subscription_id": str(subscription_id),
            "amount": "155.80",
            "amount_currency": "SAR",
            "effective_date": "2024-02-01",
            "requested_at": "2024-01-21T09:00:00+00:00",
            "immediate": "false",
            "freeze_days": "30",
        }

    def test_explicit_currency_field_wins(self) -> None:
        payload = to_payload({"amount_currency": "USD", "amount": Money.of("1")})
        assert payload["amount_currency"] == "USD"


class TestNotify:
    """Tests for fire-and-forget publishing."""

    @pytest.mark.asyncio
    async def test_publishes_flattened_payload(self, notifier) -> None:
        await notify(notifier, NotificationEvent.CONTRACT_SIGNED, contract_number="MF-2024-000001")
        assert notifier.events() == [NotificationEvent.CONTRACT_SIGNED]
        assert notifier.payloads(NotificationEvent.CONTRACT_SIGNED) == [{"contract_number": "MF-2024-000001"}]

    @pytest.mark.asyncio
    async def test_publisher_failure_is_logged(self) -> None:
        with capture_logs() as logs:
            await notify(FailingPublisher(), NotificationEvent.PAYMENT_RECEIVED, amount=Money.of("10"))

        assert logs == [
            {
                "event": "notification_failed",
                "notification_event": "payment_received",
                "error": "sms gateway down",
                "log_level": "error",
            }
        ]

    @pytest.mark.asyncio
    async def test_logging_publisher(self) -> None:
        with capture_logs() as logs:
            await LoggingNotificationPublisher().publish(
                NotificationEvent.SUBSCRIPTION_FROZEN, {"freeze_days": "14"}
            )

        assert logs[0]["event"] == "notification_published"
        assert logs[0]["notification_event"] == "subscription_frozen"
        assert logs[0]["freeze_days"] == "14"
