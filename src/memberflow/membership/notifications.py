"""Notification trigger points.

Services announce lifecycle events through a ``NotificationPublisher``.
Payloads carry only primitives (ids, amounts as strings, ISO dates) so the
delivery channel (email, SMS, WhatsApp, push) stays outside this package.
Publishing is fire-and-forget: a failing publisher is logged and never
affects the membership operation that triggered it.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

import structlog

from memberflow.core.money import Money

logger = structlog.get_logger(__name__)


class NotificationEvent(str, enum.Enum):
    """Lifecycle events members or staff may be notified about."""
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_FROZEN = "subscription_frozen"
    SUBSCRIPTION_UNFROZEN = "subscription_unfrozen"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    PAYMENT_RECEIVED = "payment_received"
    CONTRACT_SIGNED = "contract_signed"
    CONTRACT_VOIDED = "contract_voided"
    CANCELLATION_REQUESTED = "cancellation_requested"
    CANCELLATION_COMPLETED = "cancellation_completed"
    CANCELLATION_WITHDRAWN = "cancellation_withdrawn"
    RETENTION_OFFER_PRESENTED = "retention_offer_presented"
    RETENTION_OFFER_ACCEPTED = "retention_offer_accepted"
    PLAN_CHANGED = "plan_changed"
    PLAN_CHANGE_SCHEDULED = "plan_change_scheduled"
    WALLET_CHARGED = "wallet_charged"


PayloadValue = str | int | Decimal | Money | UUID | date | datetime | bool | None


class NotificationPublisher(ABC):
    """Outbound port for lifecycle notifications."""

    @abstractmethod
    async def publish(self, event: NotificationEvent, payload: dict[str, str]) -> None:
        """Deliver one event.

        Args:
            event: The lifecycle event.
            payload: Primitive string fields describing it.
        """
        ...


class LoggingNotificationPublisher(NotificationPublisher):
    """Default publisher: records the event in the structured log."""

    async def publish(self, event: NotificationEvent, payload: dict[str, str]) -> None:
        logger.info("notification_published", notification_event=event.value, **payload)


def to_payload(fields: dict[str, PayloadValue]) -> dict[str, str]:
    """Flatten values to strings; ``None`` fields are dropped."""
    payload: dict[str, str] = {}
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, Money):
            payload[key] = value.to_string()
            payload.setdefault(f"{key}_currency", value.currency)
        elif isinstance(value, (date, datetime)):
            payload[key] = value.isoformat()
        elif isinstance(value, bool):
            payload[key] = "true" if value else "false"
        else:
            payload[key] = str(value)
    return payload


async def notify(
    publisher: NotificationPublisher,
    event: NotificationEvent,
    **fields: PayloadValue,
) -> None:
    """Publish without letting delivery failures escape."""
    payload = to_payload(fields)
    try:
        await publisher.publish(event, payload)
    except Exception as e:
        logger.error(
            "notification_failed",
            notification_event=event.value,
            error=str(e),
        )
