"""Shared wiring for tenant-scoped services."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from memberflow.core.clock import Clock, SystemClock
from memberflow.core.config import Settings, get_settings
from memberflow.core.logging import LoggerMixin
from memberflow.core.repository import TenantScopedRepository
from memberflow.membership.notifications import LoggingNotificationPublisher, NotificationPublisher


class TenantService(LoggerMixin):
    """Base for services operating on one club's data.

    Services flush but never commit; the caller owns the transaction.
    """

    def __init__(
        self,
        db: AsyncSession,
        tenant_id: UUID,
        *,
        clock: Clock | None = None,
        notifier: NotificationPublisher | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize service.

        Args:
            db: Database session
            tenant_id: Club whose data this service reads and writes
            clock: Time source, defaults to the system clock in the club timezone
            notifier: Notification publisher, defaults to logging only
            settings: Application settings
        """
        self.db = db
        self.tenant_id = tenant_id
        self.repo = TenantScopedRepository(db, tenant_id)
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock(self.settings.timezone)
        self.notifier = notifier or LoggingNotificationPublisher()

    def _collaborator_kwargs(self) -> dict:
        return {"clock": self.clock, "notifier": self.notifier, "settings": self.settings}
