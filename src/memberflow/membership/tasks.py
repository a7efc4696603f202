"""Celery tasks for the periodic membership sweeps."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from celery import shared_task
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from memberflow.core.clock import Clock
from memberflow.core.config import Settings
from memberflow.core.database import get_session_context
from memberflow.core.logging import (
    bind_contextvars,
    clear_correlation_id,
    get_logger,
    set_correlation_id,
    unbind_contextvars,
)
from memberflow.membership.cancellation_service import CancellationService
from memberflow.membership.contract_service import ContractService
from memberflow.membership.notifications import NotificationPublisher
from memberflow.membership.plan_change_service import PlanChangeService
from memberflow.membership.subscription_service import SubscriptionService
from memberflow.models.subscription import Subscription

logger = get_logger(__name__)


async def run_membership_sweeps(
    session: AsyncSession,
    tenant_id: UUID,
    *,
    clock: Clock | None = None,
    notifier: NotificationPublisher | None = None,
    settings: Settings | None = None,
) -> dict[str, int]:
    """Run every periodic sweep for one club, in dependency order.

    Each sweep only acts on rows that are due as of the clock's today, so
    running this twice for the same day changes nothing the second time.

    Returns:
        Number of rows each sweep changed
    """
    kwargs = {"clock": clock, "notifier": notifier, "settings": settings}
    bind_contextvars(tenant_id=str(tenant_id))
    try:
        results = {
            "plan_changes_applied": await PlanChangeService(
                session, tenant_id, **kwargs
            ).process_scheduled_changes(),
            "cancellations_completed": await CancellationService(
                session, tenant_id, **kwargs
            ).process_completed_cancellations(),
            "contracts_cancelled": await ContractService(
                session, tenant_id, **kwargs
            ).complete_due_cancellations(),
            "offers_expired": await CancellationService(
                session, tenant_id, **kwargs
            ).expire_retention_offers(),
            "subscriptions_expired": await SubscriptionService(
                session, tenant_id, **kwargs
            ).expire_subscriptions(),
        }
    finally:
        unbind_contextvars("tenant_id")

    logger.info("membership_sweeps_completed", tenant_id=str(tenant_id), **results)
    return results


async def list_tenant_ids(session: AsyncSession) -> list[UUID]:
    """Clubs that have at least one subscription."""
    result = await session.execute(select(Subscription.tenant_id).distinct())
    return list(result.scalars().all())


def _run(coro: Coroutine[Any, Any, dict]) -> dict:
    return asyncio.run(coro)


@shared_task(name="membership.run_sweeps_for_tenant")
def run_sweeps_for_tenant(tenant_id: str) -> dict:
    """Run the membership sweeps for one club in its own unit of work.

    Args:
        tenant_id: Club id as a string

    Returns:
        Dictionary with task results
    """
    set_correlation_id()
    logger.info("task_started", task="run_sweeps_for_tenant", tenant_id=tenant_id)

    async def _sweep() -> dict:
        async with get_session_context() as session:
            counts = await run_membership_sweeps(session, UUID(tenant_id))
        return {
            "success": True,
            "tenant_id": tenant_id,
            **counts,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    try:
        result = _run(_sweep())
        logger.info("task_completed", task="run_sweeps_for_tenant", result=result)
        return result
    except Exception as e:
        logger.error("task_failed", task="run_sweeps_for_tenant", tenant_id=tenant_id, error=str(e))
        return {
            "success": False,
            "tenant_id": tenant_id,
            "error": str(e),
            "timestamp": datetime.now(UTC).isoformat(),
        }
    finally:
        clear_correlation_id()


@shared_task(name="membership.dispatch_sweeps")
def dispatch_sweeps() -> dict:
    """Fan out one sweep task per club.

    Returns:
        Dictionary with task results
    """
    logger.info("task_started", task="dispatch_sweeps")

    async def _tenants() -> dict:
        async with get_session_context() as session:
            tenant_ids = await list_tenant_ids(session)
        return {"tenant_ids": [str(tenant_id) for tenant_id in tenant_ids]}

    try:
        tenant_ids = _run(_tenants())["tenant_ids"]
    except Exception as e:
        logger.error("task_failed", task="dispatch_sweeps", error=str(e))
        return {
            "success": False,
            "error": str(e),
            "timestamp": datetime.now(UTC).isoformat(),
        }

    for tenant_id in tenant_ids:
        run_sweeps_for_tenant.apply_async(args=[tenant_id], queue="membership")

    logger.info("task_completed", task="dispatch_sweeps", tenants=len(tenant_ids))
    return {
        "success": True,
        "tenants_dispatched": len(tenant_ids),
        "timestamp": datetime.now(UTC).isoformat(),
    }
