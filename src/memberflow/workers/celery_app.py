"""Celery application configuration."""

from celery import Celery

from memberflow.core.config import get_settings
from memberflow.core.logging import configure_logging

settings = get_settings()

# Configure structured logging
configure_logging(
    json_logs=settings.json_logs or settings.is_production,
    log_level="DEBUG" if settings.debug else settings.log_level,
)

celery_app = Celery(
    "memberflow",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "memberflow.membership.tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.timezone,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,
    task_soft_time_limit=270,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.conf.beat_schedule = {
    "dispatch-membership-sweeps": {
        "task": "membership.dispatch_sweeps",
        "schedule": 3600.0,
        "options": {"queue": "membership"},
    },
}
