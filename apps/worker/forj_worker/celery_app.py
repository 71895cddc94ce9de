"""Celery application configuration."""

from celery import Celery

from forj_worker.settings import get_settings

settings = get_settings()

celery_app = Celery(
    "forj_worker",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=5 * 60,
    task_soft_time_limit=4 * 60,
    beat_schedule={
        "sweep-expired": {
            "task": "forj_worker.tasks.sweep_expired",
            "schedule": float(settings.sweep_interval_seconds),
        },
    },
)

# Registers the tasks; must follow celery_app creation
from forj_worker import tasks  # noqa: F401, E402
