"""Celery tasks for periodic maintenance."""

import logging
from typing import Optional

from celery import Task
from sqlalchemy.exc import SQLAlchemyError

from forj_api.core import ForjCore
from forj_api.errors import ConcurrencyConflict
from forj_worker.celery_app import celery_app
from forj_worker.db import get_session_factory

logger = logging.getLogger(__name__)


class CoreTask(Task):
    """Task holding a ``ForjCore`` bound to the worker's database."""

    _core: Optional[ForjCore] = None

    @property
    def core(self) -> ForjCore:
        if self._core is None:
            self._core = ForjCore(get_session_factory())
        return self._core


@celery_app.task(
    base=CoreTask,
    bind=True,
    max_retries=3,
    autoretry_for=(SQLAlchemyError, ConcurrencyConflict),
    retry_backoff=True,
    retry_backoff_max=60,
)
def sweep_expired(self, correlation_id: Optional[str] = None) -> dict:
    """Persist EXPIRED for time-expired licenses and certificates."""
    result = self.core.sweep_expired()
    logger.info(
        "Expiry sweep finished",
        extra={"task": "sweep_expired", "correlation_id": correlation_id, **result},
    )
    return result
