"""Tests for the periodic expiry sweep task."""

from datetime import timedelta

import pytest

from forj_worker.celery_app import celery_app
from forj_worker.tasks import sweep_expired


@pytest.fixture
def task(core):
    sweep_expired._core = core
    try:
        yield sweep_expired
    finally:
        sweep_expired._core = None


def test_sweep_is_scheduled():
    entry = celery_app.conf.beat_schedule["sweep-expired"]
    assert entry["task"] == "forj_worker.tasks.sweep_expired"


def test_sweep_task_persists_expiry(task, license_factory, core, admin, clock):
    license = license_factory(valid_until=clock() + timedelta(hours=1))
    clock.advance(hours=2)

    result = task.apply(kwargs={"correlation_id": "test-run"}).get()

    assert result == {"licenses": 1, "certificates": 0}
    assert core.get_license(license.id, admin).status == "EXPIRED"


def test_sweep_task_is_idempotent(task, license_factory):
    license_factory()
    assert task.apply().get() == {"licenses": 0, "certificates": 0}
