"""
Background job wiring and task bodies
"""
from datetime import timedelta

import pytest

from models import db, Device, utcnow
from utils import scheduler as scheduler_module
from utils.scheduler import (command_expiry_task, emergency_expiry_task, init_scheduler,
                             offline_sweep_task, shutdown_scheduler)


@pytest.fixture
def stop_scheduler():
    yield
    shutdown_scheduler()


def test_scheduler_disabled_under_test(app):
    init_scheduler(app)
    assert scheduler_module.scheduler is None


def test_scheduler_registers_jobs(app, stop_scheduler):
    app.config['SCHEDULER_ENABLED'] = True

    init_scheduler(app)

    job_ids = {job.id for job in scheduler_module.scheduler.get_jobs()}
    assert job_ids == {'offline_sweep', 'command_expiry', 'command_purge', 'campaign_status', 'emergency_expiry'}


def test_offline_sweep_task(app, make_device):
    stale = make_device(is_online=True, last_seen=utcnow() - timedelta(minutes=30))
    stale_id = stale.id
    db.session.commit()

    offline_sweep_task(app)

    db.session.expire_all()
    assert db.session.get(Device, stale_id).is_online is False


def test_task_errors_are_contained(app, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError('database unavailable')

    monkeypatch.setattr('utils.command_queue.expire_stale_commands', boom)
    monkeypatch.setattr('utils.content_service.clear_expired_emergencies', boom)

    command_expiry_task(app)
    emergency_expiry_task(app)
