import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import schedule
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from appealdesk import worker
from appealdesk.db import init_db
from appealdesk.workflow.models import NotificationOutbox


def setup_factory():
    # one shared connection so every session sees the same in-memory db
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    init_db(engine)
    return sessionmaker(bind=engine)


def test_health_reports_pending_notifications():
    factory = setup_factory()
    sess = factory()
    sess.add(NotificationOutbox(appeal_id=1, trigger_type='APPROVED', payload={}, status='pending'))
    sess.commit()
    sess.close()
    info = worker.health(factory)
    assert info['ok'] is True
    assert info['pending_notifications'] == 1


def test_retry_job_updates_heartbeat_and_survives_errors(monkeypatch):
    factory = setup_factory()

    def explode(sess, dispatcher, max_attempts=None):
        raise RuntimeError("db gone")

    monkeypatch.setattr(worker.outbox, 'retry_pending', explode)
    worker.LAST_TICK = None
    worker.job_retry_notifications(factory)
    assert worker.LAST_TICK is not None
    assert worker.health(factory)['last_tick'] == worker.LAST_TICK.isoformat()


def test_schedule_jobs_registers_retry():
    factory = setup_factory()
    worker.schedule_jobs(factory)
    try:
        assert len(schedule.get_jobs()) == 1
    finally:
        schedule.clear()
