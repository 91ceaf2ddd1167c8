# -*- coding: utf-8 -*-
"""
appealdesk worker (scheduler)
- Retries donor notifications parked in the outbox
- Keeps a heartbeat for health checks
Env: see appealdesk.settings (DATABASE_URL, OUTBOX_RETRY_MINUTES, OUTBOX_MAX_ATTEMPTS, LOG_LEVEL)
"""

import logging
import time
from datetime import datetime
from typing import Dict, Optional

import schedule

from appealdesk import settings
from appealdesk.db import init_db, make_engine, make_session_factory
from appealdesk.notifications import outbox
from appealdesk.notifications.dispatcher import Dispatcher
from appealdesk.workflow.models import NotificationOutbox

log = logging.getLogger("appealdesk.worker")

LAST_TICK: Optional[datetime] = None


def job_retry_notifications(session_factory) -> None:
    global LAST_TICK
    LAST_TICK = datetime.utcnow()
    sess = session_factory()
    try:
        delivered, failing = outbox.retry_pending(sess, Dispatcher(sess))
        if delivered or failing:
            log.info("outbox retry: delivered=%s failing=%s", delivered, failing)
    except Exception:
        log.exception("outbox retry crashed")
        sess.rollback()
    finally:
        sess.close()


def health(session_factory) -> Dict[str, object]:
    sess = session_factory()
    try:
        pending = sess.query(NotificationOutbox).filter(NotificationOutbox.status == 'pending').count()
    finally:
        sess.close()
    return {
        "ok": True,
        "last_tick": LAST_TICK.isoformat() if LAST_TICK else None,
        "pending_notifications": pending,
        "tz": settings.TZ_NAME,
    }


def schedule_jobs(session_factory) -> None:
    schedule.clear()
    schedule.every(settings.OUTBOX_RETRY_MINUTES).minutes.do(job_retry_notifications, session_factory)


def scheduler_loop(session_factory) -> None:
    schedule_jobs(session_factory)
    while True:
        schedule.run_pending()
        time.sleep(1)


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    engine = make_engine()
    init_db(engine)
    factory = make_session_factory(engine)
    log.info("Starting appealdesk worker (retry every %s min)", settings.OUTBOX_RETRY_MINUTES)
    scheduler_loop(factory)
