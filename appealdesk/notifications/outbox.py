"""Persisted queue of donor notifications that failed to send.

The workflow engine never retries; callers that want at-least-once
delivery park the instruction here and the worker retries it.
"""
import logging
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from appealdesk import settings
from appealdesk.db import now_utc
from appealdesk.workflow.engine import NotifyDonors, TransitionResult
from appealdesk.workflow.errors import NotificationDeliveryFailed
from appealdesk.workflow.models import NotificationOutbox

log = logging.getLogger(__name__)


def enqueue(session: Session, instruction: NotifyDonors, error: Optional[str] = None) -> NotificationOutbox:
    data = instruction.to_dict()
    row = NotificationOutbox(
        appeal_id=instruction.appeal_id,
        trigger_type=instruction.trigger_type,
        payload=data,
        attempts=1,
        last_error=error,
        status='pending',
    )
    session.add(row)
    session.commit()
    log.info("queued %s notification for appeal %s", instruction.trigger_type.value, instruction.appeal_id)
    return row


def enqueue_failed(session: Session, result: TransitionResult) -> Optional[NotificationOutbox]:
    """Queue the instruction of ``result`` if its delivery failed."""
    if not result.warnings or result.instruction is None:
        return None
    return enqueue(session, result.instruction, str(result.warnings[0]))


def retry_pending(session: Session, dispatcher, max_attempts: Optional[int] = None) -> Tuple[int, int]:
    """Re-dispatch pending rows. Returns ``(delivered, still_failing)``."""
    max_attempts = max_attempts or settings.OUTBOX_MAX_ATTEMPTS
    rows = (
        session.query(NotificationOutbox)
        .filter(NotificationOutbox.status == 'pending')
        .order_by(NotificationOutbox.id)
        .all()
    )
    delivered = failing = 0
    for row in rows:
        instruction = NotifyDonors.from_dict(row.payload)
        row.attempts = (row.attempts or 0) + 1
        row.updated_at = now_utc()
        try:
            dispatcher.notify(instruction, skip_delivered=True)
        except NotificationDeliveryFailed as e:
            row.last_error = str(e)
            if row.attempts >= max_attempts:
                row.status = 'abandoned'
                log.error("giving up on notification %s for appeal %s after %s attempts",
                          row.id, row.appeal_id, row.attempts)
            failing += 1
        else:
            row.status = 'delivered'
            delivered += 1
        session.commit()
    return delivered, failing
