import os
import sys
from decimal import Decimal

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from appealdesk.db import Base
from appealdesk.notifications import outbox
from appealdesk.permissions import Role
from appealdesk.workflow.engine import AppealWorkflow, NotifyDonors
from appealdesk.workflow.errors import NotificationDeliveryFailed
from appealdesk.workflow.models import NotificationOutbox, User
from appealdesk.workflow.states import AppealStatus


def setup_session():
    engine = create_engine('sqlite:///:memory:')
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)()


class ScriptedDispatcher:
    """Fails the first ``failures`` calls, then succeeds."""

    def __init__(self, failures=0):
        self.failures = failures
        self.calls = []

    def notify(self, instruction, skip_delivered=False):
        self.calls.append((instruction, skip_delivered))
        if len(self.calls) <= self.failures:
            raise NotificationDeliveryFailed(instruction, ['smtp down'])


def approved_with_failed_notice(sess):
    itc = User(name='ITC', email='itc@example.org', role=Role.ITC_ADMIN)
    mission = User(name='Mission', email='mission@example.org', role=Role.MISSION_AUTHORITY)
    sess.add_all([itc, mission])
    sess.commit()
    wf = AppealWorkflow(sess, dispatcher=ScriptedDispatcher(failures=1))
    appeal = wf.create('Clinic', 'Rural clinic upgrade', 800000, 'Health', '1 year', itc.id).appeal
    wf.submit(appeal.id, itc.id)
    return wf.approve(appeal.id, '750000.50', mission.id)


def test_instruction_survives_serialisation():
    instruction = NotifyDonors(7, AppealStatus.APPROVED, Decimal('750000.50'))
    assert NotifyDonors.from_dict(instruction.to_dict()) == instruction
    rejected = NotifyDonors(7, AppealStatus.REJECTED, 'Incomplete budget')
    assert NotifyDonors.from_dict(rejected.to_dict()) == rejected


def test_failed_notice_is_queued():
    sess = setup_session()
    result = approved_with_failed_notice(sess)
    row = outbox.enqueue_failed(sess, result)
    assert row.status == 'pending'
    assert row.attempts == 1
    assert row.trigger_type == AppealStatus.APPROVED
    assert 'smtp down' in row.last_error


def test_successful_result_is_not_queued():
    sess = setup_session()
    result = approved_with_failed_notice(sess)
    result.warnings.clear()
    assert outbox.enqueue_failed(sess, result) is None
    assert sess.query(NotificationOutbox).count() == 0


def test_retry_delivers_and_marks_row():
    sess = setup_session()
    result = approved_with_failed_notice(sess)
    outbox.enqueue_failed(sess, result)
    dispatcher = ScriptedDispatcher()
    assert outbox.retry_pending(sess, dispatcher) == (1, 0)
    instruction, skip = dispatcher.calls[0]
    assert instruction == result.instruction
    assert skip is True
    row = sess.query(NotificationOutbox).one()
    assert row.status == 'delivered'
    assert row.attempts == 2
    # nothing left to do
    assert outbox.retry_pending(sess, dispatcher) == (0, 0)


def test_retry_gives_up_after_max_attempts():
    sess = setup_session()
    result = approved_with_failed_notice(sess)
    outbox.enqueue_failed(sess, result)
    dispatcher = ScriptedDispatcher(failures=10)
    assert outbox.retry_pending(sess, dispatcher, max_attempts=3) == (0, 1)
    assert sess.query(NotificationOutbox).one().status == 'pending'
    assert outbox.retry_pending(sess, dispatcher, max_attempts=3) == (0, 1)
    row = sess.query(NotificationOutbox).one()
    assert row.status == 'abandoned'
    assert row.attempts == 3
    assert outbox.retry_pending(sess, dispatcher, max_attempts=3) == (0, 0)
