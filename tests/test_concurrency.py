import os
import sys
from decimal import Decimal

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import pytest
from sqlalchemy.orm import sessionmaker

from appealdesk.db import init_db, make_engine
from appealdesk.permissions import Role
from appealdesk.workflow.engine import AppealWorkflow
from appealdesk.workflow.errors import InvalidTransition
from appealdesk.workflow.models import Appeal, User
from appealdesk.workflow.states import AppealStatus


class RecordingDispatcher:
    def __init__(self):
        self.sent = []

    def notify(self, instruction):
        self.sent.append(instruction)


@pytest.fixture
def two_sessions(tmp_path):
    # file backed so both sessions see each other's commits
    engine = make_engine(f"sqlite:///{tmp_path / 'race.db'}")
    init_db(engine)
    Session = sessionmaker(bind=engine)
    a, b = Session(), Session()
    yield a, b
    a.close()
    b.close()
    engine.dispose()


def seed(sess):
    creator = User(name='ITC', email='itc@example.org', role=Role.ITC_ADMIN)
    first = User(name='First', email='first@example.org', role=Role.MISSION_AUTHORITY)
    second = User(name='Second', email='second@example.org', role=Role.SUPER_ADMIN)
    sess.add_all([creator, first, second])
    sess.commit()
    wf = AppealWorkflow(sess)
    appeal = wf.create('Well drilling', 'Borewell for the village school', 300000,
                       'Water', '2 months', creator.id).appeal
    wf.submit(appeal.id, creator.id)
    return appeal.id, first.id, second.id


def test_stale_reject_loses_to_committed_approve(two_sessions):
    a, b = two_sessions
    appeal_id, first, second = seed(a)
    # session a now holds a SUBMITTED snapshot
    assert a.get(Appeal, appeal_id).status == AppealStatus.SUBMITTED

    wf_a = AppealWorkflow(a, dispatcher=RecordingDispatcher())
    wf_b = AppealWorkflow(b, dispatcher=RecordingDispatcher())
    won = wf_b.approve(appeal_id, 250000, first)
    assert won.appeal.status == AppealStatus.APPROVED

    with pytest.raises(InvalidTransition) as exc:
        wf_a.reject(appeal_id, 'Budget exhausted', second)
    assert exc.value.current == AppealStatus.APPROVED
    assert wf_a.dispatcher.sent == []
    assert len(wf_b.dispatcher.sent) == 1

    a.expire_all()
    final = a.get(Appeal, appeal_id)
    assert final.status == AppealStatus.APPROVED
    assert final.approved_amount == Decimal('250000')
    assert final.rejection_reason is None


def test_second_approval_does_not_overwrite_amount(two_sessions):
    a, b = two_sessions
    appeal_id, first, second = seed(a)
    assert a.get(Appeal, appeal_id).status == AppealStatus.SUBMITTED

    AppealWorkflow(b).approve(appeal_id, 100000, first)
    with pytest.raises(InvalidTransition):
        AppealWorkflow(a).approve(appeal_id, 999999, second)

    b.expire_all()
    assert b.get(Appeal, appeal_id).approved_amount == Decimal('100000')
