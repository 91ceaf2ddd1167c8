import os
import sys
from datetime import date, datetime
from decimal import Decimal

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import pytz
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from appealdesk import reports
from appealdesk.db import Base
from appealdesk.ledger import donations_service, utilization_service
from appealdesk.permissions import Role
from appealdesk.workflow.engine import AppealWorkflow
from appealdesk.workflow.models import Communication, Donation, User


def setup_session():
    engine = create_engine('sqlite:///:memory:')
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)()


def seed(sess):
    itc = User(name='ITC', email='itc@example.org', role=Role.ITC_ADMIN)
    mission = User(name='Mission', email='mission@example.org', role=Role.MISSION_AUTHORITY)
    sess.add_all([itc, mission])
    sess.commit()
    wf = AppealWorkflow(sess)
    ids = {}
    for title, amount in (('A', 500000), ('B', 200000), ('C', 100000), ('D', 50000)):
        ids[title] = wf.create(title, 'desc', amount, 'Health', '1 month', itc.id).appeal.id
    for title in ('A', 'B', 'C'):
        wf.submit(ids[title], itc.id)
    wf.approve(ids['A'], 450000, mission.id)
    wf.reject(ids['B'], 'Duplicate', mission.id)
    return itc.id, ids


def test_status_counts_and_approval_stats():
    sess = setup_session()
    seed(sess)
    assert reports.appeal_status_counts(sess) == {'DRAFT': 1, 'SUBMITTED': 1, 'APPROVED': 1, 'REJECTED': 1}
    stats = reports.approval_stats(sess)
    assert stats['approval_rate'] == Decimal('50.0')
    assert stats['total_approved_amount'] == Decimal('450000')
    # drafts are not requests yet
    assert stats['total_requested_amount'] == Decimal('800000')


def test_dashboard_and_donation_stats():
    sess = setup_session()
    actor, ids = seed(sess)
    d1 = donations_service.record_donation(sess, ids['A'], actor, 'Asha', 30000, 'bank_transfer',
                                           transaction_ref='U1')
    d2 = donations_service.record_donation(sess, ids['A'], actor, 'Ravi', 10000, 'bank_transfer',
                                           transaction_ref='U2')
    donations_service.record_donation(sess, ids['C'], actor, 'Meera', 5000, 'bank_transfer',
                                      transaction_ref='U3')
    donations_service.confirm_donation(sess, d1.id, actor)
    donations_service.fail_donation(sess, d2.id, actor, 'Reversed')
    utilization_service.record_utilization(sess, ids['A'], actor, date(2026, 1, 5), 'Supplies', 150000)

    dash = reports.dashboard_stats(sess)
    assert dash['total_approved'] == Decimal('450000')
    assert dash['total_utilized'] == Decimal('150000')
    assert dash['remaining_balance'] == Decimal('300000')
    assert dash['pending_approvals'] == 1
    assert dash['total_received'] == Decimal('30000')

    stats = reports.donation_stats(sess)
    assert stats['confirmed'] == {'count': 1, 'amount': Decimal('30000')}
    assert stats['pending']['count'] == 1
    assert stats['failed']['amount'] == Decimal('10000')
    assert stats['average_confirmed'] == Decimal('30000.00')
    assert reports.donation_stats(sess, appeal_id=ids['C'])['confirmed']['count'] == 0

    util = reports.utilization_stats(sess)
    assert util['pending']['count'] == 1
    assert util['total'] == Decimal('150000')


def test_donation_trend_buckets_by_local_month():
    sess = setup_session()
    actor, ids = seed(sess)
    d = donations_service.record_donation(sess, ids['A'], actor, 'Asha', 1000, 'bank_transfer',
                                          transaction_ref='U1')
    donations_service.confirm_donation(sess, d.id, actor)
    # 31 Jan 20:00 UTC is already February in Kolkata
    sess.query(Donation).filter(Donation.id == d.id).update({Donation.received_at: datetime(2026, 1, 31, 20, 0)})
    sess.commit()
    kolkata = pytz.timezone('Asia/Kolkata')
    now = kolkata.localize(datetime(2026, 3, 15, 12, 0))
    trend = reports.donation_trend(sess, months=3, now=now, tz=kolkata)
    assert [t['month'] for t in trend] == ['2026-01', '2026-02', '2026-03']
    assert [t['count'] for t in trend] == [0, 1, 0]


def test_communication_stats():
    sess = setup_session()
    actor, ids = seed(sess)
    sess.add_all([
        Communication(appeal_id=ids['A'], donor_id=1, channel='EMAIL', message='m', status='SENT', trigger='APPROVAL'),
        Communication(appeal_id=ids['A'], donor_id=2, channel='SMS', message='m', status='FAILED', trigger='MANUAL'),
        Communication(appeal_id=ids['A'], donor_id=3, channel='EMAIL', message='m', status='SENT', trigger='MANUAL'),
    ])
    sess.commit()
    stats = reports.communication_stats(sess)
    assert stats['by_status'] == {'SENT': 2, 'FAILED': 1}
    assert stats['by_channel'] == {'EMAIL': 2, 'SMS': 1}
    assert stats['by_trigger']['MANUAL'] == 2
