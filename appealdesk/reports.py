"""Dashboard and report figures."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

import pytz
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from appealdesk import settings
from appealdesk.workflow.balance import ZERO, to_decimal
from appealdesk.workflow.models import Appeal, Communication, Donation, Utilization
from appealdesk.workflow.states import AppealStatus


def _sum(session: Session, column, *criteria) -> Decimal:
    total = session.query(func.coalesce(func.sum(column), 0)).filter(*criteria).scalar()
    return to_decimal(total)


def appeal_status_counts(session: Session) -> Dict[str, int]:
    counts = {s.value: 0 for s in AppealStatus}
    rows = session.query(Appeal.status, func.count(Appeal.id)).group_by(Appeal.status).all()
    for status, n in rows:
        counts[AppealStatus.parse(status).value] = n
    return counts


def dashboard_stats(session: Session) -> Dict[str, object]:
    total_approved = _sum(session, Appeal.approved_amount, Appeal.status == AppealStatus.APPROVED)
    total_utilized = _sum(
        session, Utilization.amount_utilized,
        Utilization.appeal_id.in_(
            select(Appeal.id).where(Appeal.status == AppealStatus.APPROVED)
        ),
    )
    counts = appeal_status_counts(session)
    return {
        "total_approved": total_approved,
        "total_utilized": total_utilized,
        "remaining_balance": total_approved - total_utilized,
        "active_appeals": counts[AppealStatus.APPROVED.value],
        "pending_approvals": counts[AppealStatus.SUBMITTED.value],
        "total_received": _sum(session, Donation.amount, Donation.status == 'CONFIRMED'),
    }


def approval_stats(session: Session) -> Dict[str, object]:
    counts = appeal_status_counts(session)
    decided = counts["APPROVED"] + counts["REJECTED"]
    rate = Decimal(counts["APPROVED"] * 100) / decided if decided else ZERO
    return {
        "pending": counts["SUBMITTED"],
        "approved": counts["APPROVED"],
        "rejected": counts["REJECTED"],
        "approval_rate": rate.quantize(Decimal("0.1")),
        "total_approved_amount": _sum(session, Appeal.approved_amount, Appeal.status == AppealStatus.APPROVED),
        "total_requested_amount": _sum(session, Appeal.estimated_amount, Appeal.status != AppealStatus.DRAFT),
    }


def donation_stats(session: Session, appeal_id: Optional[int] = None) -> Dict[str, object]:
    criteria = [Donation.appeal_id == appeal_id] if appeal_id is not None else []
    out: Dict[str, object] = {}
    for status in ("CONFIRMED", "PENDING", "FAILED"):
        q = session.query(func.count(Donation.id), func.coalesce(func.sum(Donation.amount), 0)).filter(
            Donation.status == status, *criteria)
        n, total = q.one()
        out[status.lower()] = {"count": n, "amount": to_decimal(total)}
    confirmed = out["confirmed"]
    out["average_confirmed"] = (
        (confirmed["amount"] / confirmed["count"]).quantize(Decimal("0.01")) if confirmed["count"] else ZERO
    )
    return out


def _local_month(ts: datetime, tz) -> str:
    if ts.tzinfo is None:
        ts = pytz.utc.localize(ts)
    return ts.astimezone(tz).strftime("%Y-%m")


def donation_trend(session: Session, months: int = 6, now: Optional[datetime] = None,
                   tz=None) -> List[Dict[str, object]]:
    """Confirmed donations per local calendar month, oldest first, ``months`` entries."""
    tz = tz or settings.LOCAL_TZ
    now = now or settings.now_local()
    if now.tzinfo is None:
        now = tz.localize(now)
    now = now.astimezone(tz)
    keys = []
    y, m = now.year, now.month
    for _ in range(months):
        keys.append(f"{y:04d}-{m:02d}")
        y, m = (y - 1, 12) if m == 1 else (y, m - 1)
    keys.reverse()
    buckets = {k: {"month": k, "count": 0, "amount": ZERO} for k in keys}
    rows = session.query(Donation.received_at, Donation.amount).filter(Donation.status == 'CONFIRMED').all()
    for received_at, amount in rows:
        key = _local_month(received_at, tz)
        if key in buckets:
            buckets[key]["count"] += 1
            buckets[key]["amount"] += to_decimal(amount)
    return [buckets[k] for k in keys]


def utilization_stats(session: Session) -> Dict[str, object]:
    out: Dict[str, object] = {}
    for status in ("paid", "processing", "pending"):
        n, total = session.query(
            func.count(Utilization.id), func.coalesce(func.sum(Utilization.amount_utilized), 0)
        ).filter(Utilization.payment_status == status).one()
        out[status] = {"count": n, "amount": to_decimal(total)}
    out["total"] = sum((v["amount"] for v in out.values()), ZERO)
    return out


def communication_stats(session: Session) -> Dict[str, Dict[str, int]]:
    by_status = dict(session.query(Communication.status, func.count(Communication.id))
                     .group_by(Communication.status).all())
    by_channel = dict(session.query(Communication.channel, func.count(Communication.id))
                      .group_by(Communication.channel).all())
    by_trigger = dict(session.query(Communication.trigger, func.count(Communication.id))
                      .group_by(Communication.trigger).all())
    return {
        "by_status": {k: by_status.get(k, 0) for k in ("SENT", "FAILED")},
        "by_channel": by_channel,
        "by_trigger": by_trigger,
    }
