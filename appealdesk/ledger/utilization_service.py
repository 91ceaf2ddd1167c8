"""Fund utilization bookkeeping against approved appeals."""
import logging
from datetime import date
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from appealdesk.db import now_utc
from appealdesk.workflow.actors import require
from appealdesk.workflow.balance import Balance, amount_error, compute_remaining_balance, to_decimal
from appealdesk.workflow.errors import AppealNotFound, InvalidTransition, ValidationError
from appealdesk.workflow.models import Appeal, Utilization
from appealdesk.workflow.states import AppealStatus

log = logging.getLogger(__name__)

PAYMENT_STATUSES = ("pending", "processing", "paid")


def _approved_appeal(session: Session, appeal_id: int) -> Appeal:
    appeal = session.get(Appeal, appeal_id)
    if appeal is None:
        raise AppealNotFound(appeal_id)
    status = AppealStatus.parse(appeal.status)
    if status != AppealStatus.APPROVED:
        raise InvalidTransition(status, "record utilization", AppealStatus.APPROVED)
    return appeal


def appeal_balance(session: Session, appeal_id: int) -> Balance:
    appeal = session.get(Appeal, appeal_id)
    if appeal is None:
        raise AppealNotFound(appeal_id)
    rows = session.query(Utilization).filter(Utilization.appeal_id == appeal_id).all()
    return compute_remaining_balance(appeal, rows)


def record_utilization(
    session: Session,
    appeal_id: int,
    actor_id: int,
    utilization_date: date,
    description: str,
    amount_utilized,
    vendor_name: Optional[str] = None,
    vendor_details: Optional[str] = None,
    invoice_number: Optional[str] = None,
    po_number: Optional[str] = None,
    payment_status: str = "pending",
) -> Tuple[Utilization, Balance]:
    """Record an expenditure and return it with the appeal's new balance.

    Spending past the approved amount is recorded; the returned balance has
    ``over_utilized`` set and a warning is logged.
    """
    actor = require(session, actor_id, "utilization:record")
    appeal = _approved_appeal(session, appeal_id)

    errors: Dict[str, str] = {}
    if utilization_date is None:
        errors["utilization_date"] = "is required"
    if not (description or "").strip():
        errors["description"] = "is required"
    amount = None
    try:
        if amount_utilized is not None and not isinstance(amount_utilized, bool):
            amount = to_decimal(amount_utilized)
    except (ArithmeticError, ValueError, TypeError):
        amount = None
    error = "must be a number" if amount is None else amount_error(amount)
    if error:
        errors["amount_utilized"] = error
    payment_status = (payment_status or "").strip().lower()
    if payment_status not in PAYMENT_STATUSES:
        errors["payment_status"] = f"must be one of {', '.join(PAYMENT_STATUSES)}"
    if errors:
        raise ValidationError(errors)

    row = Utilization(
        appeal_id=appeal.id,
        utilization_date=utilization_date,
        description=description.strip(),
        amount_utilized=amount,
        vendor_name=vendor_name,
        vendor_details=vendor_details,
        invoice_number=invoice_number,
        po_number=po_number,
        payment_status=payment_status,
        created_by=actor.id,
        created_at=now_utc(),
    )
    session.add(row)
    session.commit()
    balance = appeal_balance(session, appeal.id)
    if balance.over_utilized:
        log.warning("appeal %s over-utilized by %s (approved %s, utilized %s)",
                    appeal.id, -balance.raw, balance.approved, balance.utilized)
    else:
        log.info("utilization %s of %s on appeal %s, remaining %s", row.id, amount, appeal.id, balance.raw)
    return row, balance


def update_payment_status(session: Session, utilization_id: int, actor_id: int, payment_status: str) -> Utilization:
    require(session, actor_id, "utilization:record")
    row = session.get(Utilization, utilization_id)
    if row is None:
        raise AppealNotFound(utilization_id, kind="utilization")
    payment_status = (payment_status or "").strip().lower()
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationError({"payment_status": f"must be one of {', '.join(PAYMENT_STATUSES)}"})
    row.payment_status = payment_status
    session.commit()
    return row


def list_utilizations(session: Session, appeal_id: Optional[int] = None, payment_status: Optional[str] = None,
                      page: int = 1, limit: int = 10) -> List[Utilization]:
    query = session.query(Utilization)
    if appeal_id is not None:
        query = query.filter(Utilization.appeal_id == appeal_id)
    if payment_status not in (None, "", "all"):
        query = query.filter(Utilization.payment_status == payment_status.lower())
    page = max(int(page), 1)
    return (
        query.order_by(Utilization.utilization_date.desc(), Utilization.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
