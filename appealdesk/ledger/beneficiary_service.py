"""Beneficiaries of appeals and their feedback."""
import logging
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from appealdesk.db import now_utc
from appealdesk.workflow.actors import require
from appealdesk.workflow.errors import AppealNotFound, ValidationError
from appealdesk.workflow.models import Appeal, Beneficiary

log = logging.getLogger(__name__)


def _rating(value, errors: Dict[str, str]) -> Optional[int]:
    if value in (None, ""):
        return None
    rating = None
    if not isinstance(value, bool) and not (isinstance(value, float) and not value.is_integer()):
        try:
            rating = int(value)
        except (TypeError, ValueError):
            rating = None
    if rating is None or not 1 <= rating <= 5:
        errors["feedback_rating"] = "must be between 1 and 5"
        return None
    return rating


def add_beneficiary(
    session: Session,
    appeal_id: int,
    actor_id: int,
    name: str,
    category: Optional[str] = None,
    location: Optional[str] = None,
    phone: Optional[str] = None,
    email: Optional[str] = None,
    impact_received: Optional[str] = None,
    feedback_rating=None,
    feedback_text: Optional[str] = None,
) -> Beneficiary:
    actor = require(session, actor_id, "beneficiaries:add")
    appeal = session.get(Appeal, appeal_id)
    if appeal is None:
        raise AppealNotFound(appeal_id)
    errors: Dict[str, str] = {}
    if not (name or "").strip():
        errors["name"] = "is required"
    rating = _rating(feedback_rating, errors)
    if errors:
        raise ValidationError(errors)
    row = Beneficiary(
        appeal_id=appeal.id,
        name=name.strip(),
        category=category or appeal.beneficiary_category,
        location=location,
        phone=phone,
        email=email,
        impact_received=impact_received,
        feedback_rating=rating,
        feedback_text=feedback_text,
        registered_by=actor.id,
        registered_at=now_utc(),
    )
    session.add(row)
    session.commit()
    log.info("beneficiary %s registered for appeal %s", row.id, appeal.id)
    return row


def update_feedback(session: Session, beneficiary_id: int, actor_id: int, rating=None,
                    text: Optional[str] = None, impact_received: Optional[str] = None) -> Beneficiary:
    require(session, actor_id, "beneficiaries:edit")
    row = session.get(Beneficiary, beneficiary_id)
    if row is None:
        raise AppealNotFound(beneficiary_id, kind="beneficiary")
    errors: Dict[str, str] = {}
    value = _rating(rating, errors)
    if errors:
        raise ValidationError(errors)
    if value is not None:
        row.feedback_rating = value
    if text is not None:
        row.feedback_text = text
    if impact_received is not None:
        row.impact_received = impact_received
    session.commit()
    return row


def list_beneficiaries(session: Session, appeal_id: Optional[int] = None, category: Optional[str] = None,
                       search: Optional[str] = None, page: int = 1, limit: int = 10) -> List[Beneficiary]:
    query = session.query(Beneficiary)
    if appeal_id is not None:
        query = query.filter(Beneficiary.appeal_id == appeal_id)
    if category not in (None, "", "all"):
        query = query.filter(Beneficiary.category == category)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(or_(Beneficiary.name.ilike(like), Beneficiary.location.ilike(like)))
    page = max(int(page), 1)
    return query.order_by(Beneficiary.id.desc()).offset((page - 1) * limit).limit(limit).all()
