"""Donation receipts.

A donation is recorded as PENDING and is then either CONFIRMED (funds
cleared) or FAILED (e.g. a bounced cheque). Both outcomes are final.
"""
import logging
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from appealdesk.db import now_utc
from appealdesk.workflow.actors import require
from appealdesk.workflow.balance import amount_error, to_decimal
from appealdesk.workflow.errors import AppealNotFound, InvalidTransition, ValidationError
from appealdesk.workflow.models import Appeal, Communication, Donation, Donor, DonorAppeal
from appealdesk.workflow.states import AppealStatus

log = logging.getLogger(__name__)

MODES = ("cheque", "bank_transfer")
OPEN_FOR_DONATIONS = (AppealStatus.SUBMITTED, AppealStatus.APPROVED)


def _amount(value, errors: Dict[str, str]):
    try:
        amount = to_decimal(value) if value is not None and not isinstance(value, bool) else None
    except (ArithmeticError, ValueError, TypeError):
        amount = None
    if amount is None:
        errors["amount"] = "must be a number"
        return None
    error = amount_error(amount)
    if error:
        errors["amount"] = error
        return None
    return amount


def get_or_create_donor(session: Session, name: str, email: Optional[str] = None,
                        phone: Optional[str] = None, telegram_chat_id: Optional[int] = None) -> Donor:
    email = (email or "").strip().lower() or None
    donor = session.query(Donor).filter(Donor.email == email).first() if email else None
    if donor is None:
        donor = Donor(name=name.strip(), email=email, phone=phone, telegram_chat_id=telegram_chat_id)
        session.add(donor)
        session.flush()
    else:
        if phone and not donor.phone:
            donor.phone = phone
        if telegram_chat_id and not donor.telegram_chat_id:
            donor.telegram_chat_id = telegram_chat_id
    return donor


def link_donor(session: Session, donor_id: int, appeal_id: int) -> DonorAppeal:
    link = session.query(DonorAppeal).filter_by(donor_id=donor_id, appeal_id=appeal_id).first()
    if link is None:
        link = DonorAppeal(donor_id=donor_id, appeal_id=appeal_id, linked_at=now_utc())
        session.add(link)
    return link


# --- donor directory ---
def _donor_fields(name, email, phone, errors: Dict[str, str]):
    name = (name or "").strip()
    email = (email or "").strip().lower()
    phone = (phone or "").strip()
    if not name:
        errors["name"] = "is required"
    if not email:
        errors["email"] = "is required"
    elif "@" not in email:
        errors["email"] = "must be an email address"
    if not phone:
        errors["phone"] = "is required"
    return name, email, phone


def _email_taken(session: Session, email: str, donor_id: Optional[int] = None) -> bool:
    query = session.query(Donor).filter(Donor.email == email)
    if donor_id is not None:
        query = query.filter(Donor.id != donor_id)
    return query.first() is not None


def get_donor(session: Session, donor_id: int) -> Donor:
    donor = session.get(Donor, donor_id)
    if donor is None:
        raise AppealNotFound(donor_id, kind="donor")
    return donor


def list_donors(session: Session, page: int = 1, limit: int = 10) -> List[Donor]:
    page = max(int(page), 1)
    return (
        session.query(Donor)
        .order_by(Donor.created_at.desc(), Donor.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )


def search_donors(session: Session, keyword: str) -> List[Donor]:
    """Donors whose name or email contains ``keyword``, ignoring case."""
    keyword = (keyword or "").strip()
    if not keyword:
        return []
    term = f"%{keyword}%"
    return (
        session.query(Donor)
        .filter(or_(Donor.name.ilike(term), Donor.email.ilike(term)))
        .order_by(Donor.name)
        .all()
    )


def add_donor(session: Session, actor_id: int, name: str, email: str, phone: str,
              telegram_chat_id: Optional[int] = None) -> Donor:
    require(session, actor_id, "donations:record")
    errors: Dict[str, str] = {}
    name, email, phone = _donor_fields(name, email, phone, errors)
    if "email" not in errors and _email_taken(session, email):
        errors["email"] = "is already registered"
    if errors:
        raise ValidationError(errors)
    donor = Donor(name=name, email=email, phone=phone, telegram_chat_id=telegram_chat_id, created_at=now_utc())
    session.add(donor)
    session.commit()
    log.info("donor %s added", donor.id)
    return donor


def update_donor(session: Session, donor_id: int, actor_id: int, name: Optional[str] = None,
                 email: Optional[str] = None, phone: Optional[str] = None,
                 telegram_chat_id: Optional[int] = None) -> Donor:
    """Change the given fields; fields left as ``None`` keep their value."""
    require(session, actor_id, "donations:record")
    donor = get_donor(session, donor_id)
    errors: Dict[str, str] = {}
    name, email, phone = _donor_fields(
        donor.name if name is None else name,
        donor.email if email is None else email,
        donor.phone if phone is None else phone,
        errors,
    )
    if "email" not in errors and _email_taken(session, email, donor.id):
        errors["email"] = "is already registered"
    if errors:
        raise ValidationError(errors)
    donor.name, donor.email, donor.phone = name, email, phone
    if telegram_chat_id is not None:
        donor.telegram_chat_id = telegram_chat_id
    session.commit()
    return donor


def delete_donor(session: Session, donor_id: int, actor_id: int) -> None:
    """Remove a donor who has no donations or communication history."""
    require(session, actor_id, "donations:record")
    donor = get_donor(session, donor_id)
    if session.query(Donation).filter(Donation.donor_id == donor.id).first() is not None:
        raise ValidationError({"donor": "has recorded donations"})
    if session.query(Communication).filter(Communication.donor_id == donor.id).first() is not None:
        raise ValidationError({"donor": "has communication history"})
    session.query(DonorAppeal).filter(DonorAppeal.donor_id == donor.id).delete(synchronize_session=False)
    session.delete(donor)
    session.commit()
    log.info("donor %s deleted", donor_id)


def record_donation(
    session: Session,
    appeal_id: int,
    actor_id: int,
    donor_name: str,
    amount,
    mode: str,
    donor_email: Optional[str] = None,
    donor_phone: Optional[str] = None,
    cheque_number: Optional[str] = None,
    cheque_date: Optional[date] = None,
    transaction_ref: Optional[str] = None,
    receiving_entity: Optional[str] = None,
    telegram_chat_id: Optional[int] = None,
) -> Donation:
    """Record a received donation as PENDING and link the donor to the appeal."""
    actor = require(session, actor_id, "donations:record")
    appeal = session.get(Appeal, appeal_id)
    if appeal is None:
        raise AppealNotFound(appeal_id)
    status = AppealStatus.parse(appeal.status)
    if status not in OPEN_FOR_DONATIONS:
        raise InvalidTransition(status, "receive donations for")

    errors: Dict[str, str] = {}
    if not (donor_name or "").strip():
        errors["donor_name"] = "is required"
    value = _amount(amount, errors)
    mode = (mode or "").strip().lower()
    if mode not in MODES:
        errors["mode"] = f"must be one of {', '.join(MODES)}"
    elif mode == "cheque":
        if not (cheque_number or "").strip():
            errors["cheque_number"] = "is required for cheque"
        if cheque_date is None:
            errors["cheque_date"] = "is required for cheque"
    elif not (transaction_ref or "").strip():
        errors["transaction_ref"] = "is required for bank transfer"
    if errors:
        raise ValidationError(errors)

    donor = get_or_create_donor(session, donor_name, donor_email, donor_phone, telegram_chat_id)
    link_donor(session, donor.id, appeal.id)
    donation = Donation(
        donor_id=donor.id,
        appeal_id=appeal.id,
        amount=value,
        mode=mode,
        cheque_number=(cheque_number or "").strip() or None,
        cheque_date=cheque_date,
        transaction_ref=(transaction_ref or "").strip() or None,
        receiving_entity=receiving_entity,
        received_at=now_utc(),
        received_by=actor.id,
        status='PENDING',
    )
    session.add(donation)
    session.commit()
    log.info("donation %s of %s recorded for appeal %s (donor %s)", donation.id, value, appeal.id, donor.id)
    return donation


def _settle(session: Session, donation_id: int, actor_id: int, status: str, verb: str,
            reason: Optional[str] = None) -> Donation:
    require(session, actor_id, "donations:record")
    donation = session.get(Donation, donation_id)
    if donation is None:
        raise AppealNotFound(donation_id, kind="donation")
    rows = (
        session.query(Donation)
        .filter(Donation.id == donation_id, Donation.status == 'PENDING')
        .update({Donation.status: status, Donation.failure_reason: reason}, synchronize_session=False)
    )
    if rows != 1:
        session.rollback()
        session.refresh(donation)
        raise InvalidTransition(donation.status, verb, "Pending", subject="Donation")
    session.commit()
    session.refresh(donation)
    log.info("donation %s -> %s", donation.id, status)
    return donation


def confirm_donation(session: Session, donation_id: int, actor_id: int) -> Donation:
    return _settle(session, donation_id, actor_id, 'CONFIRMED', "confirm")


def fail_donation(session: Session, donation_id: int, actor_id: int, reason: str) -> Donation:
    if not (reason or "").strip():
        raise ValidationError({"reason": "is required"})
    return _settle(session, donation_id, actor_id, 'FAILED', "fail", reason.strip())


def list_donations(session: Session, status: Optional[str] = None, appeal_id: Optional[int] = None,
                   search: Optional[str] = None, page: int = 1, limit: int = 10) -> List[Donation]:
    query = session.query(Donation).join(Donor, Donor.id == Donation.donor_id)
    if status not in (None, "", "all"):
        query = query.filter(Donation.status == status.upper())
    if appeal_id is not None:
        query = query.filter(Donation.appeal_id == appeal_id)
    if search:
        query = query.filter(Donor.name.ilike(f"%{search.strip()}%"))
    page = max(int(page), 1)
    return (
        query.order_by(Donation.received_at.desc(), Donation.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
