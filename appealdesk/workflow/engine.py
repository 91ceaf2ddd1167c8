"""Appeal workflow engine.

Owns the appeal life-cycle::

    DRAFT --submit--> SUBMITTED --approve--> APPROVED
                             \\--reject--> REJECTED

Every command re-checks the current status inside a conditional UPDATE
(``WHERE id = :id AND status = :expected``) so two deciders racing on the
same appeal cannot both win; the loser gets :class:`InvalidTransition`.
Approval and rejection produce a :class:`NotifyDonors` instruction which is
handed to the dispatcher only after the transition is committed.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from appealdesk.db import now_utc
from appealdesk.permissions import ApprovalPolicy, can
from .actors import load_actor
from .balance import amount_error, to_decimal
from .errors import (
    AppealNotFound, Forbidden, InvalidTransition, NotificationDeliveryFailed, ValidationError,
)
from .models import Appeal, AppealAudit, AppealDocument, User
from .states import AppealStatus, required_status

log = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "description", "estimated_amount", "beneficiary_category", "duration", "priority")
PRIORITIES = ("high", "medium", "low")


@dataclass(frozen=True)
class NotifyDonors:
    """Instruction for the communication dispatcher.

    ``payload`` is the approved amount for APPROVED and the rejection reason
    for REJECTED.
    """

    appeal_id: int
    trigger_type: AppealStatus
    payload: Any

    def to_dict(self) -> Dict[str, Any]:
        payload = str(self.payload) if isinstance(self.payload, Decimal) else self.payload
        return {"appeal_id": self.appeal_id, "trigger_type": self.trigger_type.value, "payload": payload}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NotifyDonors":
        trigger = AppealStatus.parse(data["trigger_type"])
        payload = data.get("payload")
        if trigger == AppealStatus.APPROVED:
            payload = to_decimal(payload)
        return cls(int(data["appeal_id"]), trigger, payload)


@dataclass
class TransitionResult:
    """Authoritative post-command state returned to the caller."""

    appeal: Optional[Appeal]
    instruction: Optional[NotifyDonors] = None
    warnings: List[NotificationDeliveryFailed] = field(default_factory=list)

    @property
    def notification_failed(self) -> bool:
        return bool(self.warnings)


# --- input validation ---
def _required_text(data: Dict[str, Any], name: str, errors: Dict[str, str]) -> Optional[str]:
    value = data.get(name)
    if value is None or not isinstance(value, str) or not value.strip():
        errors[name] = "is required"
        return None
    return value.strip()


def _positive_amount(value: Any, name: str, errors: Dict[str, str]) -> Optional[Decimal]:
    if value is None or (isinstance(value, str) and not value.strip()):
        errors[name] = "is required"
        return None
    if isinstance(value, bool):
        errors[name] = "must be a number"
        return None
    try:
        amount = to_decimal(value.strip() if isinstance(value, str) else value)
    except (InvalidOperation, ValueError, TypeError):
        errors[name] = "must be a number"
        return None
    error = amount_error(amount)
    if error:
        errors[name] = error
        return None
    return amount


def _priority(value: Any, errors: Dict[str, str]) -> Optional[str]:
    if value is None:
        return "medium"
    p = str(value).strip().lower()
    if p not in PRIORITIES:
        errors["priority"] = f"must be one of {', '.join(PRIORITIES)}"
        return None
    return p


def _documents(documents: Iterable[Dict[str, Any]], errors: Dict[str, str]) -> List[Dict[str, Any]]:
    out = []
    for i, doc in enumerate(documents or ()):
        name = (doc.get("file_name") or "").strip() if isinstance(doc, dict) else ""
        if not name:
            errors[f"documents[{i}]"] = "file_name is required"
            continue
        out.append({
            "file_name": name,
            "content_type": doc.get("content_type"),
            "size_bytes": doc.get("size_bytes"),
            "storage_ref": doc.get("storage_ref"),
        })
    return out


class AppealWorkflow:
    """Single source of truth for appeal status.

    Parameters
    ----------
    session:
        SQLAlchemy session; each command commits or rolls back on it.
    policy:
        Who may decide and who may act for a creator. Defaults to the roles
        configured in :mod:`appealdesk.settings`.
    dispatcher:
        Object with ``notify(instruction)``. Optional; without it the
        instruction is only returned.
    """

    def __init__(self, session: Session, policy: Optional[ApprovalPolicy] = None, dispatcher=None):
        self.session = session
        self.policy = policy or ApprovalPolicy.from_settings()
        self.dispatcher = dispatcher

    # --- commands ---
    def create(
        self,
        title: str,
        description: str,
        estimated_amount,
        beneficiary_category: str,
        duration: str,
        creator_id: int,
        priority: Optional[str] = None,
        documents: Iterable[Dict[str, Any]] = (),
    ) -> TransitionResult:
        """Create an appeal in DRAFT. All fields are validated before anything is written."""
        creator = self._actor(creator_id)
        if not can(creator.role, "appeals:create"):
            raise Forbidden(creator_id, "create appeals")
        data = {
            "title": title, "description": description,
            "beneficiary_category": beneficiary_category, "duration": duration,
        }
        errors: Dict[str, str] = {}
        values = {name: _required_text(data, name, errors) for name in data}
        values["estimated_amount"] = _positive_amount(estimated_amount, "estimated_amount", errors)
        values["priority"] = _priority(priority, errors)
        docs = _documents(documents, errors)
        if errors:
            log.warning("create appeal rejected by validation: %s", errors)
            raise ValidationError(errors)

        appeal = Appeal(status=AppealStatus.DRAFT, created_by=creator.id, created_at=now_utc(), **values)
        for pos, doc in enumerate(docs):
            appeal.documents.append(AppealDocument(position=pos, **doc))
        with self._transaction():
            self.session.add(appeal)
            self.session.flush()
            self._audit(appeal.id, "created", creator.id, None, AppealStatus.DRAFT)
        log.info("appeal %s created by user=%s amount=%s", appeal.id, creator.id, appeal.estimated_amount)
        return TransitionResult(appeal)

    def update(self, appeal_id: int, actor_id: int, **fields) -> TransitionResult:
        """Edit descriptive fields of a DRAFT appeal."""
        appeal = self._load(appeal_id)
        actor = self._actor(actor_id)
        self._require_owner(appeal, actor, "edit this appeal")
        self._require_status(appeal, "update")
        unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
        errors: Dict[str, str] = {name: "cannot be edited" for name in unknown}
        values: Dict[str, Any] = {}
        for name, value in fields.items():
            if name in unknown:
                continue
            if name == "estimated_amount":
                values[name] = _positive_amount(value, name, errors)
            elif name == "priority":
                values[name] = _priority(value, errors)
            else:
                values[name] = _required_text(fields, name, errors)
        if errors:
            raise ValidationError(errors)
        if not values:
            return TransitionResult(appeal)

        with self._transaction():
            self._swap_or_fail(appeal, AppealStatus.DRAFT, "update", values)
            self._audit(appeal.id, "updated", actor.id, AppealStatus.DRAFT, AppealStatus.DRAFT,
                        note=", ".join(sorted(values)))
        self.session.refresh(appeal)
        log.info("appeal %s updated by user=%s fields=%s", appeal.id, actor.id, sorted(values))
        return TransitionResult(appeal)

    def add_document(
        self,
        appeal_id: int,
        actor_id: int,
        file_name: str,
        content_type: Optional[str] = None,
        size_bytes: Optional[int] = None,
        storage_ref: Optional[str] = None,
    ) -> AppealDocument:
        appeal = self._load(appeal_id)
        actor = self._actor(actor_id)
        self._require_owner(appeal, actor, "attach documents")
        self._require_status(appeal, "add_document")
        errors: Dict[str, str] = {}
        docs = _documents([{
            "file_name": file_name, "content_type": content_type,
            "size_bytes": size_bytes, "storage_ref": storage_ref,
        }], errors)
        if errors:
            raise ValidationError({"file_name": "is required"})
        with self._transaction():
            doc = AppealDocument(appeal_id=appeal.id, position=len(appeal.documents), **docs[0])
            appeal.documents.append(doc)
        return doc

    def delete(self, appeal_id: int, actor_id: int) -> None:
        """Delete a DRAFT appeal together with its documents and audit rows."""
        appeal = self._load(appeal_id)
        actor = self._actor(actor_id)
        self._require_owner(appeal, actor, "delete this appeal")
        self._require_status(appeal, "delete")
        with self._transaction():
            self.session.query(AppealDocument).filter(AppealDocument.appeal_id == appeal.id).delete(
                synchronize_session=False)
            self.session.query(AppealAudit).filter(AppealAudit.appeal_id == appeal.id).delete(
                synchronize_session=False)
            rows = (
                self.session.query(Appeal)
                .filter(Appeal.id == appeal.id, Appeal.status == AppealStatus.DRAFT)
                .delete(synchronize_session=False)
            )
            if rows != 1:
                raise InvalidTransition(self._current_status(appeal.id), "delete", AppealStatus.DRAFT)
        self.session.expunge(appeal)
        log.info("appeal %s deleted by user=%s", appeal_id, actor.id)

    def submit(self, appeal_id: int, actor_id: int) -> TransitionResult:
        appeal = self._load(appeal_id)
        actor = self._actor(actor_id)
        self._require_owner(appeal, actor, "submit this appeal")
        self._require_status(appeal, "submit")
        with self._transaction():
            self._swap_or_fail(appeal, AppealStatus.DRAFT, "submit", {
                "status": AppealStatus.SUBMITTED,
                "submitted_at": now_utc(),
            })
            self._audit(appeal.id, "submitted", actor.id, AppealStatus.DRAFT, AppealStatus.SUBMITTED)
        self.session.refresh(appeal)
        log.info("appeal %s submitted by user=%s", appeal.id, actor.id)
        return TransitionResult(appeal)

    def approve(
        self,
        appeal_id: int,
        approved_amount,
        actor_id: int,
        remarks: Optional[str] = None,
        conditions: Optional[str] = None,
    ) -> TransitionResult:
        """Approve a SUBMITTED appeal for ``approved_amount``.

        The amount may differ from the estimate. ``remarks`` become the audit
        note of the decision.
        """
        appeal = self._load(appeal_id)
        actor = self._actor(actor_id)
        self._require_decider(actor, "approve appeals")
        self._require_status(appeal, "approve")
        errors: Dict[str, str] = {}
        amount = _positive_amount(approved_amount, "approved_amount", errors)
        if errors:
            log.warning("approve appeal %s rejected by validation: %s", appeal.id, errors)
            raise ValidationError(errors)
        remarks = (remarks or "").strip() or None
        conditions = (conditions or "").strip() or None

        with self._transaction():
            self._swap_or_fail(appeal, AppealStatus.SUBMITTED, "approve", {
                "status": AppealStatus.APPROVED,
                "approved_amount": amount,
                "approval_remarks": remarks,
                "approval_conditions": conditions,
                "decided_at": now_utc(),
                "decided_by": actor.id,
            })
            self._audit(appeal.id, "approved", actor.id, AppealStatus.SUBMITTED, AppealStatus.APPROVED, note=remarks)
        self.session.refresh(appeal)
        log.info("appeal %s approved by user=%s amount=%s (estimated %s)",
                 appeal.id, actor.id, amount, appeal.estimated_amount)
        return self._notify(appeal, NotifyDonors(appeal.id, AppealStatus.APPROVED, amount))

    def reject(self, appeal_id: int, reason: str, actor_id: int) -> TransitionResult:
        appeal = self._load(appeal_id)
        actor = self._actor(actor_id)
        self._require_decider(actor, "reject appeals")
        self._require_status(appeal, "reject")
        errors: Dict[str, str] = {}
        reason = _required_text({"reason": reason}, "reason", errors)
        if errors:
            log.warning("reject appeal %s rejected by validation: %s", appeal.id, errors)
            raise ValidationError(errors)

        with self._transaction():
            self._swap_or_fail(appeal, AppealStatus.SUBMITTED, "reject", {
                "status": AppealStatus.REJECTED,
                "rejection_reason": reason,
                "decided_at": now_utc(),
                "decided_by": actor.id,
            })
            self._audit(appeal.id, "rejected", actor.id, AppealStatus.SUBMITTED, AppealStatus.REJECTED, note=reason)
        self.session.refresh(appeal)
        log.info("appeal %s rejected by user=%s: %s", appeal.id, actor.id, reason)
        return self._notify(appeal, NotifyDonors(appeal.id, AppealStatus.REJECTED, reason))

    # --- queries ---
    def get(self, appeal_id: int) -> Appeal:
        return self._load(appeal_id)

    def list_appeals(
        self,
        status=None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> List[Appeal]:
        """Page through appeals, newest first. ``status='all'`` means no filter."""
        query = self.session.query(Appeal)
        if status not in (None, "", "all"):
            query = query.filter(Appeal.status == AppealStatus.parse(status))
        if search:
            like = f"%{search.strip()}%"
            query = query.filter(or_(Appeal.title.ilike(like), Appeal.description.ilike(like)))
        page = max(int(page), 1)
        limit = max(int(limit), 1)
        return (
            query.order_by(Appeal.created_at.desc(), Appeal.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

    def pending_approvals(self) -> List[Appeal]:
        """Submitted appeals, high priority first, oldest submission first."""
        appeals = self.session.query(Appeal).filter(Appeal.status == AppealStatus.SUBMITTED).all()
        rank = {p: i for i, p in enumerate(PRIORITIES)}
        return sorted(appeals, key=lambda a: (rank.get(a.priority, 1), a.submitted_at or a.created_at, a.id))

    # --- helpers ---
    @contextmanager
    def _transaction(self):
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def _load(self, appeal_id: int) -> Appeal:
        appeal = self.session.get(Appeal, appeal_id)
        if appeal is None:
            raise AppealNotFound(appeal_id)
        return appeal

    def _actor(self, actor_id: int) -> User:
        return load_actor(self.session, actor_id)

    def _require_owner(self, appeal: Appeal, actor: User, action: str) -> None:
        if appeal.created_by != actor.id and not self.policy.may_override(actor.role):
            log.warning("user=%s may not %s (appeal %s)", actor.id, action, appeal.id)
            raise Forbidden(actor.id, action)

    def _require_decider(self, actor: User, action: str) -> None:
        if not self.policy.may_decide(actor.role):
            log.warning("user=%s role=%s may not %s", actor.id, actor.role, action)
            raise Forbidden(actor.id, action)

    def _require_status(self, appeal: Appeal, action: str) -> None:
        current = AppealStatus.parse(appeal.status)
        required = required_status(action)
        if current != required:
            raise InvalidTransition(current, action.replace("_", " "), required)

    def _current_status(self, appeal_id: int) -> Optional[AppealStatus]:
        status = self.session.query(Appeal.status).filter(Appeal.id == appeal_id).scalar()
        return AppealStatus.parse(status) if status is not None else None

    def _swap_or_fail(self, appeal: Appeal, expected: AppealStatus, action: str, values: Dict[str, Any]) -> None:
        """Conditional UPDATE on ``status``; raises if another writer got there first."""
        rows = (
            self.session.query(Appeal)
            .filter(Appeal.id == appeal.id, Appeal.status == expected)
            .update({getattr(Appeal, k): v for k, v in values.items()}, synchronize_session=False)
        )
        if rows != 1:
            current = self._current_status(appeal.id)
            log.warning("lost %s race on appeal %s: status is now %s", action, appeal.id, current)
            raise InvalidTransition(current, action, expected)

    def _audit(self, appeal_id: int, action: str, actor_id: int, src, dst, note: Optional[str] = None) -> None:
        self.session.add(AppealAudit(
            appeal_id=appeal_id,
            action=action,
            actor_id=actor_id,
            from_status=src.value if src is not None else None,
            to_status=dst.value if dst is not None else None,
            note=note,
            created_at=now_utc(),
        ))

    def _notify(self, appeal: Appeal, instruction: NotifyDonors) -> TransitionResult:
        result = TransitionResult(appeal, instruction)
        if self.dispatcher is None:
            return result
        try:
            self.dispatcher.notify(instruction)
        except NotificationDeliveryFailed as exc:
            log.error("appeal %s %s; transition stands: %s", appeal.id, instruction.trigger_type.value, exc)
            result.warnings.append(exc)
        except Exception as exc:
            log.exception("dispatcher crashed for appeal %s", appeal.id)
            self.session.rollback()
            result.warnings.append(NotificationDeliveryFailed(instruction, [str(exc)]))
        return result
