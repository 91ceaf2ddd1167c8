"""Communication dispatcher.

Delivers :class:`~appealdesk.workflow.engine.NotifyDonors` instructions to
every donor linked to an appeal, and sends manual messages composed by
staff. Each delivery attempt is written to the ``communications`` table.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from appealdesk import settings
from appealdesk.channels import registry
from appealdesk.channels.base import Channel, ChannelError, OutgoingMessage
from appealdesk.db import now_utc
from appealdesk.workflow.actors import require
from appealdesk.workflow.engine import NotifyDonors
from appealdesk.workflow.errors import AppealNotFound, NotificationDeliveryFailed, ValidationError
from appealdesk.workflow.models import Appeal, Communication, Donor, DonorAppeal
from appealdesk.workflow.states import AppealStatus

log = logging.getLogger(__name__)

CHANNELS = ("EMAIL", "TELEGRAM", "SMS", "WHATSAPP")
RECIPIENT_TYPES = ("ALL_DONORS", "SELECTED_DONORS")
FALLBACK_CHANNEL = "EMAIL"

TRIGGERS = {
    AppealStatus.APPROVED: "APPROVAL",
    AppealStatus.REJECTED: "REJECTION",
}


def format_amount(value) -> str:
    amount = Decimal(value).quantize(Decimal("0.01"))
    if amount == amount.to_integral_value():
        return f"{int(amount):,}"
    return f"{amount:,}"


def build_message(appeal: Appeal, instruction: NotifyDonors) -> OutgoingMessage:
    if instruction.trigger_type == AppealStatus.APPROVED:
        return OutgoingMessage(
            subject=f"Appeal Approved: {appeal.title}",
            body=(
                f"Great news! The appeal '{appeal.title}' you supported has been approved "
                f"for {format_amount(instruction.payload)}. Your donation will be used as "
                f"planned. Thank you for your contribution!"
            ),
        )
    if instruction.trigger_type == AppealStatus.REJECTED:
        return OutgoingMessage(
            subject=f"Appeal Rejected: {appeal.title}",
            body=(
                f"We regret to inform you that the appeal '{appeal.title}' has been rejected. "
                f"Reason: {instruction.payload}. The organisers may reapply with a revised plan."
            ),
        )
    raise ValueError(f"no donor message for trigger {instruction.trigger_type}")


@dataclass
class SendReport:
    """Outcome of one dispatch: counts and a line per failed donor."""

    sent: int = 0
    failed: int = 0
    failures: List[str] = field(default_factory=list)


class Dispatcher:
    """Sends messages to an appeal's donors.

    Parameters
    ----------
    session:
        Session used to read donors and log communications.
    channels:
        Optional ``{key: Channel}`` mapping; defaults to the channel registry.
    default_channel:
        Channel used for workflow notifications. Donors unreachable on it
        fall back to e-mail.
    """

    def __init__(self, session: Session, channels: Optional[Dict[str, Channel]] = None,
                 default_channel: Optional[str] = None):
        self.session = session
        self._channels = {k.upper(): v for k, v in channels.items()} if channels is not None else None
        self.default_channel = (default_channel or settings.DEFAULT_CHANNEL).upper()

    def channel(self, key: str) -> Optional[Channel]:
        if self._channels is not None:
            return self._channels.get(key.upper())
        return registry.get(key)

    def donors_for(self, appeal_id: int) -> List[Donor]:
        return (
            self.session.query(Donor)
            .join(DonorAppeal, DonorAppeal.donor_id == Donor.id)
            .filter(DonorAppeal.appeal_id == appeal_id)
            .order_by(Donor.id)
            .all()
        )

    # --- workflow notifications ---
    def notify(self, instruction: NotifyDonors, skip_delivered: bool = False) -> SendReport:
        """Deliver ``instruction`` to the appeal's donors.

        With ``skip_delivered`` donors that already have a SENT record for the
        same appeal and trigger are left out, which makes retries safe.
        Raises :class:`NotificationDeliveryFailed` if any delivery failed.
        """
        trigger = TRIGGERS.get(instruction.trigger_type)
        appeal = self.session.get(Appeal, instruction.appeal_id)
        if appeal is None or trigger is None:
            raise NotificationDeliveryFailed(instruction, [f"appeal {instruction.appeal_id} not notifiable"])
        donors = self.donors_for(appeal.id)
        if skip_delivered:
            done = {
                row.donor_id for row in self.session.query(Communication.donor_id).filter(
                    Communication.appeal_id == appeal.id,
                    Communication.trigger == trigger,
                    Communication.status == 'SENT',
                )
            }
            donors = [d for d in donors if d.id not in done]
        if not donors:
            log.info("appeal %s: no donors to notify (%s)", appeal.id, trigger)
            return SendReport()

        message = build_message(appeal, instruction)
        report = self._deliver(appeal.id, donors, self.default_channel, message, trigger, fallback=True)
        log.info("appeal %s %s notifications: sent=%s failed=%s", appeal.id, trigger, report.sent, report.failed)
        if report.failed:
            raise NotificationDeliveryFailed(instruction, report.failures)
        return report

    # --- manual communication ---
    def send(
        self,
        appeal_id: int,
        channel: str,
        message: str,
        sender_id: int,
        subject: Optional[str] = None,
        recipient_type: str = "ALL_DONORS",
        donor_ids: Iterable[int] = (),
    ) -> SendReport:
        """Send a staff-written message to all or selected donors of an appeal."""
        require(self.session, sender_id, "communication:send")
        channel = (channel or "").strip().upper()
        recipient_type = (recipient_type or "").strip().upper()
        donor_ids = [int(x) for x in donor_ids or ()]
        errors: Dict[str, str] = {}
        if channel not in CHANNELS:
            errors["channel"] = f"must be one of {', '.join(CHANNELS)}"
        if not (message or "").strip():
            errors["message"] = "is required"
        if recipient_type not in RECIPIENT_TYPES:
            errors["recipient_type"] = f"must be one of {', '.join(RECIPIENT_TYPES)}"
        elif recipient_type == "SELECTED_DONORS" and not donor_ids:
            errors["donor_ids"] = "at least one donor is required"
        if channel == "EMAIL" and not (subject or "").strip():
            errors["subject"] = "is required for email"
        if errors:
            raise ValidationError(errors)
        if self.session.get(Appeal, appeal_id) is None:
            raise AppealNotFound(appeal_id)

        donors = self.donors_for(appeal_id)
        if recipient_type == "SELECTED_DONORS":
            wanted = set(donor_ids)
            donors = [d for d in donors if d.id in wanted]
            missing = wanted - {d.id for d in donors}
            if missing:
                raise ValidationError({"donor_ids": f"not donors of appeal {appeal_id}: {sorted(missing)}"})
        out = OutgoingMessage(subject=(subject or "").strip() or None, body=message.strip())
        report = self._deliver(appeal_id, donors, channel, out, "MANUAL", fallback=False)
        log.info("appeal %s manual %s message: sent=%s failed=%s", appeal_id, channel, report.sent, report.failed)
        return report

    def history(self, appeal_id: Optional[int] = None, page: int = 1, limit: int = 10) -> List[Communication]:
        query = self.session.query(Communication)
        if appeal_id is not None:
            query = query.filter(Communication.appeal_id == appeal_id)
        page = max(int(page), 1)
        return (
            query.order_by(Communication.created_at.desc(), Communication.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

    # --- helpers ---
    def _pick(self, donor: Donor, key: str, fallback: bool):
        ch = self.channel(key)
        if ch is not None and ch.reaches(donor):
            return ch
        if fallback and key != FALLBACK_CHANNEL:
            ch = self.channel(FALLBACK_CHANNEL)
            if ch is not None and ch.reaches(donor):
                return ch
        return None

    def _deliver(self, appeal_id: int, donors: List[Donor], key: str, message: OutgoingMessage,
                 trigger: str, fallback: bool) -> SendReport:
        report = SendReport()
        for donor in donors:
            ch = self._pick(donor, key, fallback)
            used = ch.key if ch is not None else key
            error = None
            if ch is None:
                error = f"donor {donor.id} has no {key.lower()} address"
            else:
                try:
                    ch.send(ch.address_of(donor), message)
                except ChannelError as e:
                    error = str(e)
            if error:
                log.error("appeal %s: delivery to donor %s via %s failed: %s", appeal_id, donor.id, used, error)
                report.failed += 1
                report.failures.append(error)
            else:
                report.sent += 1
            self.session.add(Communication(
                appeal_id=appeal_id,
                donor_id=donor.id,
                channel=used,
                subject=message.subject,
                message=message.body,
                status='FAILED' if error else 'SENT',
                trigger=trigger,
                error=error,
                created_at=now_utc(),
            ))
        self.session.commit()
        return report
