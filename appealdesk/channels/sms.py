"""SMS channel.

No gateway is wired in yet; messages are only logged so the delivery
history stays complete while the provider contract is pending.
"""
import logging

from .base import Channel, OutgoingMessage

log = logging.getLogger(__name__)


class SmsChannel(Channel):
    key = "SMS"

    def address_of(self, donor):
        return (getattr(donor, "phone", None) or "").strip() or None

    def send(self, address: str, message: OutgoingMessage) -> None:
        log.info("sms to %s: %s", address, message.body[:160])


channel = SmsChannel()
