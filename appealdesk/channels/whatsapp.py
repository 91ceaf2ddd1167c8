"""WhatsApp channel. Logged only, like :mod:`.sms`."""
import logging

from .base import Channel, OutgoingMessage

log = logging.getLogger(__name__)


class WhatsAppChannel(Channel):
    key = "WHATSAPP"

    def address_of(self, donor):
        return (getattr(donor, "phone", None) or "").strip() or None

    def send(self, address: str, message: OutgoingMessage) -> None:
        log.info("whatsapp to %s: %s", address, message.body)


channel = WhatsAppChannel()
