"""E-mail channel (SMTP)."""
import logging
import smtplib
from email.mime.text import MIMEText

from appealdesk import settings
from .base import Channel, ChannelError, OutgoingMessage

log = logging.getLogger(__name__)


class EmailChannel(Channel):
    key = "EMAIL"

    def __init__(self, host=None, port=None, user=None, password=None, sender=None):
        self.host = host or settings.SMTP_HOST
        self.port = port or settings.SMTP_PORT
        self.user = user if user is not None else settings.SMTP_USER
        self.password = password if password is not None else settings.SMTP_PASSWORD
        self.sender = sender or settings.SMTP_FROM

    def address_of(self, donor):
        return (getattr(donor, "email", None) or "").strip() or None

    def send(self, address: str, message: OutgoingMessage) -> None:
        msg = MIMEText(message.body, "plain", "utf-8")
        msg["Subject"] = message.subject or ""
        msg["From"] = self.sender
        msg["To"] = address
        try:
            with smtplib.SMTP(self.host, self.port, timeout=10) as server:
                server.starttls()
                if self.user:
                    server.login(self.user, self.password)
                server.sendmail(self.sender, [address], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise ChannelError(f"email to {address} failed: {e}") from e
        log.info("email sent to %s: %s", address, message.subject)


channel = EmailChannel()
