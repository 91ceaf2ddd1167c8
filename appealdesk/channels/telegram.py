"""Telegram channel for donors who shared a chat id."""
import logging
import time
from typing import Optional

from telebot import TeleBot, apihelper

from appealdesk import settings
from .base import Channel, ChannelError, OutgoingMessage

log = logging.getLogger(__name__)

RETRY_STATUS = (429, 500, 502, 503, 504)


class TelegramChannel(Channel):
    key = "TELEGRAM"

    def __init__(self, token: Optional[str] = None, attempts: int = 4, delay: float = 0.5):
        self.token = token if token is not None else settings.TELEGRAM_TOKEN
        self.attempts = attempts
        self.delay = delay
        self._bot: Optional[TeleBot] = None

    @property
    def bot(self) -> TeleBot:
        if self._bot is None:
            if not self.token:
                raise ChannelError("TELEGRAM_TOKEN is not configured")
            self._bot = TeleBot(self.token, parse_mode=None)
        return self._bot

    def address_of(self, donor):
        chat_id = getattr(donor, "telegram_chat_id", None)
        return str(chat_id) if chat_id else None

    def send(self, address: str, message: OutgoingMessage) -> None:
        text = f"{message.subject}\n\n{message.body}" if message.subject else message.body
        delay = self.delay
        last_error = None
        # backoff on rate limits and 5xx
        for _ in range(self.attempts):
            try:
                self.bot.send_message(int(address), text[:4000])
                log.info("telegram message sent to %s", address)
                return
            except apihelper.ApiTelegramException as e:
                last_error = e
                sc = getattr(e.result, "status_code", None)
                if sc not in RETRY_STATUS:
                    break
            except (ConnectionError, OSError) as e:
                last_error = e
            time.sleep(delay)
            delay *= 2
        raise ChannelError(f"telegram to {address} failed: {last_error}")


channel = TelegramChannel()
