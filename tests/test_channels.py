import os
import sys
from types import SimpleNamespace

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
import pytest
from telebot import apihelper

from appealdesk.channels import mail, registry, telegram
from appealdesk.channels.base import ChannelError, OutgoingMessage
from appealdesk.channels.sms import SmsChannel


class FakeSMTP:
    instances = []

    def __init__(self, host, port, timeout=None):
        self.host, self.port = host, port
        self.logged_in = None
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        self.logged_in = user

    def sendmail(self, sender, to, body):
        self.sent.append((sender, to, body))


class BrokenSMTP(FakeSMTP):
    def __init__(self, host, port, timeout=None):
        raise ConnectionRefusedError("connection refused")


class FakeBot:
    def __init__(self, errors):
        self.errors = list(errors)
        self.sent = []

    def send_message(self, chat_id, text):
        if self.errors:
            raise self.errors.pop(0)
        self.sent.append((chat_id, text))


def telegram_error(code):
    return apihelper.ApiTelegramException(
        'sendMessage', SimpleNamespace(status_code=code, reason='x'),
        {'error_code': code, 'description': 'error'},
    )


donor = SimpleNamespace(email=' asha@example.org ', phone='', telegram_chat_id=1001)


def test_registry_loads_builtin_channels():
    keys = {c.key for c in registry.all_channels()}
    assert keys == {'EMAIL', 'TELEGRAM', 'SMS', 'WHATSAPP'}
    assert registry.get('email') is mail.channel
    assert registry.get('fax') is None


def test_email_channel_sends_over_smtp(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(mail.smtplib, 'SMTP', FakeSMTP)
    ch = mail.EmailChannel(host='smtp.test', port=2525, user='bot', password='pw', sender='desk@example.org')
    assert ch.address_of(donor) == 'asha@example.org'
    ch.send('asha@example.org', OutgoingMessage('Appeal Approved: Clinic', 'Thank you'))
    server = FakeSMTP.instances[0]
    assert (server.host, server.port, server.logged_in) == ('smtp.test', 2525, 'bot')
    sender, to, body = server.sent[0]
    assert to == ['asha@example.org']
    assert 'Subject: Appeal Approved: Clinic' in body


def test_email_channel_wraps_transport_errors(monkeypatch):
    monkeypatch.setattr(mail.smtplib, 'SMTP', BrokenSMTP)
    with pytest.raises(ChannelError):
        mail.EmailChannel(host='smtp.test').send('a@example.org', OutgoingMessage('s', 'b'))


def test_telegram_retries_rate_limits():
    ch = telegram.TelegramChannel(token='t', delay=0)
    ch._bot = FakeBot([telegram_error(429), telegram_error(502)])
    ch.send(ch.address_of(donor), OutgoingMessage('Subject', 'Body'))
    assert ch._bot.sent == [(1001, 'Subject\n\nBody')]


def test_telegram_does_not_retry_client_errors():
    ch = telegram.TelegramChannel(token='t', delay=0)
    ch._bot = FakeBot([telegram_error(403), telegram_error(403)])
    with pytest.raises(ChannelError):
        ch.send('1001', OutgoingMessage(None, 'Body'))
    # one error left unused: no second attempt
    assert len(ch._bot.errors) == 1


def test_telegram_without_token_fails():
    ch = telegram.TelegramChannel(token='')
    with pytest.raises(ChannelError):
        ch.send('1001', OutgoingMessage(None, 'Body'))


def test_phone_channels_need_a_number():
    assert not SmsChannel().reaches(donor)
    assert SmsChannel().address_of(SimpleNamespace(phone='+91 98450')) == '+91 98450'
