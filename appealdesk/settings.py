"""Environment configuration for appealdesk.

Env:
  DATABASE_URL (default sqlite:///appealdesk.db), TZ (default Asia/Kolkata),
  APPROVER_ROLES, OVERRIDE_ROLES (comma separated role names),
  DEFAULT_CHANNEL (EMAIL|TELEGRAM|SMS|WHATSAPP),
  SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASSWORD, SMTP_FROM,
  TELEGRAM_TOKEN (optional, enables the telegram channel),
  OUTBOX_MAX_ATTEMPTS, OUTBOX_RETRY_MINUTES, LOG_LEVEL
"""

import os
from datetime import datetime

import pytz


def _csv(name: str, default: str) -> list:
    return [x.strip() for x in os.getenv(name, default).split(",") if x.strip()]


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///appealdesk.db")
TZ_NAME = os.getenv("TZ", "Asia/Kolkata")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

APPROVER_ROLES = _csv("APPROVER_ROLES", "super_admin,mission_authority")
OVERRIDE_ROLES = _csv("OVERRIDE_ROLES", "super_admin")

DEFAULT_CHANNEL = os.getenv("DEFAULT_CHANNEL", "EMAIL").upper()

SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
SMTP_FROM = os.getenv("SMTP_FROM", "noreply@appealdesk.local")

TELEGRAM_TOKEN = os.getenv("TELEGRAM_TOKEN")

OUTBOX_MAX_ATTEMPTS = int(os.getenv("OUTBOX_MAX_ATTEMPTS", "5"))
OUTBOX_RETRY_MINUTES = int(os.getenv("OUTBOX_RETRY_MINUTES", "5"))

LOCAL_TZ = pytz.timezone(TZ_NAME)


def now_local() -> datetime:
    return datetime.now(LOCAL_TZ)
