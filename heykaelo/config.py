"""Centralized configuration for the HeyKaelo WhatsApp assistant.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/heykaelo/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/heykaelo/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /heykaelo/{name} (AWS)."
    )


def _optional_env(name: str, default: str | None = None) -> str | None:
    """Like ``_require_env`` but returns *default* instead of raising."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value
    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value
    return default


# ── LLM ─────────────────────────────────────────────────────────────
ANTHROPIC_API_KEY: str = _require_env("ANTHROPIC_API_KEY")
MODEL_NAME: str = os.getenv("MODEL_NAME", "claude-sonnet-4-5")
MODEL_TIMEOUT_SECONDS: float = float(os.getenv("MODEL_TIMEOUT_SECONDS", "30"))
MAX_TOOL_ROUNDS: int = int(os.getenv("MAX_TOOL_ROUNDS", "5"))

# Per-phone chat sessions held in memory
CHAT_SESSION_MAX_ENTRIES: int = int(os.getenv("CHAT_SESSION_MAX_ENTRIES", "1000"))
CHAT_SESSION_TTL_SECONDS: float = float(os.getenv("CHAT_SESSION_TTL_SECONDS", str(6 * 60 * 60)))
CHAT_HISTORY_LIMIT: int = int(os.getenv("CHAT_HISTORY_LIMIT", "30"))

# ── Database ────────────────────────────────────────────────────────
DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./heykaelo.db")

# ── Business defaults ───────────────────────────────────────────────
DEFAULT_BUSINESS_ID: str | None = os.getenv("DEFAULT_BUSINESS_ID") or None
BUSINESS_TIMEZONE: str = os.getenv("BUSINESS_TIMEZONE", "Africa/Johannesburg")
BUSINESS_START_HOUR: int = 9
BUSINESS_END_HOUR: int = 17
SLOT_DURATION_MINUTES: int = 60

# ── Google Calendar ─────────────────────────────────────────────────
# Service-account JSON (the whole document, not a path).  The calendar
# is treated as offline when this is missing.
GOOGLE_SERVICE_ACCOUNT: str | None = _optional_env("GOOGLE_SERVICE_ACCOUNT")
GOOGLE_CALENDAR_ID: str = os.getenv("GOOGLE_CALENDAR_ID", "primary")
GOOGLE_CALENDAR_BASE_URL: str = "https://www.googleapis.com/calendar/v3"

# ── WhatsApp Cloud API ──────────────────────────────────────────────
WHATSAPP_PHONE_NUMBER_ID: str | None = _optional_env("WHATSAPP_PHONE_NUMBER_ID")
WHATSAPP_ACCESS_TOKEN: str | None = _optional_env("WHATSAPP_ACCESS_TOKEN")
WHATSAPP_VERIFY_TOKEN: str | None = _optional_env("WHATSAPP_VERIFY_TOKEN")
WHATSAPP_BASE_URL: str = "https://graph.facebook.com/v19.0"

# ── Reminders ───────────────────────────────────────────────────────
REMINDERS_ENABLED: bool = os.getenv("REMINDERS_ENABLED", "false").lower() == "true"
REMINDER_INTERVAL_SECONDS: int = int(os.getenv("REMINDER_INTERVAL_SECONDS", "60"))
REMINDER_MAX_ATTEMPTS: int = int(os.getenv("REMINDER_MAX_ATTEMPTS", "5"))

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "3001"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
