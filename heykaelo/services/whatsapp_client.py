"""Outbound WhatsApp messages through the Meta WhatsApp Cloud API.

Used for everything the assistant says outside a webhook reply: owner
alerts about new booking requests, approval/rejection notices and
appointment reminders.  Callers treat a failed send as non-fatal.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Any

import httpx

from heykaelo.config import (
    WHATSAPP_ACCESS_TOKEN,
    WHATSAPP_BASE_URL,
    WHATSAPP_PHONE_NUMBER_ID,
)
from heykaelo.services.metrics import metrics

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10.0


class WhatsAppAPIError(Exception):
    """Raised when the Cloud API rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class WhatsAppClient:
    def __init__(
        self,
        phone_number_id: str | None = None,
        access_token: str | None = None,
        base_url: str | None = None,
    ):
        self._phone_number_id = phone_number_id or WHATSAPP_PHONE_NUMBER_ID
        self._access_token = access_token or WHATSAPP_ACCESS_TOKEN
        self._client = httpx.Client(
            base_url=base_url or WHATSAPP_BASE_URL,
            headers={
                "Authorization": f"Bearer {self._access_token}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._phone_number_id and self._access_token)

    def _call(self, method: str, path: str, operation: str, **kwargs: Any) -> dict[str, Any]:
        if not self.is_configured:
            raise WhatsAppAPIError("WhatsApp Cloud API credentials are not configured.")
        try:
            with metrics.track("whatsapp", operation):
                response = self._client.request(method, path, **kwargs)
                if response.status_code >= 400:
                    raise WhatsAppAPIError(
                        f"Meta API error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                return response.json()
        except httpx.HTTPError as exc:
            raise WhatsAppAPIError(f"Meta API unreachable: {exc}") from exc

    def send_message(self, to: str, body: str) -> dict[str, Any]:
        """Send a plain text message to *to* (any phone format)."""
        clean_to = re.sub(r"\D", "", str(to))
        data = self._call(
            "POST",
            f"/{self._phone_number_id}/messages",
            "POST /messages",
            json={
                "messaging_product": "whatsapp",
                "to": clean_to,
                "type": "text",
                "text": {"body": body},
            },
        )
        logger.info("WhatsApp message sent to %s", clean_to)
        return data

    def get_media_url(self, media_id: str) -> str | None:
        """Resolve an inbound media id (e.g. a signature photo) to its URL."""
        data = self._call("GET", f"/{media_id}", "GET /media")
        return data.get("url")


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: WhatsAppClient | None = None
_client_lock = threading.Lock()


def get_whatsapp_client() -> WhatsAppClient:
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                _client = WhatsAppClient()
    return _client
