"""Idempotency ledger for inbound webhook deliveries."""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from heykaelo.db.models import WebhookEvent

logger = logging.getLogger(__name__)


class WebhookEventLedger:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def claim(self, message_id: str) -> bool:
        """Record *message_id*.  ``False`` means it was already processed."""
        try:
            with self._session_factory.begin() as db:
                db.add(WebhookEvent(message_id=message_id))
        except IntegrityError:
            logger.warning("Duplicate message ignored: %s", message_id)
            return False
        return True
