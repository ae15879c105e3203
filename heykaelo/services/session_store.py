"""Persistence for per-phone conversation sessions.

Every write is read-then-merge inside one transaction: the stored metadata
bag is loaded, the patch is merged into it at the top level, removed keys
are dropped, and the result is written back.  Two writers touching
different keys of the same bag therefore never erase each other's data
(writers for the same phone are additionally serialised by the dispatcher).
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import sessionmaker

from heykaelo.db.models import ConversationState, utcnow
from heykaelo.flows.session import ConversationSession

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def _to_session(row: ConversationState) -> ConversationSession:
    return ConversationSession(
        phone_number=row.phone_number,
        business_id=row.business_id,
        intent=row.intent or "general",
        metadata=dict(row.metadata_ or {}),
        updated_at=row.updated_at,
    )


class SessionStore:
    """Read/merge/write access to ``conversation_states``."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def get(self, phone: str) -> ConversationSession | None:
        with self._session_factory() as db:
            row = db.scalar(
                select(ConversationState).where(ConversationState.phone_number == phone)
            )
            return _to_session(row) if row else None

    def upsert(
        self,
        phone: str,
        patch: dict[str, Any] | None = None,
        *,
        remove: Iterable[str] = (),
        business_id: str | None = _UNSET,
        last_action: str | None = None,
    ) -> ConversationSession:
        """Merge *patch* into the session for *phone*, creating it if needed.

        ``business_id`` is only written when passed explicitly (``None``
        clears it).
        """
        with self._session_factory.begin() as db:
            row = db.scalar(
                select(ConversationState)
                .where(ConversationState.phone_number == phone)
                .with_for_update()
            )
            if row is None:
                row = ConversationState(phone_number=phone, metadata_={})
                db.add(row)

            merged = dict(row.metadata_ or {})
            merged.update(patch or {})
            for key in remove:
                merged.pop(key, None)
            # Assign a fresh dict so the JSON column is flagged dirty
            row.metadata_ = merged
            row.updated_at = utcnow()
            if business_id is not _UNSET:
                row.business_id = business_id
            if last_action is not None:
                row.last_action = last_action
            db.flush()
            return _to_session(row)

    def reset(self, phone: str) -> bool:
        """Delete the session row for *phone*.  Administrative use only."""
        with self._session_factory.begin() as db:
            result = db.execute(
                delete(ConversationState).where(ConversationState.phone_number == phone)
            )
        removed = result.rowcount > 0
        logger.info("Session reset for %s (removed=%s)", phone, removed)
        return removed

    def list_states(self, limit: int = 50) -> list[ConversationSession]:
        """Most recently updated sessions first."""
        with self._session_factory() as db:
            rows = db.scalars(
                select(ConversationState)
                .order_by(ConversationState.updated_at.desc())
                .limit(limit)
            )
            return [_to_session(r) for r in rows]
