"""Conversation session values and the active-flow discriminator.

The persisted metadata bag keeps flat keys (``onboarding_active``,
``reg_step`` ...) so dashboards can read it directly.  Code should not poke
at those keys: ``session_mode`` turns the bag into exactly one of
``Idle``, ``Onboarding`` or ``Registration``, and the ``*_patch`` helpers
produce the writes for entering/leaving a mode.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

# ── Metadata keys ────────────────────────────────────────────────────
ONBOARDING_ACTIVE = "onboarding_active"
ONBOARDING_STEP = "onboarding_step"
ONBOARDING_DATA = "onboarding_data"

REGISTRATION_ACTIVE = "registration_active"
REG_STEP = "reg_step"
PREV_STEP = "prev_step"
REG_BOOKING_ID = "reg_booking_id"
REGISTRATION_DATA = "registration_data"
REGISTRATION_COMPLETE = "registration_complete"
LAST_REGISTRATION_DATA = "last_registration_data"

HISTORY = "history"

ONBOARDING_KEYS = (ONBOARDING_ACTIVE, ONBOARDING_STEP, ONBOARDING_DATA)
REGISTRATION_TRACKING_KEYS = (REG_STEP, PREV_STEP, REG_BOOKING_ID)


@dataclass
class ConversationSession:
    """Detached snapshot of a ``conversation_states`` row."""

    phone_number: str
    business_id: str | None = None
    intent: str = "general"
    metadata: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None


@dataclass(frozen=True)
class Idle:
    """No flow owns the session; messages go to the booking assistant."""


@dataclass(frozen=True)
class Onboarding:
    step: str
    data: dict[str, Any]


@dataclass(frozen=True)
class Registration:
    step: str
    prev_step: str | None
    booking_id: int | None
    data: dict[str, Any]


SessionMode = Union[Idle, Onboarding, Registration]


def session_mode(session: ConversationSession | None) -> SessionMode:
    """Classify *session* into its single active mode.

    Onboarding takes precedence if a legacy row carries both flags.
    """
    if session is None:
        return Idle()
    meta = session.metadata or {}
    if meta.get(ONBOARDING_ACTIVE) is True:
        return Onboarding(
            step=meta.get(ONBOARDING_STEP) or "root",
            data=dict(meta.get(ONBOARDING_DATA) or {}),
        )
    if meta.get(REGISTRATION_ACTIVE) is True:
        return Registration(
            step=meta.get(REG_STEP) or "REG_NAME",
            prev_step=meta.get(PREV_STEP),
            booking_id=meta.get(REG_BOOKING_ID),
            data=dict(meta.get(REGISTRATION_DATA) or {}),
        )
    return Idle()


def onboarding_patch(step: str, data: dict[str, Any]) -> tuple[dict[str, Any], tuple[str, ...]]:
    """Return ``(patch, remove)`` that puts the session into onboarding."""
    patch = {ONBOARDING_ACTIVE: True, ONBOARDING_STEP: step, ONBOARDING_DATA: dict(data)}
    return patch, (REGISTRATION_ACTIVE, *REGISTRATION_TRACKING_KEYS, REGISTRATION_DATA)


def registration_patch(
    step: str,
    prev_step: str | None,
    booking_id: int | None,
    data: dict[str, Any],
) -> tuple[dict[str, Any], tuple[str, ...]]:
    """Return ``(patch, remove)`` that puts the session into registration."""
    patch = {
        REGISTRATION_ACTIVE: True,
        REG_STEP: step,
        PREV_STEP: prev_step,
        REG_BOOKING_ID: booking_id,
        REGISTRATION_DATA: dict(data),
    }
    return patch, ONBOARDING_KEYS
