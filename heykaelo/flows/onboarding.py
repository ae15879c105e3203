"""Onboarding questionnaire for new business owners.

The root step asks how the owner works and picks one of three branches.
Each branch is an intro message plus an ordered list of questions; the
answer to the last question finalizes the business profile.

    root ─┬─ 1 / fixed        → professional:  name → role → working days
          ├─ 2 / mobile       → tradesperson:  name → trade → service area
          └─ 3 / both / mixed → hybrid:        name → service → service area

The intro is never a resting step: it is sent together with the first
question, and the session points straight at that question.  Answers are
accepted as typed (trimmed); a step's ``options`` only remaps known
shortcuts and lets anything else through unchanged.
"""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from heykaelo.db.models import RoleCategory
from heykaelo.flows.session import (
    ONBOARDING_KEYS,
    ConversationSession,
    Onboarding,
    onboarding_patch,
    session_mode,
)
from heykaelo.services.profiles import IdentityService, ProfileRepository
from heykaelo.services.session_store import SessionStore

logger = logging.getLogger(__name__)

ROOT_STEP = "root"

ROOT_MESSAGE = (
    "Aweh! I'm Kaelo. 👋 I'll help you manage your bookings.\n\n"
    "How do you usually work?\n"
    "1. *Fixed Appointments* (Work from a set location/times)\n"
    "2. *On-the-Go / Call-outs* (You go to customers or take walk-ins)\n"
    "3. *Both / Mixed* (Handle both scheduled and mobile jobs)\n\n"
    "Reply *1*, *2*, or *3*."
)

UNKNOWN_TRANSITION_REPLY = "⚠️ Error: Unknown State transition."
FINALIZE_FAILED_REPLY = (
    "Eish, I couldn't save your business just now. 🙈 Please send *setup* to try again."
)

SLUG_ATTEMPTS = 3


@dataclass(frozen=True)
class Step:
    id: str
    message: str
    save_field: str
    options: dict[str, str] = field(default_factory=dict)

    def read(self, text: str) -> str:
        value = text.strip()
        return self.options.get(value.lower(), value)


@dataclass(frozen=True)
class Branch:
    category: RoleCategory
    intro: str
    steps: tuple[Step, ...]
    closing: str

    def after(self, step_id: str) -> Step | None:
        """The step that follows *step_id*, or ``None`` after the last one."""
        ids = [s.id for s in self.steps]
        position = ids.index(step_id)
        return self.steps[position + 1] if position + 1 < len(self.steps) else None


# ── Flow definition ──────────────────────────────────────────────────

BRANCHES: dict[RoleCategory, Branch] = {
    RoleCategory.PROFESSIONAL: Branch(
        category=RoleCategory.PROFESSIONAL,
        intro=(
            "Great choice. 👍 I’ll act as your digital receptionist, checking your calendar "
            "and gathering client info so you can focus on your work."
        ),
        steps=(
            Step("pro_business_name", "What’s the name of your practice or firm?", "business_name"),
            Step(
                "pro_role_type",
                "What type of professional are you?\n(e.g., GP, Physio, Consultant, Psychologist, Other)",
                "role_type",
            ),
            Step(
                "pro_working_days",
                "Sharp! Last step: When are you usually available for sessions? (e.g., Mon-Fri 08:00–17:00)",
                "working_days",
            ),
        ),
        closing=(
            "You’re all set! ✅ I've set up your assistant. When clients text this number, "
            "I'll handle the booking and registration for you. Sharp! 🤙"
        ),
    ),
    RoleCategory.TRADESPERSON: Branch(
        category=RoleCategory.TRADESPERSON,
        intro=(
            "Nice choice! 🛠️ I'll help you avoid double-bookings and gather job details "
            "(like photos and location) before you even talk to the customer."
        ),
        steps=(
            Step(
                "trade_business_name",
                "What's your business name?\n(e.g., Sipho's Sparky Services)",
                "business_name",
            ),
            Step(
                "trade_role_type",
                "Sharp. What trade/service are you in?\n(e.g., Electrician, Plumber, Barber)",
                "role_type",
            ),
            Step(
                "trade_service_area",
                "Which areas do you mostly cover? (e.g., Sandton, Soweto, Randburg)",
                "service_area",
            ),
        ),
        closing=(
            "You’re ready to hustle! 🚀 When customers text, I'll ask for a photo of the issue "
            "and their location. I'll send it all here, and you just reply #ok to accept. Sharp! 🤙"
        ),
    ),
    RoleCategory.HYBRID: Branch(
        category=RoleCategory.HYBRID,
        intro=(
            "The best of both worlds! 🚀 I'll handle your fixed bookings AND help you "
            "qualify call-out jobs on the move."
        ),
        steps=(
            Step("hybrid_business_name", "What’s your business name?", "business_name"),
            Step(
                "hybrid_role_type",
                "What service do you provide?\n(e.g., Beauty Salon, Tailor, Sound Engineer)",
                "role_type",
            ),
            Step(
                "hybrid_service_area",
                "Where are you based or which areas do you cover? (e.g., Sandton & Midrand)",
                "service_area",
            ),
        ),
        closing=(
            "You're all set with the best of both! 🚀 I'll handle your fixed bookings AND help "
            "you qualify new jobs on the move. Let's get to work. Sharp! 🤙"
        ),
    ),
}

ROOT_TRANSITIONS: dict[str, RoleCategory] = {
    "1": RoleCategory.PROFESSIONAL,
    "fixed": RoleCategory.PROFESSIONAL,
    "2": RoleCategory.TRADESPERSON,
    "mobile": RoleCategory.TRADESPERSON,
    "3": RoleCategory.HYBRID,
    "both": RoleCategory.HYBRID,
    "mixed": RoleCategory.HYBRID,
}

_STEP_INDEX: dict[str, tuple[Branch, Step]] = {
    step.id: (branch, step) for branch in BRANCHES.values() for step in branch.steps
}


def build_slug(business_name: str) -> str:
    """URL-safe slug with a random 0-999 suffix, e.g. ``joe-s-coffee-417``."""
    base = re.sub(r"[^a-z0-9]+", "-", business_name.lower()).strip("-") or "business"
    return f"{base}-{random.randint(0, 999)}"


class OnboardingFlow:
    """Drives one owner through the questionnaire, one message at a time."""

    def __init__(
        self,
        sessions: SessionStore,
        identities: IdentityService,
        profiles: ProfileRepository,
    ) -> None:
        self._sessions = sessions
        self._identities = identities
        self._profiles = profiles

    def start(self, phone: str) -> str:
        """Put *phone* at the root step and return the root question."""
        patch, remove = onboarding_patch(ROOT_STEP, {})
        self._sessions.upsert(phone, patch, remove=remove)
        return ROOT_MESSAGE

    def advance(self, phone: str, text: str, session: ConversationSession | None) -> str:
        mode = session_mode(session)
        step_id, data = (mode.step, mode.data) if isinstance(mode, Onboarding) else (ROOT_STEP, {})
        logger.info("Onboarding step %s for %s", step_id, phone)

        if step_id == ROOT_STEP:
            return self._choose_branch(phone, text, data)

        located = _STEP_INDEX.get(step_id)
        if located is None:
            logger.error("Onboarding for %s is at unknown step %r", phone, step_id)
            return UNKNOWN_TRANSITION_REPLY

        branch, step = located
        data[step.save_field] = step.read(text)

        following = branch.after(step.id)
        if following is None:
            return self._finalize(phone, branch, data)

        patch, remove = onboarding_patch(following.id, data)
        self._sessions.upsert(phone, patch, remove=remove)
        return following.message

    # ── Internal ─────────────────────────────────────────────────────

    def _choose_branch(self, phone: str, text: str, data: dict) -> str:
        category = ROOT_TRANSITIONS.get((text or "").strip().lower())
        if category is None:
            return ROOT_MESSAGE

        branch = BRANCHES[category]
        first = branch.steps[0]
        patch, remove = onboarding_patch(first.id, data)
        self._sessions.upsert(phone, patch, remove=remove)
        return f"{branch.intro}\n\n{first.message}"

    def _finalize(self, phone: str, branch: Branch, data: dict) -> str:
        name = data.get("business_name") or ""
        fields = {
            "business_name": name,
            "role_category": branch.category.value,
            "role_type": data.get("role_type"),
            "service_area": data.get("service_area"),
            "working_days": data.get("working_days"),
            # Only fixed-appointment businesses get auto-approval
            "approval_required": branch.category is not RoleCategory.PROFESSIONAL,
        }

        user_id = self._identities.create_or_find_user(phone)
        business_id = self._save_profile(user_id, phone, name, fields)
        if business_id is None:
            logger.error("Onboarding for %s could not save a business profile", phone)
            self._sessions.upsert(phone, remove=ONBOARDING_KEYS)
            return FINALIZE_FAILED_REPLY

        self._sessions.upsert(phone, remove=ONBOARDING_KEYS, business_id=business_id)
        logger.info("Onboarding finalized for %s as %s (%s)", phone, business_id, branch.category.value)
        return branch.closing

    def _save_profile(self, user_id: str, phone: str, name: str, fields: dict) -> str | None:
        """Upsert the owner's profile, drawing a new slug suffix on a clash.

        Falls back to updating whatever profile already holds *phone*.
        Returns the business id, or ``None`` when nothing was saved.
        """
        for attempt in range(1, SLUG_ATTEMPTS + 1):
            payload = {"id": user_id, "phone_number": phone, "slug": build_slug(name), **fields}
            try:
                return self._profiles.upsert_profile(payload).id
            except IntegrityError as e:
                logger.warning("Profile upsert for %s clashed (attempt %d): %s", phone, attempt, e)
            except SQLAlchemyError as e:
                logger.error("Profile upsert failed for %s: %s", phone, e)
                break

        logger.error("Falling back to updating the profile of %s by phone", phone)
        try:
            self._profiles.update_by_phone(phone, fields)
        except SQLAlchemyError as e:
            logger.error("Profile update by phone failed for %s: %s", phone, e)
        owned = self._profiles.list_by_owner_phone(phone)
        return owned[0].id if owned else None
