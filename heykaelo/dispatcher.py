"""Inbound message routing: one WhatsApp message in, one reply string out.

Order of decisions for a message from ``from_phone``:

  1. Owner shortcodes (``#today``, ``#summary``, ``#<id> ok|no``) from a
     phone that owns a business profile.
  2. Business resolution: ``join <slug>`` / bare slug → dedicated channel
     number → sticky session business → ``DEFAULT_BUSINESS_ID``.
  3. ``setup``/``start`` or an active onboarding → onboarding flow.
  4. Active registration → registration flow.
  5. Otherwise the booking assistant; a booking made with a professional
     business starts registration and appends its first question.

Messages for the same phone are handled one at a time; different phones
run in parallel.  ``handle`` never raises.
"""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from heykaelo.agent import BookingAssistant
from heykaelo.config import DEFAULT_BUSINESS_ID
from heykaelo.dates import day_bounds, format_local, now_local
from heykaelo.db.models import RoleCategory
from heykaelo.flows.onboarding import OnboardingFlow
from heykaelo.flows.registration import RegistrationFlow
from heykaelo.flows.session import (
    ONBOARDING_KEYS,
    ConversationSession,
    Onboarding,
    Registration,
    session_mode,
)
from heykaelo.services.approvals import ApprovalResult, ApprovalService
from heykaelo.services.bookings import BookingRepository
from heykaelo.services.profiles import BusinessProfile, ProfileRepository
from heykaelo.services.session_store import SessionStore

logger = logging.getLogger(__name__)

HICCUP_REPLY = "Oops! I had a little hiccup. Please try sending that again."
NO_BUSINESS_REPLY = (
    "Configuration Error: I don't know which business you are trying to reach. "
    "Please use the specific booking link provided by the business."
)
NO_BOOKINGS_TODAY_REPLY = "Aweh! No confirmed appointments for today across your businesses. 🤙"
UNKNOWN_BOOKING_REPLY = (
    "I couldn't find that specific booking ID among your businesses. Please check the number."
)

_SHORTCODE_RE = re.compile(r"^#(\d+)\s+(ok|no)\b", re.IGNORECASE)
_ONBOARDING_COMMAND_RE = re.compile(r"^(setup|start)", re.IGNORECASE)
_SUMMARY_COMMANDS = ("#today", "#summary")


def normalize_phone(phone: str | None) -> str:
    """Digits only: ``whatsapp:+27 82 123`` → ``2782123``.

    Ids without any digits (chat simulator sessions) are kept as given.
    """
    digits = re.sub(r"\D", "", phone or "")
    return digits or (phone or "").strip()


class KeyedLocks:
    """One mutex per key, dropped again once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key → [lock, holders + waiters]
        self._locks: dict[str, list] = {}

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class Dispatcher:
    def __init__(
        self,
        sessions: SessionStore,
        profiles: ProfileRepository,
        bookings: BookingRepository,
        onboarding: OnboardingFlow,
        registration: RegistrationFlow,
        assistant: BookingAssistant,
        approvals: ApprovalService,
        *,
        default_business_id: str | None = DEFAULT_BUSINESS_ID,
    ) -> None:
        self._sessions = sessions
        self._profiles = profiles
        self._bookings = bookings
        self._onboarding = onboarding
        self._registration = registration
        self._assistant = assistant
        self._approvals = approvals
        self._default_business_id = default_business_id
        self._locks = KeyedLocks()

    def handle(
        self,
        from_phone: str,
        body: str,
        media_url: str | None = None,
        to_phone: str | None = None,
    ) -> str:
        """Route one inbound message and return the reply to send back."""
        phone = normalize_phone(from_phone)
        try:
            with self._locks.hold(phone):
                return self._route(phone, (body or "").strip(), media_url, normalize_phone(to_phone))
        except Exception:
            logger.exception("Failed to handle message from %s", phone)
            return HICCUP_REPLY

    def reset(self, phone: str) -> bool:
        """Forget everything about *phone*: stored session and in-memory chat."""
        phone = normalize_phone(phone)
        with self._locks.hold(phone):
            self._assistant.reset(phone)
            return self._sessions.reset(phone)

    # ── Routing ──────────────────────────────────────────────────────

    def _route(self, phone: str, text: str, media_url: str | None, to_phone: str) -> str:
        logger.info("Incoming from %s (to=%s, media=%s): %r", phone, to_phone or "-", bool(media_url), text)

        if text.startswith("#"):
            owned = self._profiles.list_by_owner_phone(phone)
            if owned:
                reply = self._owner_command(owned, text)
                if reply is not None:
                    return reply

        session = self._sessions.get(phone)
        slug_profile = self._match_slug(text)
        if slug_profile is not None:
            # Switching business always leaves onboarding
            session = self._sessions.upsert(phone, remove=ONBOARDING_KEYS, business_id=slug_profile.id)
            business_id = slug_profile.id
            logger.info("Resolved business by slug for %s: %s", phone, business_id)
        else:
            business_id = self._resolve_business(session, to_phone)

        mode = session_mode(session)
        if slug_profile is None and (isinstance(mode, Onboarding) or _ONBOARDING_COMMAND_RE.match(text)):
            if isinstance(mode, Onboarding):
                return self._onboarding.advance(phone, text, session)
            logger.info("Starting onboarding for %s", phone)
            return self._onboarding.start(phone)

        if isinstance(mode, Registration):
            reply = self._registration.advance(phone, text, session, mode.booking_id, media_url)
            if reply is not None:
                return reply

        if business_id is None:
            logger.warning("Unresolved business for %s (to=%s)", phone, to_phone or "-")
            return NO_BUSINESS_REPLY

        answer = self._assistant.reply(phone, text, business_id)
        if answer.booking_ids:
            first_question = self._maybe_start_registration(phone, business_id, answer.booking_ids[-1])
            if first_question:
                return f"{answer.text}\n\n{first_question}"
        return answer.text

    def _match_slug(self, text: str) -> BusinessProfile | None:
        parts = text.lower().split()
        if "join" in parts and parts.index("join") + 1 < len(parts):
            candidate = parts[parts.index("join") + 1]
        elif len(parts) == 1:
            candidate = parts[0]
        else:
            return None
        if len(candidate) <= 2:
            return None
        return self._profiles.get_by_slug(candidate)

    def _resolve_business(self, session: ConversationSession | None, to_phone: str) -> str | None:
        if to_phone:
            channel_business = self._profiles.business_for_channel(to_phone)
            if channel_business:
                return channel_business
        if session is not None and session.business_id:
            return session.business_id
        return self._default_business_id

    def _maybe_start_registration(self, phone: str, business_id: str, booking_id: int) -> str | None:
        profile = self._profiles.get(business_id)
        if profile is None or profile.role_category != RoleCategory.PROFESSIONAL.value:
            return None
        logger.info("Starting registration for %s (booking #%d)", phone, booking_id)
        return self._registration.start(phone, booking_id)

    # ── Owner commands ───────────────────────────────────────────────

    def _owner_command(self, owned: list[BusinessProfile], text: str) -> str | None:
        if text.lower() in _SUMMARY_COMMANDS:
            return self._daily_summary(owned)

        match = _SHORTCODE_RE.match(text)
        if match is None:
            return None
        booking_id, approve = int(match.group(1)), match.group(2).lower() == "ok"
        names = {p.id: p.business_name for p in owned}
        outcome = self._approvals.respond(booking_id, approve, business_ids=names.keys())

        if outcome.result is ApprovalResult.NOT_FOUND:
            return UNKNOWN_BOOKING_REPLY
        booking = outcome.booking
        if outcome.result is ApprovalResult.ALREADY_DECIDED:
            return f"Aweh! This booking (#{booking_id}) is already {booking.status}."
        return (
            f"Sharp! Booking for {booking.name} (#{booking_id}) at "
            f"{names.get(booking.business_id, 'your shop')} has been {booking.status}."
        )

    def _daily_summary(self, owned: list[BusinessProfile]) -> str:
        start, end = day_bounds(now_local().date())
        sections = []
        for profile in owned:
            daily = self._bookings.bookings_between(profile.id, start, end)
            if daily:
                lines = "\n".join(f"• {format_local(b.start_time, '%H:%M')}: {b.name}" for b in daily)
                sections.append(f"\n*{profile.business_name}:*\n{lines}\n")
        if not sections:
            return NO_BOOKINGS_TODAY_REPLY
        return "📅 *Today's Appointments*\n" + "".join(sections) + "\nHave a sharp day! 🤙"
