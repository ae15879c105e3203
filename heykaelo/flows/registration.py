"""Customer registration after a booking with a professional business.

Four linear steps collect a full name, ID number, medical aid and a photo of
the customer's signature.  Each call saves the answer to the question asked
on the *previous* call (``prev_step``) and then asks the next one, so a
step's answer is only committed on the following turn.  The signature step
is the exception: it is filled from the attached image, never from text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from heykaelo.flows.session import (
    LAST_REGISTRATION_DATA,
    ONBOARDING_KEYS,
    REGISTRATION_ACTIVE,
    REGISTRATION_COMPLETE,
    REGISTRATION_DATA,
    REGISTRATION_TRACKING_KEYS,
    ConversationSession,
    Registration,
    registration_patch,
    session_mode,
)
from heykaelo.services.session_store import SessionStore

logger = logging.getLogger(__name__)

FIRST_STEP = "REG_NAME"
SIGNATURE_STEP = "REG_CONSENT"
DONE = "DONE"
SIGNATURE_FIELD = "signature_url"


@dataclass(frozen=True)
class RegStep:
    message: str
    field: str
    next: str


REG_STEPS: dict[str, RegStep] = {
    "REG_NAME": RegStep(
        "Okie-dokie! Let's get you registered for the doctor. ✨\n\nWhat is your **Full Legal Name**?",
        "full_name",
        "REG_ID",
    ),
    "REG_ID": RegStep(
        "Gee whiz, thanks! Now, what is your **ID Number**?",
        "id_number",
        "REG_MEDICAL",
    ),
    "REG_MEDICAL": RegStep(
        "Got it. Which **Medical Aid** are you on?\n(Reply with the name or 'Private')",
        "medical_aid",
        "REG_CONSENT",
    ),
    "REG_CONSENT": RegStep(
        "Final Step: Please **sign on a piece of paper**, take a photo of your signature, "
        "and **send it to me here**. ✍️\n\n(This serves as your official medical consent signature).",
        SIGNATURE_FIELD,
        DONE,
    ),
}

SIGNATURE_PROMPT = (
    "⚠️ Please send a **photo of your signature** to complete the registration. "
    "You can just sign a paper and snap a clear pic! 📸"
)
COMPLETION_MESSAGE = (
    "✅ **Registration & Signature Received!**\n\n"
    "I've sent your file to the doctor. See you at your appointment! Fan-tas-tic! ✨🎈"
)


class RegistrationFlow:
    def __init__(self, sessions: SessionStore) -> None:
        self._sessions = sessions

    def start(self, phone: str, booking_id: int, message: str = "") -> str | None:
        """Enter registration for *booking_id* and return the first question."""
        fresh = ConversationSession(phone_number=phone)
        return self.advance(phone, message, fresh, booking_id)

    def advance(
        self,
        phone: str,
        message: str,
        session: ConversationSession | None,
        booking_id: int | None,
        media_url: str | None = None,
    ) -> str | None:
        """Save the previous answer, then ask the next question.

        Returns ``None`` when the session sits at a step this flow does not
        know; the caller treats that as "registration not applicable".
        """
        mode = session_mode(session)
        if isinstance(mode, Registration):
            current, prev, data = mode.step, mode.prev_step, mode.data
        else:
            current, prev, data = FIRST_STEP, None, {}

        if current != DONE and current not in REG_STEPS:
            logger.warning("Registration for %s at unknown step %r", phone, current)
            return None

        if prev in REG_STEPS:
            answered = REG_STEPS[prev]
            if answered.field == SIGNATURE_FIELD:
                if media_url:
                    data[SIGNATURE_FIELD] = media_url
            else:
                data[answered.field] = message

        if current == DONE or (current == SIGNATURE_STEP and media_url):
            return self._complete(phone, data, media_url)

        if current == SIGNATURE_STEP:
            # Text where a photo was expected: keep the answer just committed, stay put
            patch, remove = registration_patch(SIGNATURE_STEP, SIGNATURE_STEP, booking_id, data)
            self._sessions.upsert(phone, patch, remove=remove)
            return SIGNATURE_PROMPT

        step = REG_STEPS[current]
        patch, remove = registration_patch(step.next, current, booking_id, data)
        self._sessions.upsert(phone, patch, remove=remove)
        return step.message

    def _complete(self, phone: str, data: dict, media_url: str | None) -> str:
        if media_url:
            data[SIGNATURE_FIELD] = media_url
        self._sessions.upsert(
            phone,
            {
                REGISTRATION_ACTIVE: False,
                REGISTRATION_COMPLETE: True,
                LAST_REGISTRATION_DATA: data,
            },
            remove=(*REGISTRATION_TRACKING_KEYS, REGISTRATION_DATA, *ONBOARDING_KEYS),
        )
        logger.info("Registration finalized for %s: %s", phone, sorted(data))
        return COMPLETION_MESSAGE
