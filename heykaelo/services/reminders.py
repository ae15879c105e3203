"""Background sender for appointment reminders.

A daemon thread wakes every ``REMINDER_INTERVAL_SECONDS`` and sends each
pending reminder whose time has come.  Reminders of bookings that are no
longer approved are cancelled instead; failed sends stay pending with
``attempt_count``/``last_error`` bumped so the next pass retries them, until
``REMINDER_MAX_ATTEMPTS`` failures mark the reminder failed.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from heykaelo.config import REMINDER_INTERVAL_SECONDS, REMINDER_MAX_ATTEMPTS
from heykaelo.dates import format_local
from heykaelo.db.models import BookingStatus, ReminderStatus
from heykaelo.services.bookings import REMINDER_24H, BookingRepository, DueReminder
from heykaelo.services.profiles import ProfileRepository
from heykaelo.services.whatsapp_client import WhatsAppAPIError, WhatsAppClient

logger = logging.getLogger(__name__)


def reminder_message(reminder: DueReminder, business_name: str) -> str:
    booking = reminder.booking
    time_str = format_local(booking.start_time, "%H:%M")
    if reminder.type == REMINDER_24H:
        return (
            f"Hi {booking.name}! 👋 Just a friendly reminder from {business_name} that you're "
            f"booked in for tomorrow at {time_str}. We're looking forward to seeing you. Sharp! 🚀"
        )
    return (
        f"Aweh {booking.name}! Just a quick heads-up that your appointment with {business_name} "
        f"is coming up today at {time_str}. See you soon! Sharp."
    )


class ReminderRunner:
    def __init__(
        self,
        bookings: BookingRepository,
        profiles: ProfileRepository,
        notifier: WhatsAppClient,
        *,
        interval_seconds: float = REMINDER_INTERVAL_SECONDS,
        max_attempts: int = REMINDER_MAX_ATTEMPTS,
    ) -> None:
        self._bookings = bookings
        self._profiles = profiles
        self._notifier = notifier
        self._interval = interval_seconds
        self._max_attempts = max_attempts
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self, now: datetime | None = None) -> int:
        """Process every due reminder.  Returns the number sent."""
        sent = 0
        for reminder in self._bookings.due_reminders(now):
            booking = reminder.booking
            if booking.status != BookingStatus.APPROVED.value:
                self._bookings.mark_reminder(reminder.id, ReminderStatus.CANCELLED)
                continue

            business = self._profiles.get(booking.business_id)
            message = reminder_message(reminder, business.business_name if business else "the shop")
            try:
                self._notifier.send_message(booking.phone, message)
            except WhatsAppAPIError as e:
                logger.error("Failed to send reminder #%d: %s", reminder.id, e)
                gave_up = reminder.attempt_count + 1 >= self._max_attempts
                if gave_up:
                    logger.warning("Giving up on reminder #%d after %d attempts", reminder.id, self._max_attempts)
                self._bookings.mark_reminder(
                    reminder.id, ReminderStatus.FAILED if gave_up else None, error=str(e),
                )
                continue

            self._bookings.mark_reminder(reminder.id, ReminderStatus.SENT)
            logger.info("Sent reminder (%s) to %s", reminder.type, booking.phone)
            sent += 1
        return sent

    # ── Thread lifecycle ─────────────────────────────────────────────

    def start(self) -> None:
        def _loop():
            while not self._stop.wait(self._interval):
                try:
                    self.run_once()
                except Exception:
                    logger.exception("Reminder pass failed")

        self._stop.clear()
        self._thread = threading.Thread(target=_loop, daemon=True, name="reminder-runner")
        self._thread.start()
        logger.info("Reminder runner started (interval=%ss)", self._interval)

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
