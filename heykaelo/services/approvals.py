"""Owner decisions on pending booking requests.

Approving a booking puts it in the Google Calendar, queues its reminder and
tells the customer; rejecting only tells the customer.  Calendar and
WhatsApp failures are logged and never undo the status change.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Collection
from dataclasses import dataclass

from heykaelo.dates import format_local
from heykaelo.db.models import BookingStatus
from heykaelo.services.bookings import BookingRecord, BookingRepository
from heykaelo.services.calendar_client import GoogleCalendarClient
from heykaelo.services.whatsapp_client import WhatsAppAPIError, WhatsAppClient

logger = logging.getLogger(__name__)


class ApprovalResult(str, enum.Enum):
    UPDATED = "updated"
    NOT_FOUND = "not_found"
    ALREADY_DECIDED = "already_decided"


@dataclass
class ApprovalOutcome:
    result: ApprovalResult
    booking: BookingRecord | None = None
    calendar_link: str | None = None


def customer_notice(booking: BookingRecord) -> str:
    when = format_local(booking.start_time)
    if booking.status == BookingStatus.APPROVED.value:
        return f"Aweh! Your booking for {when} has been confirmed. See you then! 🤙"
    return (
        f"Hi, unfortunately we couldn't make that time work for your booking on {when}. "
        "Please try another slot."
    )


class ApprovalService:
    def __init__(
        self,
        bookings: BookingRepository,
        calendar: GoogleCalendarClient,
        notifier: WhatsAppClient | None = None,
    ) -> None:
        self._bookings = bookings
        self._calendar = calendar
        self._notifier = notifier

    def respond(
        self,
        booking_id: int,
        approve: bool,
        *,
        business_ids: Collection[str] | None = None,
    ) -> ApprovalOutcome:
        """Approve or reject a pending booking.

        With *business_ids* the booking must belong to one of them (an
        owner can only decide on their own bookings).
        """
        booking = self._bookings.get_booking_by_id(booking_id)
        if booking is None or (business_ids is not None and booking.business_id not in business_ids):
            return ApprovalOutcome(ApprovalResult.NOT_FOUND)
        if booking.status != BookingStatus.PENDING.value:
            return ApprovalOutcome(ApprovalResult.ALREADY_DECIDED, booking)

        status = BookingStatus.APPROVED if approve else BookingStatus.REJECTED
        decided = self._bookings.decide(booking_id, status)
        if decided is None:
            logger.info("Booking #%d was decided concurrently", booking_id)
            return ApprovalOutcome(ApprovalResult.ALREADY_DECIDED, self._bookings.get_booking_by_id(booking_id))
        booking = decided
        logger.info("Booking #%d %s", booking_id, status.value)

        link = None
        if approve:
            event = self._calendar.create_event(booking.name, booking.start_time, booking.phone)
            if event.get("success"):
                link = event.get("link")
                logger.info("Added booking #%d to Google Calendar: %s", booking_id, link)
            else:
                logger.error("Failed to add booking #%d to Google Calendar", booking_id)
            self._bookings.schedule_reminders(booking_id, booking.start_time)

        self._notify_customer(booking)
        return ApprovalOutcome(ApprovalResult.UPDATED, booking, link)

    def _notify_customer(self, booking: BookingRecord) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.send_message(booking.phone, customer_notice(booking))
        except WhatsAppAPIError as e:
            logger.error("Failed to notify customer of booking #%d: %s", booking.id, e)
