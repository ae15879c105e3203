"""LangChain tools the booking assistant can call.

``check_availability`` returns a human-readable string the LLM can relay to
the customer; ``create_booking_request`` returns a small dict describing
the pending booking (or ``{"error": ...}``).  Neither raises: failures are
turned into values the model can explain.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from langchain_core.tools import BaseTool, tool
from sqlalchemy.exc import SQLAlchemyError

from heykaelo.dates import format_local, now_local, parse_datetime
from heykaelo.db.models import BookingStatus
from heykaelo.services.bookings import BookingRecord, BookingRepository
from heykaelo.services.calendar_client import GoogleCalendarClient
from heykaelo.services.profiles import BusinessProfile, ProfileRepository
from heykaelo.services.whatsapp_client import WhatsAppAPIError, WhatsAppClient

logger = logging.getLogger(__name__)

AVAILABILITY_ERROR = (
    "Sorry, there was an error checking availability. The calendar system is "
    "having a technical delay; offer to take a priority booking request instead."
)
NO_BUSINESS_ERROR = "System Error: No valid business profile found."
SAVE_ERROR = "Failed to save booking. Please try one more time."


def _clean_phone(phone: str) -> str:
    return re.sub(r"\D", "", (phone or "").replace("whatsapp:", ""))


def owner_alert(record: BookingRecord) -> str:
    when = format_local(record.start_time)
    return (
        f"Aweh Boss! New Booking Request from {record.name} for {when}.\n\n"
        f'Reply "#{record.id} ok" to confirm or "#{record.id} no" to reject.'
    )


class BookingToolkit:
    """Tool implementations plus their LangChain wrappers.

    The wrappers are rebuilt per turn by ``as_tools(business_id)`` so each
    call lands on the business the customer is talking to.
    """

    def __init__(
        self,
        calendar: GoogleCalendarClient,
        profiles: ProfileRepository,
        bookings: BookingRepository,
        notifier: WhatsAppClient | None = None,
    ) -> None:
        self._calendar = calendar
        self._profiles = profiles
        self._bookings = bookings
        self._notifier = notifier

    # ── Tool 1: Check availability ───────────────────────────────────

    def check_availability(self, date: str) -> str:
        try:
            return self._calendar.get_availability(date)
        except Exception:
            logger.exception("Availability check failed for %r", date)
            return AVAILABILITY_ERROR

    # ── Tool 2: Create a pending booking request ─────────────────────

    def create_booking_request(
        self,
        name: str,
        datetime_text: str,
        phone: str,
        *,
        business_id: str | None = None,
    ) -> dict[str, Any]:
        business = self._profiles.resolve_business(business_id)
        if business is None:
            logger.error("Booking request from %s with no business to attach it to", phone)
            return {"error": NO_BUSINESS_ERROR}

        start = parse_datetime(datetime_text)
        if start is None:
            # Books "now" rather than rejecting the request
            logger.warning("Unparseable booking datetime %r; falling back to now", datetime_text)
            start = now_local()

        clean_phone = _clean_phone(phone)
        try:
            customer_id = self._bookings.find_or_create_customer(business.id, name, clean_phone)
            record = self._bookings.create_booking({
                "business_id": business.id,
                "customer_id": customer_id,
                "customer_name": name,
                "customer_phone": clean_phone,
                "start_time": start,
                "status": BookingStatus.PENDING.value,
            })
        except SQLAlchemyError:
            logger.exception("Failed to save booking for %s", clean_phone)
            return {"error": SAVE_ERROR}

        self._alert_owner(business, record)
        return record.projection()

    def _alert_owner(self, business: BusinessProfile, record: BookingRecord) -> None:
        if self._notifier is None or not business.phone_number:
            return
        try:
            self._notifier.send_message(business.phone_number, owner_alert(record))
        except WhatsAppAPIError as e:
            logger.warning("Failed to alert owner of booking #%d: %s", record.id, e)

    # ── LangChain wrappers ───────────────────────────────────────────

    def as_tools(self, business_id: str | None = None) -> list[BaseTool]:
        toolkit = self

        @tool
        def check_availability(date: str) -> str:
            """Check which one-hour slots are free on a given day (09:00-17:00).

            Args:
                date: The day to check, e.g. "today", "tomorrow", "friday"
                      or "2026-03-17".
            """
            return toolkit.check_availability(date)

        @tool
        def create_booking_request(name: str, datetime: str, phone: str) -> dict:
            """Send a booking request to the business owner for approval.

            Args:
                name: The customer's full name.
                datetime: The agreed date and time, ideally ISO 8601
                          (e.g. "2026-03-17T10:00").
                phone: The customer's WhatsApp number.
            """
            return toolkit.create_booking_request(name, datetime, phone, business_id=business_id)

        return [check_availability, create_booking_request]
