"""Tests for the booking assistant's tools."""

from __future__ import annotations

from datetime import datetime, timedelta

from heykaelo.dates import business_tz, now_local
from heykaelo.services.calendar_client import CalendarAPIError
from heykaelo.services.whatsapp_client import WhatsAppAPIError
from heykaelo.tools.booking import (
    AVAILABILITY_ERROR,
    NO_BUSINESS_ERROR,
    BookingToolkit,
    owner_alert,
)


def _toolkit(mock_calendar, profiles, bookings, notifier=None) -> BookingToolkit:
    return BookingToolkit(mock_calendar, profiles, bookings, notifier)


# ── check_availability ───────────────────────────────────────────────


class TestCheckAvailability:
    def test_relays_calendar_summary(self, mock_calendar, profiles, bookings):
        toolkit = _toolkit(mock_calendar, profiles, bookings)
        assert "whole day is free" in toolkit.check_availability("tomorrow")
        mock_calendar.get_availability.assert_called_once_with("tomorrow")

    def test_calendar_failure_becomes_error_string(self, mock_calendar, profiles, bookings):
        mock_calendar.get_availability.side_effect = CalendarAPIError("Calendar system offline.")
        toolkit = _toolkit(mock_calendar, profiles, bookings)
        assert toolkit.check_availability("not-a-date") == AVAILABILITY_ERROR


# ── create_booking_request ───────────────────────────────────────────


class TestCreateBookingRequest:
    def test_creates_pending_booking_for_only_business(self, mock_calendar, profiles, bookings, make_profile):
        make_profile()
        toolkit = _toolkit(mock_calendar, profiles, bookings)

        result = toolkit.create_booking_request("Alice", "tomorrow 10am", "27821234567")

        assert set(result) == {"id", "name", "datetime", "phone", "status"}
        assert result["name"] == "Alice"
        assert result["phone"] == "27821234567"
        assert result["status"] == "pending"
        start = datetime.fromisoformat(result["datetime"]).astimezone(business_tz())
        assert start.date() == now_local().date() + timedelta(days=1)
        assert start.hour == 10

    def test_prefers_session_business(self, mock_calendar, profiles, bookings, make_profile):
        make_profile(context="We cut hair.")
        chosen = make_profile()
        toolkit = _toolkit(mock_calendar, profiles, bookings)

        result = toolkit.create_booking_request("Bob", "friday 2pm", "27820001111", business_id=chosen.id)

        assert bookings.get_booking_by_id(result["id"]).business_id == chosen.id

    def test_falls_back_to_business_with_context(self, mock_calendar, profiles, bookings, make_profile):
        with_context = make_profile(context="Open Saturdays.")
        make_profile(context="")
        toolkit = _toolkit(mock_calendar, profiles, bookings)

        result = toolkit.create_booking_request("Bob", "friday 2pm", "27820001111")

        assert bookings.get_booking_by_id(result["id"]).business_id == with_context.id

    def test_no_business_returns_error(self, mock_calendar, profiles, bookings):
        toolkit = _toolkit(mock_calendar, profiles, bookings)
        assert toolkit.create_booking_request("Alice", "tomorrow 10am", "27821234567") == {
            "error": NO_BUSINESS_ERROR,
        }

    def test_unparseable_datetime_falls_back_to_now(self, mock_calendar, profiles, bookings, make_profile):
        make_profile()
        toolkit = _toolkit(mock_calendar, profiles, bookings)

        before = now_local()
        result = toolkit.create_booking_request("Alice", "whenever suits", "27821234567")

        start = datetime.fromisoformat(result["datetime"])
        assert abs(start - before) < timedelta(minutes=1)

    def test_strips_whatsapp_prefix_and_reuses_customer(self, mock_calendar, profiles, bookings, make_profile):
        make_profile()
        toolkit = _toolkit(mock_calendar, profiles, bookings)

        first = toolkit.create_booking_request("Alice", "tomorrow 10am", "whatsapp:+27 82 123 4567")
        second = toolkit.create_booking_request("Alice", "tomorrow 11am", "27821234567")

        assert first["phone"] == "27821234567"
        one = bookings.get_booking_by_id(first["id"])
        two = bookings.get_booking_by_id(second["id"])
        assert one.customer_id == two.customer_id

    def test_alerts_owner(self, mock_calendar, profiles, bookings, make_profile, mock_whatsapp):
        owner = make_profile()
        toolkit = _toolkit(mock_calendar, profiles, bookings, mock_whatsapp)

        result = toolkit.create_booking_request("Alice", "tomorrow 10am", "27821234567")

        to, body = mock_whatsapp.send_message.call_args[0]
        assert to == owner.phone_number
        assert f'"#{result["id"]} ok"' in body

    def test_owner_alert_failure_keeps_booking(self, mock_calendar, profiles, bookings, make_profile, mock_whatsapp):
        make_profile()
        mock_whatsapp.send_message.side_effect = WhatsAppAPIError("Meta API error 500")
        toolkit = _toolkit(mock_calendar, profiles, bookings, mock_whatsapp)

        result = toolkit.create_booking_request("Alice", "tomorrow 10am", "27821234567")

        assert result["status"] == "pending"


class TestLangChainWrappers:
    def test_tools_are_bound_to_business(self, mock_calendar, profiles, bookings, make_profile):
        make_profile(context="Default shop")
        chosen = make_profile()
        toolkit = _toolkit(mock_calendar, profiles, bookings)
        check, create = toolkit.as_tools(chosen.id)

        assert check.name == "check_availability"
        assert create.name == "create_booking_request"
        result = create.invoke({"name": "Alice", "datetime": "tomorrow 10am", "phone": "27821234567"})
        assert bookings.get_booking_by_id(result["id"]).business_id == chosen.id

    def test_owner_alert_text(self, bookings, make_profile):
        business = make_profile()
        record = bookings.create_booking({
            "business_id": business.id,
            "customer_name": "Alice",
            "customer_phone": "27821234567",
            "start_time": datetime(2026, 3, 17, 10, 0, tzinfo=business_tz()),
        })
        assert owner_alert(record).startswith("Aweh Boss! New Booking Request from Alice for Tue 17 Mar 2026 at 10:00.")
