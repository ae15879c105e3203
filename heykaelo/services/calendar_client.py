"""HTTP client for the Google Calendar API v3 with retry logic and timeout
handling.

Google Calendar API docs: https://developers.google.com/calendar/api/v3/reference
Requests are authorised with a service-account access token (minted and
refreshed through ``google-auth``).  The calendar owner shares their
calendar with the service account; ``primary`` then means that calendar.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import date, datetime, timedelta
from datetime import time as dt_time
from typing import Any

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from heykaelo.config import (
    BUSINESS_END_HOUR,
    BUSINESS_START_HOUR,
    GOOGLE_CALENDAR_BASE_URL,
    GOOGLE_CALENDAR_ID,
    GOOGLE_SERVICE_ACCOUNT,
    SLOT_DURATION_MINUTES,
)
from heykaelo.dates import business_tz, now_local, resolve_day
from heykaelo.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0

CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]


class CalendarAPIError(Exception):
    """Raised when a Google Calendar call fails after all retries."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


def _event_bounds(event: dict[str, Any], tz) -> tuple[datetime, datetime]:
    """Start/end of a Google event; all-day events span whole days."""

    def _read(edge: dict[str, Any]) -> datetime:
        if "dateTime" in edge:
            return datetime.fromisoformat(edge["dateTime"].replace("Z", "+00:00"))
        return datetime.combine(date.fromisoformat(edge["date"]), datetime.min.time(), tzinfo=tz)

    return _read(event["start"]), _read(event["end"])


def _is_busy(slot_start: datetime, slot_end: datetime, busy: list[tuple[datetime, datetime]]) -> bool:
    return any(slot_start < end and slot_end > start for start, end in busy)


class GoogleCalendarClient:
    """Thin wrapper around the Calendar events API with automatic retries.

    Either ``service_account_info`` (parsed JSON key) or a fixed ``token``
    must be provided; without both the client reports itself offline and
    every call raises ``CalendarAPIError``.
    """

    def __init__(
        self,
        service_account_info: dict[str, Any] | None = None,
        calendar_id: str | None = None,
        *,
        token: str | None = None,
        base_url: str | None = None,
    ):
        self._calendar_id = calendar_id or GOOGLE_CALENDAR_ID
        self._static_token = token
        self._credentials = None
        if service_account_info and not token:
            self._credentials = service_account.Credentials.from_service_account_info(
                service_account_info, scopes=CALENDAR_SCOPES,
            )
        self._credentials_lock = threading.Lock()
        self._client = httpx.Client(
            base_url=base_url or GOOGLE_CALENDAR_BASE_URL,
            headers={"Content-Type": "application/json"},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._static_token or self._credentials)

    # ── Internal helpers ─────────────────────────────────────────────

    def _access_token(self) -> str:
        if self._static_token:
            return self._static_token
        if self._credentials is None:
            raise CalendarAPIError("Calendar system offline.")
        with self._credentials_lock:
            if not self._credentials.valid:
                try:
                    self._credentials.refresh(GoogleAuthRequest())
                except GoogleAuthError as exc:
                    raise CalendarAPIError(f"Calendar auth failed: {exc}") from exc
            return self._credentials.token

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute an HTTP request with exponential-backoff retries."""
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        operation = f"{method} {path.split('?')[0]}"
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = self._client.request(
                    method,
                    path,
                    params=params,
                    json=json_body,
                    headers=headers,
                )
                if response.status_code >= 500:
                    raise CalendarAPIError(
                        f"Server error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                if response.status_code >= 400:
                    raise CalendarAPIError(
                        f"Client error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                metrics.record_success(
                    "calendar", operation, latency_ms=(time.perf_counter() - t0) * 1000,
                )
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                metrics.record_failure("calendar", operation, error_type=type(exc).__name__)
                logger.warning(
                    "Calendar API attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt,
                    MAX_RETRIES,
                    type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except CalendarAPIError as exc:
                metrics.record_failure("calendar", operation, error_type=str(exc.status_code))
                if exc.status_code and exc.status_code >= 500:
                    last_error = exc
                    logger.warning(
                        "Calendar API server error on attempt %d/%d. Retrying…",
                        attempt,
                        MAX_RETRIES,
                    )
                else:
                    raise

            backoff = INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1))
            time.sleep(backoff)

        raise CalendarAPIError(
            f"Calendar API request failed after {MAX_RETRIES} retries: {last_error}"
        )

    # ── Public API methods ───────────────────────────────────────────

    def list_events(self, time_min: datetime, time_max: datetime) -> list[dict[str, Any]]:
        """Events overlapping [*time_min*, *time_max*), recurring ones expanded."""
        data = self._request(
            "GET",
            f"/calendars/{self._calendar_id}/events",
            params={
                "timeMin": time_min.isoformat(),
                "timeMax": time_max.isoformat(),
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        return data.get("items", [])

    def insert_event(self, body: dict[str, Any]) -> dict[str, Any]:
        return self._request(
            "POST", f"/calendars/{self._calendar_id}/events", json_body=body,
        )

    def day_slots(self, day: date) -> tuple[list[tuple[datetime, datetime]], list[tuple[datetime, datetime]]]:
        """Split the business day into (free, busy) one-hour slots."""
        tz = business_tz()
        day_start = datetime.combine(day, dt_time(BUSINESS_START_HOUR), tzinfo=tz)
        day_end = day_start.replace(hour=BUSINESS_END_HOUR)
        busy_events = [_event_bounds(e, tz) for e in self.list_events(day_start, day_end)]

        free: list[tuple[datetime, datetime]] = []
        busy: list[tuple[datetime, datetime]] = []
        cursor = day_start
        step = timedelta(minutes=SLOT_DURATION_MINUTES)
        while cursor + step <= day_end:
            slot = (cursor, cursor + step)
            (busy if _is_busy(*slot, busy_events) else free).append(slot)
            cursor += step
        return free, busy

    def get_availability(self, date_description: str) -> str:
        """Human-readable free/busy summary for the day described.

        Unreadable descriptions fall back to today.
        """
        day = resolve_day(date_description)
        note = ""
        if day is None:
            day = now_local().date()
            note = f'(Could not read "{date_description}" as a date, showing today.)\n'

        free, busy = self.day_slots(day)
        header = (
            f"{note}Availability for {day.strftime('%a %d %b %Y')} "
            f"({BUSINESS_START_HOUR:02d}:00-{BUSINESS_END_HOUR:02d}:00):"
        )
        if not busy:
            return f"{header}\n  The whole day is free."
        if not free:
            return f"{header}\n  Fully booked, no free slots."
        lines = [header, "  Free: " + ", ".join(s.strftime("%H:%M") for s, _ in free)]
        lines.append(
            "  Busy: " + ", ".join(f"{s.strftime('%H:%M')}-{e.strftime('%H:%M')}" for s, e in busy)
        )
        return "\n".join(lines)

    def create_event(self, name: str, start: datetime, phone: str) -> dict[str, Any]:
        """Put an approved booking in the calendar.

        Returns ``{"success": True, "link": ...}`` or ``{"error": ...}``.
        """
        tz_name = str(business_tz())
        end = start + timedelta(minutes=SLOT_DURATION_MINUTES)
        body = {
            "summary": f"Booking: {name}",
            "description": f"Phone: {phone}\nBooked via HeyKaelo",
            "start": {"dateTime": start.isoformat(), "timeZone": tz_name},
            "end": {"dateTime": end.isoformat(), "timeZone": tz_name},
        }
        try:
            event = self.insert_event(body)
        except CalendarAPIError as e:
            logger.error("Failed to create calendar event: %s", e)
            return {"error": "Failed to create calendar event."}
        return {"success": True, "link": event.get("htmlLink")}


# ── Module-level singleton (thread-safe) ────────────────────────────
_client: GoogleCalendarClient | None = None
_client_lock = threading.Lock()


def get_calendar_client() -> GoogleCalendarClient:
    """Return a module-level GoogleCalendarClient singleton.

    Uses double-checked locking so that the lock is only acquired during
    the first initialisation, not on every subsequent call.
    """
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                info = json.loads(GOOGLE_SERVICE_ACCOUNT) if GOOGLE_SERVICE_ACCOUNT else None
                if info is None:
                    logger.warning("GOOGLE_SERVICE_ACCOUNT not set; calendar is offline")
                _client = GoogleCalendarClient(info)
    return _client
