"""Best-effort parsing of the dates and times customers type on WhatsApp.

Understands ISO 8601, ``today``/``tomorrow``, weekday names (next
occurrence, today included), ``17 March``-style dates and clock times such
as ``10am``, ``2:30 pm`` or ``14:00``.  Anything else yields ``None`` and the
caller decides on a fallback.
"""

from __future__ import annotations

import re
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from heykaelo.config import BUSINESS_START_HOUR, BUSINESS_TIMEZONE

WEEKDAYS = {
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

_ISO_DATE_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
_MERIDIEM_TIME_RE = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b", re.IGNORECASE)
_CLOCK_TIME_RE = re.compile(r"\b(\d{1,2}):(\d{2})\b")
_DATE_FORMATS = ("%d %B %Y", "%d %B", "%B %d", "%d %b %Y", "%d %b", "%d/%m/%Y")


def business_tz() -> ZoneInfo:
    return ZoneInfo(BUSINESS_TIMEZONE)


def now_local() -> datetime:
    return datetime.now(business_tz())


def as_utc(value: datetime | None) -> datetime | None:
    """Normalise *value* to aware UTC (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _parse_iso(text: str, tz: ZoneInfo) -> datetime | None:
    if "T" not in text.upper() and ":" not in text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00").replace("z", "+00:00"))
    except ValueError:
        return None
    return parsed.replace(tzinfo=tz) if parsed.tzinfo is None else parsed


def parse_time(text: str) -> time | None:
    """Extract a clock time from free text."""
    match = _MERIDIEM_TIME_RE.search(text)
    if match:
        hour = int(match.group(1)) % 12
        minute = int(match.group(2) or 0)
        if match.group(3).lower() == "pm":
            hour += 12
    else:
        match = _CLOCK_TIME_RE.search(text)
        if not match:
            return None
        hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        return None
    return time(hour, minute)


def resolve_day(description: str, *, now: datetime | None = None) -> date | None:
    """Turn a day description into a calendar date, or ``None``."""
    now = now or now_local()
    text = (description or "").strip().lower()
    if not text:
        return None

    iso = _parse_iso(text, now.tzinfo or business_tz())
    if iso is not None:
        return iso.astimezone(now.tzinfo).date() if now.tzinfo else iso.date()

    if "tomorrow" in text:
        return now.date() + timedelta(days=1)
    if "today" in text or "tonight" in text:
        return now.date()

    for name, weekday in WEEKDAYS.items():
        if name in text:
            return now.date() + timedelta(days=(weekday - now.weekday()) % 7)

    match = _ISO_DATE_RE.search(text)
    if match:
        try:
            return date.fromisoformat(match.group(1))
        except ValueError:
            return None

    stripped = _CLOCK_TIME_RE.sub("", _MERIDIEM_TIME_RE.sub("", text)).strip(" ,")
    for fmt in _DATE_FORMATS:
        try:
            parsed = datetime.strptime(stripped, fmt)
        except ValueError:
            continue
        year = parsed.year if "%Y" in fmt else now.year
        return parsed.date().replace(year=year)
    return None


def parse_datetime(text: str, *, now: datetime | None = None) -> datetime | None:
    """Parse *text* into an aware datetime in the business timezone.

    A day without a time lands on the opening hour; a time without a day
    is taken as today.
    """
    now = now or now_local()
    tz = now.tzinfo or business_tz()
    raw = (text or "").strip()
    if not raw:
        return None

    iso = _parse_iso(raw, tz)
    if iso is not None:
        return iso

    day = resolve_day(raw, now=now)
    clock = parse_time(raw)
    if day is None and clock is None:
        return None
    return datetime.combine(day or now.date(), clock or time(BUSINESS_START_HOUR), tzinfo=tz)


def format_local(value: datetime, fmt: str = "%a %d %b %Y at %H:%M") -> str:
    """Render *value* in the business timezone, e.g. ``Tue 17 Mar 2026 at 10:00``."""
    return as_utc(value).astimezone(business_tz()).strftime(fmt)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    """Start and end of *day* in the business timezone."""
    start = datetime.combine(day, time(0), tzinfo=business_tz())
    return start, start + timedelta(days=1)
