"""Shared test fixtures for the HeyKaelo test suite."""

from __future__ import annotations

import os
import uuid
from unittest.mock import MagicMock

import pytest


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("ANTHROPIC_API_KEY", "test-anthropic-key-123")
    os.environ.setdefault("DATABASE_URL", "sqlite://")
    os.environ.setdefault("BUSINESS_TIMEZONE", "Africa/Johannesburg")
    os.environ.pop("DEFAULT_BUSINESS_ID", None)


@pytest.fixture
def mock_http_response():
    """Factory fixture for creating mock httpx responses."""

    def _make(data: dict, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        return mock

    return _make


# ── Datastore ────────────────────────────────────────────────────────


@pytest.fixture
def session_factory():
    """A fresh in-memory SQLite database per test."""
    from heykaelo.db.database import build_engine, build_session_factory, init_db

    engine = build_engine("sqlite://")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def sessions(session_factory):
    from heykaelo.services.session_store import SessionStore

    return SessionStore(session_factory)


@pytest.fixture
def profiles(session_factory):
    from heykaelo.services.profiles import ProfileRepository

    return ProfileRepository(session_factory)


@pytest.fixture
def bookings(session_factory):
    from heykaelo.services.bookings import BookingRepository

    return BookingRepository(session_factory)


@pytest.fixture
def make_profile(profiles):
    """Factory fixture inserting a business profile and returning it."""
    counter = iter(range(1, 1000))

    def _make(**overrides):
        n = next(counter)
        payload = {
            "id": str(uuid.uuid4()),
            "phone_number": f"2782000{n:04d}",
            "business_name": f"Test Shop {n}",
            "slug": f"test-shop-{n}",
            "role_category": "hybrid",
            "role_type": "Barber",
            "approval_required": True,
        }
        payload.update(overrides)
        return profiles.upsert_profile(payload)

    return _make


@pytest.fixture
def mock_whatsapp():
    """A WhatsApp client stand-in that records sends."""
    from heykaelo.services.whatsapp_client import WhatsAppClient

    client = MagicMock(spec=WhatsAppClient)
    client.is_configured = True
    client.send_message.return_value = {"messages": [{"id": "wamid.test"}]}
    return client


@pytest.fixture
def mock_calendar():
    from heykaelo.services.calendar_client import GoogleCalendarClient

    client = MagicMock(spec=GoogleCalendarClient)
    client.get_availability.return_value = "Availability for Tue 17 Mar 2026 (09:00-17:00):\n  The whole day is free."
    client.create_event.return_value = {"success": True, "link": "https://calendar.google.com/event?eid=abc"}
    return client
