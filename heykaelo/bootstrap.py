"""Wires the datastore, external clients, flows and dispatcher together.

Shared by the FastAPI lifespan (``server.py``) and the CLI (``main.py``).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from heykaelo.agent import BookingAssistant
from heykaelo.db.database import build_engine, build_session_factory, init_db
from heykaelo.dispatcher import Dispatcher
from heykaelo.flows.onboarding import OnboardingFlow
from heykaelo.flows.registration import RegistrationFlow
from heykaelo.services.approvals import ApprovalService
from heykaelo.services.bookings import BookingRepository
from heykaelo.services.calendar_client import GoogleCalendarClient, get_calendar_client
from heykaelo.services.profiles import IdentityService, ProfileRepository
from heykaelo.services.reminders import ReminderRunner
from heykaelo.services.session_store import SessionStore
from heykaelo.services.webhook_events import WebhookEventLedger
from heykaelo.services.whatsapp_client import WhatsAppClient, get_whatsapp_client
from heykaelo.tools.booking import BookingToolkit

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    engine: Engine
    session_factory: sessionmaker
    sessions: SessionStore
    profiles: ProfileRepository
    bookings: BookingRepository
    approvals: ApprovalService
    dispatcher: Dispatcher
    reminders: ReminderRunner
    webhook_events: WebhookEventLedger
    whatsapp: WhatsAppClient


def build_context(
    database_url: str | None = None,
    *,
    calendar: GoogleCalendarClient | None = None,
    whatsapp: WhatsAppClient | None = None,
) -> AppContext:
    """Create tables if needed and build every long-lived component."""
    engine = build_engine(database_url)
    init_db(engine)
    session_factory = build_session_factory(engine)

    calendar = calendar or get_calendar_client()
    whatsapp = whatsapp or get_whatsapp_client()
    if not whatsapp.is_configured:
        logger.warning("WhatsApp Cloud API not configured; outbound messages will fail")

    sessions = SessionStore(session_factory)
    profiles = ProfileRepository(session_factory)
    bookings = BookingRepository(session_factory)
    approvals = ApprovalService(bookings, calendar, whatsapp)

    toolkit = BookingToolkit(calendar, profiles, bookings, whatsapp)
    dispatcher = Dispatcher(
        sessions,
        profiles,
        bookings,
        OnboardingFlow(sessions, IdentityService(session_factory), profiles),
        RegistrationFlow(sessions),
        BookingAssistant(toolkit, profiles, sessions),
        approvals,
    )
    return AppContext(
        engine=engine,
        session_factory=session_factory,
        sessions=sessions,
        profiles=profiles,
        bookings=bookings,
        approvals=approvals,
        dispatcher=dispatcher,
        reminders=ReminderRunner(bookings, profiles, whatsapp),
        webhook_events=WebhookEventLedger(session_factory),
        whatsapp=whatsapp,
    )
