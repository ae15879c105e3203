"""Customers, booking requests and their reminders."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from heykaelo.dates import as_utc
from heykaelo.db.models import (
    Booking,
    BookingStatus,
    Customer,
    Reminder,
    ReminderStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

REMINDER_24H = "24h_before"


@dataclass
class BookingRecord:
    id: int
    business_id: str
    customer_id: int | None
    name: str
    phone: str
    start_time: datetime
    status: str
    created_at: datetime | None = None

    def projection(self) -> dict[str, Any]:
        """The shape handed back to the assistant's tool loop."""
        return {
            "id": self.id,
            "name": self.name,
            "datetime": self.start_time.isoformat(),
            "phone": self.phone,
            "status": self.status,
        }


@dataclass
class DueReminder:
    id: int
    type: str
    attempt_count: int
    booking: BookingRecord


def _to_record(row: Booking) -> BookingRecord:
    return BookingRecord(
        id=row.id,
        business_id=row.business_id,
        customer_id=row.customer_id,
        name=row.customer_name,
        phone=row.customer_phone,
        start_time=as_utc(row.start_time),
        status=row.status,
        created_at=as_utc(row.created_at),
    )


class BookingRepository:
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    # ── Customers ────────────────────────────────────────────────────

    def find_or_create_customer(self, business_id: str, name: str, phone: str) -> int:
        """Return the customer id for (*business_id*, *phone*)."""
        with self._session_factory() as db:
            existing = db.scalar(
                select(Customer.id).where(
                    Customer.business_id == business_id, Customer.phone == phone,
                )
            )
        if existing is not None:
            return existing

        try:
            with self._session_factory.begin() as db:
                customer = Customer(
                    business_id=business_id,
                    name=name,
                    phone=phone,
                    notes="Created via WhatsApp Booking",
                )
                db.add(customer)
                db.flush()
                return customer.id
        except IntegrityError:
            # Lost a race with another turn for the same customer
            with self._session_factory() as db:
                return db.scalar(
                    select(Customer.id).where(
                        Customer.business_id == business_id, Customer.phone == phone,
                    )
                )

    # ── Bookings ─────────────────────────────────────────────────────

    def create_booking(self, payload: dict[str, Any]) -> BookingRecord:
        """Insert a booking.  *payload* keys mirror the ``bookings`` columns."""
        with self._session_factory.begin() as db:
            row = Booking(
                business_id=payload["business_id"],
                customer_id=payload.get("customer_id"),
                customer_name=payload["customer_name"],
                customer_phone=payload["customer_phone"],
                start_time=as_utc(payload["start_time"]),
                status=payload.get("status", BookingStatus.PENDING.value),
            )
            db.add(row)
            db.flush()
            logger.info("Created booking #%d for %s", row.id, row.customer_phone)
            return _to_record(row)

    def get_booking_by_id(self, booking_id: int) -> BookingRecord | None:
        with self._session_factory() as db:
            row = db.get(Booking, booking_id)
            return _to_record(row) if row else None

    def set_status(self, booking_id: int, status: BookingStatus) -> BookingRecord | None:
        with self._session_factory.begin() as db:
            row = db.get(Booking, booking_id)
            if row is None:
                return None
            row.status = status.value
            db.flush()
            return _to_record(row)

    def decide(self, booking_id: int, status: BookingStatus) -> BookingRecord | None:
        """Move a *pending* booking to *status*.

        A single conditional UPDATE, so of two concurrent deciders only one
        wins.  Returns ``None`` when the booking was no longer pending.
        """
        with self._session_factory.begin() as db:
            changed = db.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.status == BookingStatus.PENDING.value)
                .values(status=status.value)
            ).rowcount
            if not changed:
                return None
            return _to_record(db.get(Booking, booking_id))

    def bookings_between(
        self,
        business_id: str,
        start: datetime,
        end: datetime,
        *,
        status: BookingStatus = BookingStatus.APPROVED,
    ) -> list[BookingRecord]:
        with self._session_factory() as db:
            rows = db.scalars(
                select(Booking)
                .where(
                    Booking.business_id == business_id,
                    Booking.status == status.value,
                    Booking.start_time >= as_utc(start),
                    Booking.start_time < as_utc(end),
                )
                .order_by(Booking.start_time)
            )
            return [_to_record(r) for r in rows]

    # ── Reminders ────────────────────────────────────────────────────

    def schedule_reminders(self, booking_id: int, start_time: datetime) -> int:
        """Queue the 24h-before reminder if it is still in the future."""
        remind_at = as_utc(start_time) - timedelta(hours=24)
        if remind_at <= utcnow():
            return 0
        with self._session_factory.begin() as db:
            db.add(Reminder(booking_id=booking_id, scheduled_time=remind_at, type=REMINDER_24H))
        return 1

    def due_reminders(self, now: datetime | None = None) -> list[DueReminder]:
        now = as_utc(now or utcnow())
        with self._session_factory() as db:
            rows = db.execute(
                select(Reminder, Booking)
                .join(Booking, Booking.id == Reminder.booking_id)
                .where(
                    Reminder.status == ReminderStatus.PENDING.value,
                    Reminder.scheduled_time <= now,
                )
            ).all()
            return [
                DueReminder(
                    id=reminder.id,
                    type=reminder.type,
                    attempt_count=reminder.attempt_count or 0,
                    booking=_to_record(booking),
                )
                for reminder, booking in rows
            ]

    def mark_reminder(
        self,
        reminder_id: int,
        status: ReminderStatus | None = None,
        *,
        error: str | None = None,
    ) -> None:
        """Set a reminder's status, or record a failed attempt when *error* is given."""
        with self._session_factory.begin() as db:
            row = db.get(Reminder, reminder_id)
            if row is None:
                return
            if status is not None:
                row.status = status.value
            if error is not None:
                row.attempt_count = (row.attempt_count or 0) + 1
                row.last_error = error
