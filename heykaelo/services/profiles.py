"""Owner identities and business profiles."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from heykaelo.db.models import AuthUser, BusinessChannel, Profile

logger = logging.getLogger(__name__)

PLACEHOLDER_EMAIL_DOMAIN = "heykaelo.placeholder.com"


def placeholder_email(phone: str) -> str:
    """Owners sign up over WhatsApp, so their login email is synthesised."""
    return f"{re.sub(r'[^0-9]', '', phone)}@{PLACEHOLDER_EMAIL_DOMAIN}"


@dataclass
class BusinessProfile:
    id: str
    phone_number: str
    business_name: str
    slug: str
    role_category: str
    role_type: str | None = None
    service_area: str | None = None
    working_days: str | None = None
    approval_required: bool = True
    context: str | None = None
    created_at: datetime | None = None


def _to_profile(row: Profile) -> BusinessProfile:
    return BusinessProfile(
        id=row.id,
        phone_number=row.phone_number,
        business_name=row.business_name,
        slug=row.slug,
        role_category=row.role_category,
        role_type=row.role_type,
        service_area=row.service_area,
        working_days=row.working_days,
        approval_required=bool(row.approval_required),
        context=row.context,
        created_at=row.created_at,
    )


class IdentityService:
    """Creates owner identities, reusing an existing one for the same phone."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def create_or_find_user(self, phone: str) -> str:
        """Return the user id for *phone*, creating the identity if needed."""
        email = placeholder_email(phone)
        try:
            with self._session_factory.begin() as db:
                user = AuthUser(email=email, phone=phone)
                db.add(user)
                db.flush()
                logger.info("Created owner identity %s for %s", user.id, phone)
                return user.id
        except IntegrityError:
            logger.info("Identity for %s already exists; looking it up", phone)

        with self._session_factory() as db:
            found = db.scalar(
                select(AuthUser).where(or_(AuthUser.phone == phone, AuthUser.email == email))
            )
            if found is None:
                raise LookupError(f"Identity for {phone} could be neither created nor found")
            return found.id


class ProfileRepository:
    """Business profiles keyed by owner id, plus slug/channel lookups."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def upsert_profile(self, payload: dict[str, Any]) -> BusinessProfile:
        """Insert or update the profile whose ``id`` is ``payload["id"]``.

        Raises ``IntegrityError`` when a unique column (phone number, slug)
        clashes with a different profile.
        """
        with self._session_factory.begin() as db:
            row = db.get(Profile, payload["id"])
            if row is None:
                row = Profile(id=payload["id"])
                db.add(row)
            for key, value in payload.items():
                if key != "id":
                    setattr(row, key, value)
            db.flush()
            return _to_profile(row)

    def update_by_phone(self, phone: str, fields: dict[str, Any]) -> int:
        """Update whichever profile owns *phone*.  Returns rows touched."""
        with self._session_factory.begin() as db:
            result = db.execute(
                update(Profile).where(Profile.phone_number == phone).values(**fields)
            )
        return result.rowcount

    def get(self, business_id: str) -> BusinessProfile | None:
        with self._session_factory() as db:
            row = db.get(Profile, business_id)
            return _to_profile(row) if row else None

    def get_by_slug(self, slug: str) -> BusinessProfile | None:
        with self._session_factory() as db:
            row = db.scalar(select(Profile).where(Profile.slug == slug.lower()))
            return _to_profile(row) if row else None

    def list_by_owner_phone(self, phone: str) -> list[BusinessProfile]:
        digits = re.sub(r"\D", "", phone)
        with self._session_factory() as db:
            if not digits:
                return []
            rows = db.scalars(select(Profile).where(Profile.owner_digits == digits))
            return [_to_profile(r) for r in rows]

    def business_for_channel(self, channel_phone: str) -> str | None:
        """Business bound to a dedicated inbound number, if any."""
        with self._session_factory() as db:
            channel = db.get(BusinessChannel, channel_phone)
            return channel.business_id if channel else None

    def resolve_business(self, preferred_id: str | None = None) -> BusinessProfile | None:
        """Pick the business a booking should land on.

        Order: *preferred_id* if it exists, then the newest profile with a
        non-empty ``context``, then the newest profile of any kind.
        """
        with self._session_factory() as db:
            if preferred_id:
                row = db.get(Profile, preferred_id)
                if row is not None:
                    return _to_profile(row)

            row = db.scalar(
                select(Profile)
                .where(Profile.context.is_not(None), Profile.context != "")
                .order_by(Profile.created_at.desc())
                .limit(1)
            )
            if row is None:
                row = db.scalar(select(Profile).order_by(Profile.created_at.desc()).limit(1))
            return _to_profile(row) if row else None
