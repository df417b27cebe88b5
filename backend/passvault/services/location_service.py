# Overview: Service-layer operations for pickup locations.

from __future__ import annotations

import re

from sqlalchemy.exc import IntegrityError

from ..errors import NotFoundError, ValidationFailedError
from ..extensions import db
from ..models import Location
from .concurrency import run_with_retry

_SLUG_RE = re.compile(r"^[a-z0-9][a-z0-9-]{0,63}$")


def list_locations(*, include_inactive: bool = False) -> list[Location]:
    """Customer-visible locations (active only unless asked), in display order."""
    q = db.session.query(Location)
    if not include_inactive:
        q = q.filter(Location.active.is_(True))
    return q.order_by(Location.sort_order, Location.name).all()


def get_location(location_id: int) -> Location:
    location = db.session.get(Location, location_id)
    if location is None:
        raise NotFoundError(f"Location {location_id} not found")
    return location


def get_location_by_slug(slug: str) -> Location | None:
    return db.session.query(Location).filter_by(slug=slug.strip().lower()).first()


def create_location(
    *,
    slug: str,
    name: str,
    full_name: str | None = None,
    address: str | None = None,
    city: str | None = None,
    state: str | None = None,
    zip: str | None = None,
    phone: str | None = None,
    sort_order: int = 0,
    active: bool = True,
) -> Location:
    slug = (slug or "").strip().lower()
    if not _SLUG_RE.match(slug):
        raise ValidationFailedError("slug must be lowercase letters, digits and dashes")
    if not name or not name.strip():
        raise ValidationFailedError("name is required")

    def _op() -> Location:
        location = Location(
            slug=slug,
            name=name.strip(),
            full_name=full_name,
            address=address,
            city=city,
            state=state,
            zip=zip,
            phone=phone,
            sort_order=sort_order,
            active=active,
        )
        db.session.add(location)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise ValidationFailedError(f"A location with slug '{slug}' already exists")
        return location

    return run_with_retry(_op)


def set_active(location_id: int, active: bool) -> Location:
    def _op() -> Location:
        location = get_location(location_id)
        location.active = active
        db.session.commit()
        return location

    return run_with_retry(_op)
