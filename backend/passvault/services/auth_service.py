# Overview: Location PIN verification; turns a staff/admin PIN into an Actor-bound session.

"""
PIN Authentication

WHY: Terminals at a pickup counter are shared. Staff and admins unlock them
with a 4-digit PIN set per location (staff PIN and admin PIN are independent
secrets). A correct PIN yields a capability token that carries the actor;
nothing else about the terminal is trusted.

SECURITY NOTES:
- PINs hashed with bcrypt (cost PIN_HASH_ROUNDS)
- Exactly 4 digits
- Staff tokens are scoped to their location, admin tokens to all locations
- Token storage/expiry lives in session_service.py
"""

from __future__ import annotations

import re

import bcrypt
from flask import current_app

from ..actors import ROLE_ADMIN, ROLE_STAFF, SCOPE_ALL, SCOPE_LOCATION
from ..errors import UnauthorizedError, ValidationFailedError
from ..extensions import db
from ..models import Location, SessionToken
from . import session_service
from .location_service import get_location

PIN_ROLES = (ROLE_STAFF, ROLE_ADMIN)
_PIN_RE = re.compile(r"^\d{4}$")


class PinValidationError(ValidationFailedError):
    """Raised when a PIN is not exactly 4 digits."""


def validate_pin_format(pin: str) -> None:
    if not isinstance(pin, str) or not _PIN_RE.match(pin):
        raise PinValidationError("PIN must be exactly 4 digits")


def hash_pin(pin: str) -> str:
    validate_pin_format(pin)
    salt = bcrypt.gensalt(rounds=current_app.config.get("PIN_HASH_ROUNDS", 12))
    return bcrypt.hashpw(pin.encode("utf-8"), salt).decode("utf-8")


def verify_pin(pin: str, pin_hash: str | None) -> bool:
    """Timing-safe compare via bcrypt. Unset PINs never match."""
    if not pin_hash or not isinstance(pin, str):
        return False
    try:
        return bcrypt.checkpw(pin.encode("utf-8"), pin_hash.encode("utf-8"))
    except ValueError:
        return False


def set_pin(location_id: int, role: str, pin: str) -> Location:
    if role not in PIN_ROLES:
        raise ValidationFailedError(f"role must be one of: {', '.join(PIN_ROLES)}")
    location = get_location(location_id)
    pin_hash = hash_pin(pin)
    if role == ROLE_STAFF:
        location.staff_pin_hash = pin_hash
    else:
        location.admin_pin_hash = pin_hash
    db.session.commit()
    current_app.logger.info("%s PIN updated for location %s", role.capitalize(), location.slug)
    return location


def login_with_pin(
    location_id: int,
    role: str,
    pin: str,
    *,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """
    Verify a location PIN and open a session for the matching actor.

    Returns (session_record, plaintext_token).

    Raises:
        ValidationFailedError: unknown role
        UnauthorizedError: unknown/inactive location or wrong PIN
    """
    if role not in PIN_ROLES:
        raise ValidationFailedError(f"role must be one of: {', '.join(PIN_ROLES)}")

    location = db.session.get(Location, location_id) if location_id is not None else None
    if location is None or not location.active:
        raise UnauthorizedError("Invalid location or PIN")

    pin_hash = location.staff_pin_hash if role == ROLE_STAFF else location.admin_pin_hash
    if not verify_pin(pin, pin_hash):
        current_app.logger.warning("Failed %s PIN attempt for location %s from %s", role, location.slug, ip_address)
        raise UnauthorizedError("Invalid location or PIN")

    scope = SCOPE_LOCATION if role == ROLE_STAFF else SCOPE_ALL
    return session_service.create_session(
        role=role,
        scope=scope,
        identity=f"{role}@{location.slug}",
        location_id=location.id,
        user_agent=user_agent,
        ip_address=ip_address,
    )
