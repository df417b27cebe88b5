"""
Actor: who is performing a certificate operation.

The authentication collaborator (services/auth_service.py) turns a PIN or a
customer session into one of these and the route layer passes it explicitly
into every service call. Services use it for scope checks and for audit
attribution; they never look at PINs or request state.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import ForbiddenError

ROLE_CUSTOMER = "customer"
ROLE_STAFF = "staff"
ROLE_ADMIN = "admin"
ROLE_SYSTEM = "system"

SCOPE_OWNER = "owner"
SCOPE_LOCATION = "location"
SCOPE_ALL = "all"


@dataclass(frozen=True)
class Actor:
    role: str
    identity: str | None
    scope: str
    location_id: int | None = None

    @property
    def audit_identity(self) -> str | None:
        """Value written to performed_by (None for the system)."""
        if self.role == ROLE_SYSTEM:
            return None
        return self.identity

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def covers_location(self, location_id: int | None) -> bool:
        if self.scope == SCOPE_ALL:
            return True
        if self.scope == SCOPE_LOCATION:
            return location_id is not None and location_id == self.location_id
        return False

    def require_location(self, location_id: int | None) -> None:
        if not self.covers_location(location_id):
            raise ForbiddenError("This pass belongs to a different location.")

    def require_role(self, *roles: str) -> None:
        if self.role not in roles:
            raise ForbiddenError(f"Requires one of: {', '.join(roles)}")


SYSTEM_ACTOR = Actor(role=ROLE_SYSTEM, identity=None, scope=SCOPE_ALL)


def staff_actor(location_id: int, identity: str) -> Actor:
    return Actor(role=ROLE_STAFF, identity=identity, scope=SCOPE_LOCATION, location_id=location_id)


def admin_actor(identity: str, location_id: int | None = None) -> Actor:
    return Actor(role=ROLE_ADMIN, identity=identity, scope=SCOPE_ALL, location_id=location_id)


def customer_actor(owner_id: str) -> Actor:
    return Actor(role=ROLE_CUSTOMER, identity=owner_id, scope=SCOPE_OWNER)
