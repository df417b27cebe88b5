from __future__ import annotations

from ..extensions import db
from passvault.time_utils import to_utc_z


class SessionToken(db.Model):
    """
    Capability token issued after a successful location PIN check.

    The token carries the actor it was issued for (role, identity, scope and
    the location it is bound to), so every request resolves to an explicit
    actor without any per-device session flags.

    SECURITY NOTES:
    - Only the SHA-256 hash of the token is stored
    - Absolute expiry (SESSION_TTL_HOURS)
    - Revocable on logout
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.Index("ix_session_tokens_location_active", "location_id", "is_revoked"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    token_hash = db.Column(db.String(255), nullable=False, unique=True, index=True)

    role = db.Column(db.String(16), nullable=False)  # staff, admin, customer
    scope = db.Column(db.String(16), nullable=False)  # location, all, owner
    identity = db.Column(db.String(128), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    user_agent = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    location = db.relationship("Location")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "scope": self.scope,
            "identity": self.identity,
            "location_id": self.location_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
