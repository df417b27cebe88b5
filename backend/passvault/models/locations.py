from __future__ import annotations

from ..extensions import db
from passvault.time_utils import to_utc_z


class Location(db.Model):
    """
    Pickup site where passes are prepared and redeemed.

    PINs: staff and admin PINs are two independent shared secrets. Only their
    bcrypt hashes are stored (see services/auth_service.py); the certificate
    services never read them.

    VISIBILITY: inactive locations are hidden from customers and excluded from
    the cancelled-claims report, but certificates pointing at them persist.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.Index("ix_locations_active_sort", "active", "sort_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(128), nullable=False)
    full_name = db.Column(db.String(255), nullable=True)

    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(128), nullable=True)
    state = db.Column(db.String(64), nullable=True)
    zip = db.Column(db.String(16), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    staff_pin_hash = db.Column(db.String(255), nullable=True)
    admin_pin_hash = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def display_name(self) -> str:
        return self.full_name or self.name

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "full_name": self.full_name,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "phone": self.phone,
            "active": self.active,
            "sort_order": self.sort_order,
            "created_at": to_utc_z(self.created_at),
        }
