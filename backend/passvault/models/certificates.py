from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from passvault.time_utils import to_utc_z


class Certificate(db.Model):
    """
    A redeemable pass won in an auction.

    LIFECYCLE: status only ever changes through services/state_machine.py,
    which writes with a conditional UPDATE keyed on the previously observed
    status. Rows are never deleted; terminal passes stay for history.

    MONEY: all amounts are integer cents. The point-of-sale discount
    (retail value minus final price, floored at zero) is derived, not stored.

    INVARIANTS:
    - redeemed_at is set iff status is PICKED_UP or REDEEMED
    - voided passes never reach PICKED_UP or REDEEMED
    - CANCELLED and EXPIRED accept no further transition
    - inventory_returned implies CANCELLED or EXPIRED
    - certificate_number is unique and immutable
    """
    __tablename__ = "certificates"
    __table_args__ = (
        db.Index("ix_certificates_location_status", "claim_location_id", "status"),
        # Expiry sweep predicate
        db.Index("ix_certificates_sweep", "voided", "redeemed_at", "expires_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    certificate_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    qr_code_data = db.Column(db.Text, nullable=True)

    # Issued by the auction system; opaque to us
    auction_id = db.Column(db.String(64), nullable=True, index=True)
    owner_id = db.Column(db.String(64), nullable=False, index=True)
    claim_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    # PREP or DIRECT, fixed at issuance
    workflow = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, index=True)

    original_price_cents = db.Column(db.Integer, nullable=True)
    final_price_cents = db.Column(db.Integer, nullable=False, default=0)
    retail_value_cents = db.Column(db.Integer, nullable=False, default=0)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    # Kill switch, independent of status
    voided = db.Column(db.Boolean, nullable=False, default=False)
    voided_reason = db.Column(db.String(255), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Stamped once, on first entry to the matching status
    admin_assigned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    prepared_at = db.Column(db.DateTime(timezone=True), nullable=True)
    picked_up_at = db.Column(db.DateTime(timezone=True), nullable=True)
    redeemed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Redemption attribution
    redeemed_location = db.Column(db.String(255), nullable=True)
    redeemed_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    redeemed_by_staff = db.Column(db.String(128), nullable=True)
    pos_transaction_id = db.Column(db.String(128), nullable=True)

    # Post-cancellation reconciliation
    inventory_returned = db.Column(db.Boolean, nullable=False, default=False)
    inventory_returned_at = db.Column(db.DateTime(timezone=True), nullable=True)
    inventory_returned_by = db.Column(db.String(128), nullable=True)

    admin_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    claim_location = db.relationship("Location", foreign_keys=[claim_location_id])

    @property
    def discount_cents(self) -> int:
        return max(0, (self.retail_value_cents or 0) - (self.final_price_cents or 0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "certificate_number": self.certificate_number,
            "qr_code_data": self.qr_code_data,
            "auction_id": self.auction_id,
            "owner_id": self.owner_id,
            "claim_location_id": self.claim_location_id,
            "claim_location_name": self.claim_location.display_name if self.claim_location else None,
            "workflow": self.workflow,
            "status": self.status,
            "original_price_cents": self.original_price_cents,
            "final_price_cents": self.final_price_cents,
            "retail_value_cents": self.retail_value_cents,
            "discount_cents": self.discount_cents,
            "expires_at": to_utc_z(self.expires_at),
            "voided": self.voided,
            "voided_reason": self.voided_reason,
            "voided_at": to_utc_z(self.voided_at),
            "admin_assigned_at": to_utc_z(self.admin_assigned_at),
            "prepared_at": to_utc_z(self.prepared_at),
            "picked_up_at": to_utc_z(self.picked_up_at),
            "redeemed_at": to_utc_z(self.redeemed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "redeemed_location": self.redeemed_location,
            "redeemed_location_id": self.redeemed_location_id,
            "redeemed_by_staff": self.redeemed_by_staff,
            "pos_transaction_id": self.pos_transaction_id,
            "inventory_returned": self.inventory_returned,
            "inventory_returned_at": to_utc_z(self.inventory_returned_at),
            "inventory_returned_by": self.inventory_returned_by,
            "admin_notes": self.admin_notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class CertificateAuditEntry(db.Model):
    """
    Append-only action history for a certificate.

    The only record of who did what. performed_by is the actor identity, or
    NULL for system actions such as the expiry sweep. Rows are never updated
    or deleted (enforced by the listeners below).
    """
    __tablename__ = "certificate_audit_log"
    __table_args__ = (
        db.Index("ix_certificate_audit_cert_time", "certificate_id", "performed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    certificate_id = db.Column(db.Integer, db.ForeignKey("certificates.id"), nullable=False, index=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    performed_by = db.Column(db.String(128), nullable=True)
    performed_at = db.Column(db.DateTime(timezone=True), nullable=False)
    # "metadata" is reserved on declarative classes
    entry_metadata = db.Column("metadata", db.JSON, nullable=True)

    certificate = db.relationship("Certificate", backref=db.backref("audit_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "certificate_id": self.certificate_id,
            "action": self.action,
            "performed_by": self.performed_by,
            "performed_at": to_utc_z(self.performed_at),
            "metadata": self.entry_metadata or {},
        }


class AuditLogImmutableError(RuntimeError):
    """Raised when code tries to rewrite history."""


@event.listens_for(CertificateAuditEntry, "before_update")
def _reject_audit_update(_mapper, _connection, target: CertificateAuditEntry) -> None:
    raise AuditLogImmutableError(f"Audit entry {target.id} is append-only")


@event.listens_for(CertificateAuditEntry, "before_delete")
def _reject_audit_delete(_mapper, _connection, target: CertificateAuditEntry) -> None:
    raise AuditLogImmutableError(f"Audit entry {target.id} is append-only")
