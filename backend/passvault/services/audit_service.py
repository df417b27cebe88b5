# Overview: Append-only certificate audit log and its read-side aggregations.

"""
Audit Log Invariants

- Append-only; entries are never updated or deleted (ORM listeners refuse).
- Entries are written inside the same DB transaction as the mutation they
  record, so a rolled-back mutation leaves no audit trace and a committed
  one always has one.
- performed_by is the actor identity, NULL for system actions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func

from ..actors import Actor
from ..extensions import db
from ..models import Certificate, CertificateAuditEntry, Location
from passvault.time_utils import to_utc_z, utcnow


def append_audit_entry(
    *,
    certificate_id: int,
    action: str,
    actor: Actor | None,
    metadata: Optional[dict] = None,
    performed_at: Optional[datetime] = None,
) -> CertificateAuditEntry:
    """
    Append one entry. Flushes but does not commit; the caller owns the transaction.
    """
    entry = CertificateAuditEntry(
        certificate_id=certificate_id,
        action=action,
        performed_by=actor.audit_identity if actor else None,
        performed_at=performed_at or utcnow(),
        entry_metadata=metadata or {},
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def get_certificate_history(certificate_id: int) -> list[CertificateAuditEntry]:
    return (
        db.session.query(CertificateAuditEntry)
        .filter_by(certificate_id=certificate_id)
        .order_by(CertificateAuditEntry.performed_at, CertificateAuditEntry.id)
        .all()
    )


def pending_cancelled_claims_by_location() -> list[dict]:
    """
    Outstanding inventory-return obligations, per active location.

    Counts CANCELLED certificates whose held stock has not been returned,
    grouped by claim location. Locations with nothing outstanding are
    omitted; the busiest location comes first.
    """
    cancelled_count = func.count(Certificate.id)
    rows = (
        db.session.query(
            Location.id,
            Location.name,
            Location.full_name,
            cancelled_count.label("cancelled_count"),
            func.min(Certificate.cancelled_at).label("oldest_cancelled_at"),
        )
        .join(Certificate, Certificate.claim_location_id == Location.id)
        .filter(
            Location.active.is_(True),
            Certificate.status == "CANCELLED",
            Certificate.inventory_returned.is_(False),
        )
        .group_by(Location.id, Location.name, Location.full_name)
        .having(cancelled_count > 0)
        .order_by(cancelled_count.desc(), Location.name)
        .all()
    )

    return [
        {
            "location_id": row.id,
            "location_name": row.full_name or row.name,
            "location_full_name": row.full_name,
            "cancelled_count": int(row.cancelled_count),
            "oldest_cancelled_at": to_utc_z(row.oldest_cancelled_at),
        }
        for row in rows
    ]
