# Overview: Authoritative certificate persistence: issuance, lookups and conditional writes.

"""
Certificate Store

WHY: Every device works from its own copy of a certificate. The store is the
only shared state, so every mutation is a single conditional UPDATE whose
WHERE clause restates what the caller last observed (at minimum the status).
If another device got there first the statement matches zero rows and the
caller is told so, instead of silently overwriting newer state.

NUMBERS: PREFIX-YYYYMMDD-XXXXX, e.g. VLT-20240101-AB123. The date is the
issue date (UTC); the suffix is five random uppercase alphanumerics. The
column is unique, so a collision is retried with a fresh suffix.
"""

from __future__ import annotations

import json
import secrets
import string
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..actors import Actor
from ..errors import NotFoundError, ValidationFailedError
from ..extensions import db
from ..models import Certificate, Location
from passvault.time_utils import as_naive_utc, utcnow
from . import audit_service, notifier
from .concurrency import run_with_retry

SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
SUFFIX_LENGTH = 5
MAX_NUMBER_ATTEMPTS = 8

WORKFLOW_PREP = "PREP"
WORKFLOW_DIRECT = "DIRECT"
VALID_WORKFLOWS = {WORKFLOW_PREP, WORKFLOW_DIRECT}


def normalize_certificate_number(value: str) -> str:
    """Normalize to uppercase, no surrounding or inner spaces."""
    return value.upper().strip().replace(" ", "")


def generate_certificate_number(prefix: str | None = None, *, issued_at: datetime | None = None) -> str:
    prefix = (prefix or current_app.config["CERTIFICATE_PREFIX"]).upper()
    issued_at = issued_at or utcnow()
    suffix = "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{prefix}-{issued_at:%Y%m%d}-{suffix}"


def get_certificate(certificate_id: int) -> Certificate:
    cert = db.session.get(Certificate, certificate_id)
    if cert is None:
        raise NotFoundError(f"Certificate {certificate_id} not found")
    return cert


def find_by_number(certificate_number: str) -> Certificate | None:
    normalized = normalize_certificate_number(certificate_number)
    return db.session.query(Certificate).filter_by(certificate_number=normalized).first()


def reload(certificate_id: int) -> Certificate:
    """Fetch the latest stored row, bypassing anything cached in the session."""
    db.session.expire_all()
    return get_certificate(certificate_id)


def commit() -> None:
    db.session.commit()


def conditional_update(certificate_id: int, *conditions, **values) -> bool:
    """
    UPDATE certificates SET ... WHERE id = :id AND <conditions>.

    Bumps version_id and updated_at. Returns False when no row matched,
    meaning the caller's view of the certificate is stale. Does not commit.
    """
    now = utcnow()
    stmt = (
        update(Certificate)
        .where(Certificate.id == certificate_id, *conditions)
        .values(
            version_id=Certificate.version_id + 1,
            updated_at=now,
            **values,
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def issue_certificate(
    *,
    owner_id: str,
    final_price_cents: int,
    retail_value_cents: int,
    original_price_cents: int | None = None,
    auction_id: str | None = None,
    expires_at: datetime | None = None,
    claim_location_id: int | None = None,
    workflow: str | None = None,
    actor: Actor | None = None,
) -> Certificate:
    """
    Create a pass for a concluded auction.

    The workflow (PREP or DIRECT) defaults to the deployment setting and
    decides the initial status for the certificate's whole life.

    Raises:
        ValidationFailedError: bad owner, negative amounts, unknown workflow,
            unknown or inactive claim location
    """
    from .state_machine import initial_status_for

    workflow = (workflow or current_app.config["FULFILLMENT_WORKFLOW"]).upper()
    if workflow not in VALID_WORKFLOWS:
        raise ValidationFailedError(f"Unknown workflow '{workflow}'. Must be one of: {', '.join(sorted(VALID_WORKFLOWS))}")
    if not owner_id or not str(owner_id).strip():
        raise ValidationFailedError("owner_id is required")
    for label, amount in (
        ("final_price_cents", final_price_cents),
        ("retail_value_cents", retail_value_cents),
        ("original_price_cents", original_price_cents),
    ):
        if amount is not None and amount < 0:
            raise ValidationFailedError(f"{label} must not be negative")

    now = utcnow()
    if expires_at is None:
        expires_at = now + timedelta(days=current_app.config["CERTIFICATE_VALIDITY_DAYS"])
    expires_at = as_naive_utc(expires_at)

    if claim_location_id is not None:
        location = db.session.get(Location, claim_location_id)
        if location is None or not location.active:
            raise ValidationFailedError(f"Location {claim_location_id} is not available for pickup")

    def _op() -> Certificate:
        for _ in range(MAX_NUMBER_ATTEMPTS):
            number = generate_certificate_number(issued_at=now)
            cert = Certificate(
                certificate_number=number,
                qr_code_data=json.dumps({"certificate_number": number}),
                auction_id=auction_id,
                owner_id=str(owner_id).strip(),
                claim_location_id=claim_location_id,
                workflow=workflow,
                status=initial_status_for(workflow),
                original_price_cents=original_price_cents,
                final_price_cents=final_price_cents,
                retail_value_cents=retail_value_cents,
                expires_at=expires_at,
                voided=False,
                inventory_returned=False,
                created_at=now,
                version_id=1,
            )
            db.session.add(cert)
            try:
                db.session.flush()
            except IntegrityError:
                # Number collision; try another suffix
                db.session.rollback()
                continue

            audit_service.append_audit_entry(
                certificate_id=cert.id,
                action="issued",
                actor=actor,
                metadata={"workflow": workflow, "status": cert.status, "auction_id": auction_id},
                performed_at=now,
            )
            db.session.commit()
            return cert
        raise ValidationFailedError("Could not allocate a unique certificate number")

    cert = run_with_retry(_op)
    current_app.logger.info("Issued certificate %s (%s)", cert.certificate_number, cert.workflow)
    notifier.publish(notifier.event_for(cert, "issued", actor.audit_identity if actor else None))
    return cert


def list_certificates(
    *,
    status: str | None = None,
    claim_location_id: int | None = None,
    owner_id: str | None = None,
    limit: int = 100,
) -> list[Certificate]:
    q = db.session.query(Certificate)
    if status:
        q = q.filter(Certificate.status == status.upper())
    if claim_location_id is not None:
        q = q.filter(Certificate.claim_location_id == claim_location_id)
    if owner_id:
        q = q.filter(Certificate.owner_id == owner_id)
    limit = min(max(limit, 1), 500)
    return q.order_by(Certificate.created_at.desc(), Certificate.id.desc()).limit(limit).all()
