# Overview: Staff and admin workflow actions around the state machine (assign, void, returns).

"""
Fulfillment Workflow

Actions that move a pass through the preparation pipeline or change one of
its orthogonal flags. Status changes always go through state_machine;
flag changes (claim location, void, inventory return) are single
conditional UPDATEs through the certificate store with the same rules:
nothing is written unless the stored row still matches what was checked,
every write is audited in the same transaction, and every committed write
is broadcast.

WHO MAY DO WHAT:
    select_claim_location     owning customer, or admin
    assign_to_location        admin
    staff_transition          staff at the claim location, or admin
    void_certificate          admin
    mark_inventory_returned   admin, or staff at the claim location
"""

from __future__ import annotations

from flask import current_app

from ..actors import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_STAFF, Actor
from ..errors import (
    ConflictError,
    ForbiddenError,
    InvalidTransitionError,
    ValidationFailedError,
    VoidedCertificateError,
)
from ..extensions import db
from ..models import Certificate, Location
from passvault.time_utils import to_utc_z, utcnow
from . import audit_service, certificate_store, notifier, state_machine
from .concurrency import lock_for_update, run_with_retry

MAX_REASON_LENGTH = 500
MAX_NOTES_LENGTH = 2000


def _locked(certificate_id: int) -> Certificate:
    db.session.expire_all()
    cert = lock_for_update(db.session.query(Certificate).filter_by(id=certificate_id)).first()
    if cert is None:
        # Raises NotFoundError
        return certificate_store.get_certificate(certificate_id)
    return cert


def _write_flags(cert: Certificate, conditions: list, values: dict, *, action: str, actor: Actor, metadata: dict):
    """Conditional flag write + audit + commit. Raises ConflictError on a stale view."""
    if not certificate_store.conditional_update(cert.id, *conditions, **values):
        current = certificate_store.reload(cert.id)
        raise ConflictError(
            f"{current.certificate_number} changed on another device. Refresh and try again.",
            current_status=current.status,
        )
    audit_service.append_audit_entry(
        certificate_id=cert.id,
        action=action,
        actor=actor,
        metadata=metadata,
    )
    certificate_store.commit()
    return certificate_store.reload(cert.id)


def can_view(actor: Actor, cert: Certificate) -> bool:
    if actor.is_admin:
        return True
    if actor.role == ROLE_CUSTOMER:
        return cert.owner_id == actor.identity
    return actor.covers_location(cert.claim_location_id)


def get_visible_certificate(certificate_id: int, actor: Actor) -> Certificate:
    cert = certificate_store.get_certificate(certificate_id)
    if not can_view(actor, cert):
        raise ForbiddenError("You do not have access to this pass.")
    return cert


def select_claim_location(certificate_id: int, location_id: int, actor: Actor) -> Certificate:
    """
    Record the pickup site the owner chose.

    Allowed while the pass is non-terminal and not voided. A pass already
    handed to staff (PENDING onward) keeps its location; the admin must
    cancel and reissue instead.

    Raises:
        ForbiddenError, ValidationFailedError, InvalidTransitionError,
        VoidedCertificateError, ConflictError
    """
    actor.require_role(ROLE_CUSTOMER, ROLE_ADMIN)

    def _op() -> Certificate:
        cert = _locked(certificate_id)
        if actor.role == ROLE_CUSTOMER and cert.owner_id != actor.identity:
            raise ForbiddenError("This pass belongs to someone else.")

        location = db.session.get(Location, location_id) if location_id is not None else None
        if location is None or not location.active:
            raise ValidationFailedError("Choose an available pickup location.")

        if cert.voided:
            raise VoidedCertificateError(
                f"{cert.certificate_number} has been voided.", voided_reason=cert.voided_reason
            )
        if cert.status not in (state_machine.NEW, state_machine.ASSIGNED, state_machine.ACTIVE):
            raise InvalidTransitionError(
                f"The pickup location of {cert.certificate_number} can no longer be changed ({cert.status}).",
                status=cert.status,
            )

        previous = cert.claim_location_id
        return _write_flags(
            cert,
            [Certificate.status == cert.status, Certificate.voided.is_(False)],
            {"claim_location_id": location.id},
            action="claim_location.selected",
            actor=actor,
            metadata={"from_location_id": previous, "to_location_id": location.id},
        )

    cert = run_with_retry(_op)
    current_app.logger.info("Certificate %s claim location -> %s", cert.certificate_number, location_id)
    notifier.publish(notifier.event_for(cert, "claim_location.selected", actor.audit_identity))
    return cert


def assign_to_location(certificate_id: int, actor: Actor, admin_notes: str | None = None) -> Certificate:
    """
    Admin "send to staff": NEW -> ASSIGNED -> PENDING.

    The pass must already have a claim location; the staff queue of that
    location picks it up once it is PENDING. A pass left in ASSIGNED by an
    interrupted earlier call is moved on to PENDING.
    """
    actor.require_role(ROLE_ADMIN)
    if admin_notes is not None and len(admin_notes) > MAX_NOTES_LENGTH:
        raise ValidationFailedError(f"Notes must be at most {MAX_NOTES_LENGTH} characters.")

    cert = certificate_store.reload(certificate_id)
    if cert.claim_location_id is None:
        raise ValidationFailedError(
            f"{cert.certificate_number} has no pickup location yet. The customer must choose one first."
        )

    fields = {"admin_notes": admin_notes} if admin_notes else None
    if cert.status != state_machine.ASSIGNED:
        cert = state_machine.transition(
            cert.id,
            state_machine.ASSIGNED,
            actor,
            expected_status=cert.status,
            guards=(Certificate.claim_location_id.is_not(None),),
            fields=fields,
            metadata={"claim_location_id": cert.claim_location_id},
            action="assigned",
        )
        fields = None

    return state_machine.transition(
        cert.id,
        state_machine.PENDING,
        actor,
        expected_status=state_machine.ASSIGNED,
        fields=fields,
        action="sent_to_staff",
    )


def staff_transition(
    certificate_id: int,
    target_status: str,
    actor: Actor,
    *,
    expected_status: str | None = None,
) -> Certificate:
    """
    Move a pass along the preparation pipeline from a staff terminal.

    Success terminals are refused here: completing a pass requires the
    redemption protocol (and its POS transaction id). Cancelling is admin only.
    """
    actor.require_role(ROLE_STAFF, ROLE_ADMIN)
    target_status = (target_status or "").upper()
    state_machine.validate_status(target_status)

    if target_status in state_machine.SUCCESS_TERMINALS:
        raise InvalidTransitionError(
            "Scan the pass and enter the POS transaction id to complete a pickup.",
            to_status=target_status,
        )
    if target_status in state_machine.FAILURE_TERMINALS and not actor.is_admin:
        raise ForbiddenError("Only an admin can cancel a pass.")

    cert = certificate_store.get_certificate(certificate_id)
    actor.require_location(cert.claim_location_id)

    return state_machine.transition(
        cert.id,
        target_status,
        actor,
        expected_status=(expected_status or "").upper() or None,
    )


def void_certificate(certificate_id: int, reason: str, actor: Actor) -> Certificate:
    """
    Kill switch: a voided pass can never reach a success terminal.

    Refused once the pass has been redeemed or picked up (the stock is
    already gone). Voiding twice is reported rather than silently repeated.
    """
    actor.require_role(ROLE_ADMIN)
    reason = (reason or "").strip()
    if not reason:
        raise ValidationFailedError("A reason is required to void a pass.")
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationFailedError(f"Reason must be at most {MAX_REASON_LENGTH} characters.")

    def _op() -> Certificate:
        cert = _locked(certificate_id)
        if cert.status in state_machine.SUCCESS_TERMINALS or cert.redeemed_at is not None:
            raise InvalidTransitionError(
                f"{cert.certificate_number} was already redeemed and cannot be voided.",
                status=cert.status,
            )
        if cert.voided:
            raise VoidedCertificateError(
                f"{cert.certificate_number} is already voided.", voided_reason=cert.voided_reason
            )
        return _write_flags(
            cert,
            [
                Certificate.voided.is_(False),
                Certificate.redeemed_at.is_(None),
                ~Certificate.status.in_(sorted(state_machine.SUCCESS_TERMINALS)),
            ],
            {"voided": True, "voided_reason": reason, "voided_at": utcnow()},
            action="voided",
            actor=actor,
            metadata={"reason": reason, "status": cert.status},
        )

    cert = run_with_retry(_op)
    current_app.logger.warning("Certificate %s voided by %s: %s", cert.certificate_number, actor.audit_identity, reason)
    notifier.publish(notifier.event_for(cert, "voided", actor.audit_identity))
    return cert


def mark_inventory_returned(certificate_id: int, actor: Actor) -> Certificate:
    """
    Record that the stock held for a cancelled pass went back on the shelf.

    Only on failure terminals, and only once.
    """
    actor.require_role(ROLE_ADMIN, ROLE_STAFF)

    def _op() -> Certificate:
        cert = _locked(certificate_id)
        actor.require_location(cert.claim_location_id)
        if cert.status not in state_machine.FAILURE_TERMINALS:
            raise InvalidTransitionError(
                f"{cert.certificate_number} is {cert.status}; only cancelled passes return inventory.",
                status=cert.status,
            )
        if cert.inventory_returned:
            raise ConflictError(
                f"Inventory for {cert.certificate_number} was already returned.",
                inventory_returned_at=to_utc_z(cert.inventory_returned_at),
                inventory_returned_by=cert.inventory_returned_by,
            )
        return _write_flags(
            cert,
            [
                Certificate.status.in_(sorted(state_machine.FAILURE_TERMINALS)),
                Certificate.inventory_returned.is_(False),
            ],
            {
                "inventory_returned": True,
                "inventory_returned_at": utcnow(),
                "inventory_returned_by": actor.audit_identity,
            },
            action="inventory_returned",
            actor=actor,
            metadata={"status": cert.status},
        )

    cert = run_with_retry(_op)
    current_app.logger.info("Inventory returned for %s by %s", cert.certificate_number, actor.audit_identity)
    notifier.publish(notifier.event_for(cert, "inventory_returned", actor.audit_identity))
    return cert
