# Overview: Certificate lifecycle state machine; the single entry point for status changes.

"""
passvault Certificate State Machine

================================================================================
PURPOSE: Move a pass between lifecycle states without ever breaking invariants
================================================================================

STATE GRAPH:
    NEW -> ASSIGNED -> PENDING -> PREPARING -> READY -> PICKED_UP   (PREP workflow)
    ACTIVE -> REDEEMED                                               (DIRECT workflow)
    any non-terminal -> CANCELLED | EXPIRED

    The workflow is chosen at issuance and fixed for the pass's life.
    PICKED_UP / REDEEMED are equivalent success terminals.
    CANCELLED / EXPIRED are equivalent failure terminals.

TIMESTAMPS (set once, on first entry):
    ASSIGNED -> admin_assigned_at
    READY -> prepared_at
    PICKED_UP -> picked_up_at + redeemed_at
    REDEEMED -> redeemed_at
    CANCELLED, EXPIRED -> cancelled_at

CONCURRENCY:
    transition() is given (or reads) the status the caller last observed and
    writes with UPDATE ... WHERE status = :observed. Zero rows matched means
    another device moved the pass first -> ConflictError; the caller refetches
    and decides again. Nothing is written in that case, audit included.

CHECK ORDER (first failure wins):
    1. target reachable from the observed status    -> InvalidTransitionError
    2. voided pass heading to a success terminal    -> VoidedCertificateError
    3. stored status still equals the observed one  -> ConflictError

Callers never write Certificate.status themselves: the expiry sweep, the
redemption protocol and staff/admin workflow actions all come through here.
================================================================================
"""

from __future__ import annotations

from typing import Iterable

from flask import current_app

from ..actors import Actor
from ..errors import ConflictError, InvalidTransitionError, VoidedCertificateError
from ..models import Certificate
from passvault.time_utils import utcnow
from . import audit_service, certificate_store, notifier
from .concurrency import run_with_retry


NEW = "NEW"
ASSIGNED = "ASSIGNED"
PENDING = "PENDING"
PREPARING = "PREPARING"
READY = "READY"
ACTIVE = "ACTIVE"
PICKED_UP = "PICKED_UP"
REDEEMED = "REDEEMED"
CANCELLED = "CANCELLED"
EXPIRED = "EXPIRED"

VALID_STATUSES = {NEW, ASSIGNED, PENDING, PREPARING, READY, ACTIVE, PICKED_UP, REDEEMED, CANCELLED, EXPIRED}

SUCCESS_TERMINALS = frozenset({PICKED_UP, REDEEMED})
FAILURE_TERMINALS = frozenset({CANCELLED, EXPIRED})
TERMINAL_STATUSES = SUCCESS_TERMINALS | FAILURE_TERMINALS
NON_TERMINAL_STATUSES = frozenset(VALID_STATUSES - TERMINAL_STATUSES)

# Forward edges only; failure edges are added for every non-terminal status below
_FORWARD_EDGES = {
    (NEW, ASSIGNED),
    (ASSIGNED, PENDING),
    (PENDING, PREPARING),
    (PREPARING, READY),
    (READY, PICKED_UP),
    (ACTIVE, REDEEMED),
}
VALID_TRANSITIONS = frozenset(
    _FORWARD_EDGES
    | {(status, failure) for status in NON_TERMINAL_STATUSES for failure in FAILURE_TERMINALS}
)

INITIAL_STATUS = {
    certificate_store.WORKFLOW_PREP: NEW,
    certificate_store.WORKFLOW_DIRECT: ACTIVE,
}
SUCCESS_TERMINAL = {
    certificate_store.WORKFLOW_PREP: PICKED_UP,
    certificate_store.WORKFLOW_DIRECT: REDEEMED,
}
# The status a pass must be in for its success terminal to be reachable
REDEEMABLE_STATUS = {
    certificate_store.WORKFLOW_PREP: READY,
    certificate_store.WORKFLOW_DIRECT: ACTIVE,
}

_STAMPED_ON_ENTRY = {
    ASSIGNED: ("admin_assigned_at",),
    READY: ("prepared_at",),
    PICKED_UP: ("picked_up_at", "redeemed_at"),
    REDEEMED: ("redeemed_at",),
    CANCELLED: ("cancelled_at",),
    EXPIRED: ("cancelled_at",),
}


def validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise InvalidTransitionError(
            f"Invalid status '{status}'. Must be one of: {', '.join(sorted(VALID_STATUSES))}"
        )


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(from_status: str, to_status: str) -> bool:
    """True if to_status is reachable from from_status in one step. No self-loops."""
    validate_status(from_status)
    validate_status(to_status)
    return (from_status, to_status) in VALID_TRANSITIONS


def initial_status_for(workflow: str) -> str:
    return INITIAL_STATUS[workflow]


def success_terminal_for(workflow: str) -> str:
    return SUCCESS_TERMINAL[workflow]


def redeemable_status_for(workflow: str) -> str:
    return REDEEMABLE_STATUS[workflow]


def _timestamp_values(cert: Certificate, target_status: str, now) -> dict:
    values = {}
    for column in _STAMPED_ON_ENTRY.get(target_status, ()):
        if getattr(cert, column) is None:
            values[column] = now
    return values


def transition(
    certificate_id: int,
    target_status: str,
    actor: Actor,
    *,
    expected_status: str | None = None,
    guards: Iterable = (),
    fields: dict | None = None,
    metadata: dict | None = None,
    action: str | None = None,
) -> Certificate:
    """
    Move a certificate to target_status.

    Args:
        certificate_id: the pass to move
        target_status: desired status
        actor: who is doing it (audit attribution)
        expected_status: the status the caller last observed; defaults to the
            status read here, which still protects against a concurrent
            write between this read and the UPDATE
        guards: extra SQL conditions the stored row must satisfy at write
            time (the redemption protocol re-checks expiry, void and location
            this way)
        fields: extra columns to set in the same UPDATE
        metadata: merged into the audit entry
        action: audit action name (default "status.<target>")

    Returns:
        The updated certificate, freshly loaded.

    Raises:
        NotFoundError, InvalidTransitionError, VoidedCertificateError,
        ConflictError, TransientFetchError
    """
    validate_status(target_status)
    guards = tuple(guards)
    action = action or f"status.{target_status.lower()}"

    def _op() -> Certificate:
        cert = certificate_store.reload(certificate_id)
        observed = expected_status or cert.status
        validate_status(observed)

        if not can_transition(observed, target_status):
            raise InvalidTransitionError(
                f"Cannot move {cert.certificate_number} from {observed} to {target_status}",
                from_status=observed,
                to_status=target_status,
            )

        if target_status in SUCCESS_TERMINALS and cert.voided:
            raise VoidedCertificateError(
                f"{cert.certificate_number} is voided and cannot be completed",
                voided_reason=cert.voided_reason,
            )

        if cert.status != observed:
            raise ConflictError(
                f"{cert.certificate_number} is now {cert.status}, not {observed}. Refresh and try again.",
                expected_status=observed,
                current_status=cert.status,
            )

        now = utcnow()
        values = {"status": target_status}
        values.update(_timestamp_values(cert, target_status, now))
        if fields:
            values.update(fields)

        conditions = [Certificate.status == observed, *guards]
        if target_status in SUCCESS_TERMINALS:
            conditions.append(Certificate.voided.is_(False))
            conditions.append(Certificate.redeemed_at.is_(None))

        if not certificate_store.conditional_update(cert.id, *conditions, **values):
            current = certificate_store.reload(cert.id)
            if target_status in SUCCESS_TERMINALS and current.voided:
                raise VoidedCertificateError(
                    f"{current.certificate_number} is voided and cannot be completed",
                    voided_reason=current.voided_reason,
                )
            raise ConflictError(
                f"{current.certificate_number} changed on another device. Refresh and try again.",
                expected_status=observed,
                current_status=current.status,
            )

        audit_metadata = {"from": observed, "to": target_status}
        if metadata:
            audit_metadata.update(metadata)
        audit_service.append_audit_entry(
            certificate_id=cert.id,
            action=action,
            actor=actor,
            metadata=audit_metadata,
            performed_at=now,
        )
        certificate_store.commit()
        return certificate_store.reload(cert.id)

    try:
        updated = run_with_retry(_op)
    except ConflictError as exc:
        current_app.logger.warning("Transition conflict on certificate %s: %s", certificate_id, exc.message)
        raise

    current_app.logger.info(
        "Certificate %s -> %s by %s",
        updated.certificate_number, updated.status, actor.audit_identity or actor.role,
    )
    notifier.publish(notifier.event_for(updated, action, actor.audit_identity))
    return updated
