# Overview: Auto-expiry sweep that retires overdue, unclaimed passes.

"""
Auto-Expiry Sweep

Selects every certificate with expires_at < now, redeemed_at NULL, not voided
and a non-terminal status, and moves each one to CANCELLED through the state
machine with the status it was selected in as the expected status.

IDEMPOTENT: the selection excludes terminal statuses, so an immediate rerun
cancels nothing new.

CONCURRENT SAFE: a pass redeemed or moved between selection and write loses
the conditional UPDATE and is skipped (logged), never overwritten.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app

from ..actors import SYSTEM_ACTOR, Actor
from ..errors import ConflictError, InvalidTransitionError, TransientFetchError, VoidedCertificateError
from ..extensions import db
from ..models import Certificate
from passvault.time_utils import as_naive_utc, utcnow
from . import state_machine

SWEEP_ACTION = "auto_cancelled"


def find_overdue(now: datetime | None = None) -> list[tuple[int, str]]:
    """(id, status) pairs the sweep would cancel right now."""
    now = as_naive_utc(now) if now is not None else utcnow()
    rows = (
        db.session.query(Certificate.id, Certificate.status)
        .filter(
            Certificate.expires_at < now,
            Certificate.redeemed_at.is_(None),
            Certificate.voided.is_(False),
            Certificate.status.in_(sorted(state_machine.NON_TERMINAL_STATUSES)),
        )
        .order_by(Certificate.expires_at, Certificate.id)
        .all()
    )
    return [(row.id, row.status) for row in rows]


def run_auto_expiry_sweep(now: datetime | None = None, actor: Actor = SYSTEM_ACTOR) -> int:
    """
    Cancel every overdue, unclaimed pass. Returns how many were cancelled.
    """
    now = as_naive_utc(now) if now is not None else utcnow()
    cancelled = 0
    skipped = 0

    for certificate_id, observed in find_overdue(now):
        try:
            state_machine.transition(
                certificate_id,
                state_machine.CANCELLED,
                actor,
                expected_status=observed,
                guards=(
                    Certificate.expires_at < now,
                    Certificate.redeemed_at.is_(None),
                    Certificate.voided.is_(False),
                ),
                metadata={"reason": "expired", "swept_at": now.isoformat()},
                action=SWEEP_ACTION,
            )
            cancelled += 1
        except (ConflictError, InvalidTransitionError, VoidedCertificateError) as exc:
            # Someone else got there first; their outcome stands
            skipped += 1
            current_app.logger.info("Expiry sweep skipped certificate %s: %s", certificate_id, exc.message)
        except TransientFetchError as exc:
            # Earlier cancellations are committed; report them with the failure
            current_app.logger.warning(
                "Expiry sweep stopped at certificate %s after cancelling %s: %s",
                certificate_id, cancelled, exc.message,
            )
            raise TransientFetchError(
                f"Expiry sweep stopped after cancelling {cancelled} certificate(s). Run it again.",
                cancelled_count=cancelled,
            ) from exc

    if cancelled or skipped:
        current_app.logger.info("Expiry sweep cancelled %s certificate(s), skipped %s", cancelled, skipped)
    return cancelled
