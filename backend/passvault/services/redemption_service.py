# Overview: Scan -> lookup -> validate -> atomically redeem pipeline for passes.

"""
Redemption Protocol

WHY: A pass is worth real stock. Two terminals scanning the same pass at the
same moment must not both hand it over, and a rejected scan must tell the
operator exactly why.

TOKENS:
- Structured payload (the QR contents): JSON object with a
  "certificate_number" (or "certificateNumber") field.
- Free text containing PREFIX-8DIGITS-5ALNUM anywhere, case-insensitive
  (e.g. a pasted message "your pass: vlt-20240101-ab123").
- A typed number with the deployment prefix and two further dash-separated
  segments (VLT-XXXX-YYYY) is accepted as-is for lookup, so a mistyped
  number is reported as not found rather than unreadable.

VALIDATION ORDER (first failure wins, later checks skipped):
    1. token decodes                       -> MalformedTokenError
    2. certificate exists                  -> NotFoundError
    3. not already in a success terminal   -> AlreadyRedeemedError
    4. not voided                          -> VoidedError
    5. not failed, not past expires_at     -> ExpiredError
    6. claim location (if set) matches     -> LocationMismatchError
    7. POS transaction id present          -> ValidationFailedError

The redeeming location (and the actor's scope over it) is an input
precondition checked between 1 and 2: an unreadable scan is always reported
as unreadable, whatever location the terminal sent.

ATOMIC STEP: the final write is the state machine's conditional UPDATE with
checks 3-6 restated as SQL guards, so the row is re-validated and moved to
its success terminal in one statement. Whoever loses the race gets zero
rows, re-reads, and is told AlreadyRedeemed (or Conflict if the pass moved
somewhere else). Nothing is half-applied.

DISCOUNT: retail value minus final price, floored at 0; shown to the
operator for the point of sale, never stored.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field

from flask import current_app

from ..actors import Actor, staff_actor
from ..errors import (
    AlreadyRedeemedError,
    ConflictError,
    ExpiredError,
    LocationMismatchError,
    MalformedTokenError,
    NotFoundError,
    PassVaultError,
    ValidationFailedError,
    VoidedError,
)
from ..extensions import db
from ..models import Certificate, Location
from passvault.time_utils import as_naive_utc, to_utc_z, utcnow
from . import certificate_store, state_machine

PAYLOAD_FIELDS = ("certificate_number", "certificateNumber")
MAX_TOKEN_LENGTH = 2048


def _strict_pattern(prefix: str) -> re.Pattern:
    return re.compile(rf"(?<![A-Z0-9]){re.escape(prefix)}-\d{{8}}-[A-Z0-9]{{5}}(?![A-Z0-9])", re.IGNORECASE)


def _typed_pattern(prefix: str) -> re.Pattern:
    return re.compile(rf"^{re.escape(prefix)}-[A-Z0-9]+-[A-Z0-9]+$", re.IGNORECASE)


def compute_discount_cents(retail_value_cents: int | None, final_price_cents: int | None) -> int:
    return max(0, (retail_value_cents or 0) - (final_price_cents or 0))


def decode_token(token, prefix: str | None = None) -> str:
    """
    Turn a scanned or typed token into a normalized certificate number.

    Raises:
        MalformedTokenError: nothing that looks like a certificate number
    """
    prefix = (prefix or current_app.config["CERTIFICATE_PREFIX"]).upper()

    if isinstance(token, dict):
        payload = token
    else:
        if token is None or not str(token).strip():
            raise MalformedTokenError("Nothing was scanned. Scan the pass or type its number.")
        text = str(token).strip()
        if len(text) > MAX_TOKEN_LENGTH:
            raise MalformedTokenError("The scanned code is too long to be a pass.")
        payload = None
        if text.startswith("{"):
            try:
                payload = json.loads(text)
            except ValueError:
                payload = None

    if isinstance(payload, dict):
        for key in PAYLOAD_FIELDS:
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return certificate_store.normalize_certificate_number(value)
        raise MalformedTokenError("The scanned code does not contain a certificate number.")

    match = _strict_pattern(prefix).search(text)
    if match:
        return certificate_store.normalize_certificate_number(match.group(0))

    compact = certificate_store.normalize_certificate_number(text)
    if _typed_pattern(prefix).match(compact):
        return compact

    raise MalformedTokenError(f"'{text[:64]}' is not a {prefix} pass number.")


@dataclass
class RedemptionOutcome:
    """Result of a Redeem call: success with the certificate, or the error that stopped it."""
    success: bool
    certificate: Certificate | None = None
    error: PassVaultError | None = None
    discount_cents: int | None = None
    extra: dict = field(default_factory=dict)

    @property
    def error_kind(self) -> str | None:
        return self.error.kind if self.error else None

    def to_dict(self) -> dict:
        if self.success:
            return {
                "success": True,
                "certificate": self.certificate.to_dict(),
                "discount_cents": self.discount_cents,
            }
        payload = {"success": False, "error_kind": self.error_kind}
        payload.update(self.error.to_dict())
        if self.certificate is not None:
            payload["certificate_number"] = self.certificate.certificate_number
        return payload


def normalize_location_id(location_id) -> int | None:
    """Accept an int or a numeric string (form and JSON clients send either)."""
    if location_id is None or isinstance(location_id, bool):
        return None
    if isinstance(location_id, int):
        return location_id
    text = str(location_id).strip()
    if not text.isdigit():
        raise ValidationFailedError(f"'{text[:32]}' is not a location id.")
    return int(text)


def _location_or_error(location_id: int | None) -> Location:
    location = db.session.get(Location, location_id) if location_id is not None else None
    if location is None:
        raise ValidationFailedError("A redeeming location is required.")
    return location


def _validate(cert: Certificate, location: Location, now) -> None:
    """Checks 3-6 against a freshly read certificate."""
    if cert.status in state_machine.SUCCESS_TERMINALS or cert.redeemed_at is not None:
        raise AlreadyRedeemedError(
            f"{cert.certificate_number} was already redeemed.",
            redeemed_at=to_utc_z(cert.redeemed_at),
            redeemed_location=cert.redeemed_location,
        )
    if cert.voided:
        raise VoidedError(
            f"{cert.certificate_number} has been voided: {cert.voided_reason or 'no reason given'}.",
            voided_reason=cert.voided_reason,
        )
    if cert.status in state_machine.FAILURE_TERMINALS or as_naive_utc(cert.expires_at) < now:
        raise ExpiredError(
            f"{cert.certificate_number} expired and can no longer be claimed.",
            expires_at=to_utc_z(cert.expires_at),
            status=cert.status,
        )
    if cert.claim_location_id is not None and cert.claim_location_id != location.id:
        claim_location = db.session.get(Location, cert.claim_location_id)
        correct_name = claim_location.display_name if claim_location else None
        raise LocationMismatchError(
            f"{cert.certificate_number} is for pickup at {correct_name or 'another location'}.",
            claim_location_id=cert.claim_location_id,
            claim_location_name=correct_name,
        )


def _find(number: str) -> Certificate:
    cert = certificate_store.find_by_number(number)
    if cert is None:
        raise NotFoundError(f"No pass found with number {number}.", certificate_number=number)
    return cert


def preview(token, location_id: int, actor: Actor | None = None) -> RedemptionOutcome:
    """
    Read-only scan: run checks 1-6 and show what would be redeemed.

    Never writes. The outcome carries the discount for the point of sale.
    """
    cert = None
    try:
        number = decode_token(token)
        location_id = normalize_location_id(location_id)
        if actor is not None:
            actor.require_location(location_id)
        location = _location_or_error(location_id)
        cert = _find(number)
        _validate(cert, location, utcnow())
    except PassVaultError as exc:
        return RedemptionOutcome(success=False, certificate=cert, error=exc)
    return RedemptionOutcome(
        success=True,
        certificate=cert,
        discount_cents=cert.discount_cents,
    )


def redeem(
    token,
    location_id: int,
    pos_transaction_id: str | None,
    actor: Actor | None = None,
) -> RedemptionOutcome:
    """
    Redeem a pass at a location, exactly once.

    Args:
        token: scanned payload, free text or typed certificate number
        location_id: the redeeming location
        pos_transaction_id: POS reference for the sale (required)
        actor: the staff/admin member redeeming (optional; recorded)

    Returns:
        RedemptionOutcome; never raises for the documented error kinds.
    """
    cert = None
    try:
        number = decode_token(token)
        location_id = normalize_location_id(location_id)
        if actor is not None:
            actor.require_location(location_id)
        location = _location_or_error(location_id)
        cert = _find(number)
        now = utcnow()
        _validate(cert, location, now)

        pos_transaction_id = (pos_transaction_id or "").strip()
        if not pos_transaction_id:
            raise ValidationFailedError("Enter the POS transaction id before redeeming.")

        cert = _apply_redemption(cert, location, pos_transaction_id, actor, now)
    except PassVaultError as exc:
        current_app.logger.warning(
            "Redemption rejected (%s) at location %s: %s", exc.kind, location_id, exc.message
        )
        return RedemptionOutcome(success=False, certificate=cert, error=exc)

    current_app.logger.info(
        "Redeemed %s at %s (pos %s)", cert.certificate_number, cert.redeemed_location, cert.pos_transaction_id
    )
    return RedemptionOutcome(success=True, certificate=cert, discount_cents=cert.discount_cents)


def _apply_redemption(cert: Certificate, location: Location, pos_transaction_id: str, actor: Actor | None, now) -> Certificate:
    target = state_machine.success_terminal_for(cert.workflow)
    observed = cert.status
    guards = (
        Certificate.expires_at >= now,
        db.or_(Certificate.claim_location_id.is_(None), Certificate.claim_location_id == location.id),
    )
    fields = {
        "redeemed_location": location.display_name,
        "redeemed_location_id": location.id,
        "redeemed_by_staff": actor.audit_identity if actor else None,
        "pos_transaction_id": pos_transaction_id,
    }
    try:
        return state_machine.transition(
            cert.id,
            target,
            actor or _anonymous_terminal(location),
            expected_status=observed,
            guards=guards,
            fields=fields,
            metadata={"pos_transaction_id": pos_transaction_id, "location_id": location.id},
            action="redeemed",
        )
    except ConflictError:
        # Lost a race: report what actually happened to the pass if it is
        # one of the protocol's outcomes, otherwise the conflict itself.
        latest = certificate_store.reload(cert.id)
        _validate(latest, location, now)
        raise


def _anonymous_terminal(location: Location) -> Actor:
    return staff_actor(location.id, identity=f"terminal@{location.slug}")
