"""
Error taxonomy shared by the certificate services and the HTTP layer.

Every failure a caller can observe is one of these classes. Each carries a
stable machine ``kind`` (what clients switch on), a short ``title`` and a
human-readable message meant to be shown verbatim to the operator, the HTTP
status the API answers with, and whether re-attempting can help.

Terminal to the current attempt (never retried automatically):
    MalformedTokenError, NotFoundError, AlreadyRedeemedError, VoidedError,
    ExpiredError, LocationMismatchError, ValidationFailedError,
    InvalidTransitionError, VoidedCertificateError

Recoverable:
    ConflictError          refetch current state, then re-attempt
    TransientFetchError    storage unavailable / lock wait exceeded
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from .time_utils import to_utc_z


class PassVaultError(Exception):
    """Base class; never raised directly."""

    kind = "ERROR"
    title = "Request failed"
    status_code = 400
    retryable = False

    def __init__(self, message: str | None = None, **details: Any):
        self.message = message or self.title
        self.details = {
            key: (to_utc_z(value) if isinstance(value, datetime) else value)
            for key, value in details.items()
        }
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {
            "error": self.kind,
            "title": self.title,
            "message": self.message,
            "retryable": self.retryable,
        }
        payload.update(self.details)
        return payload


class MalformedTokenError(PassVaultError):
    kind = "MALFORMED_TOKEN"
    title = "Unreadable pass"
    status_code = 400


class NotFoundError(PassVaultError):
    kind = "NOT_FOUND"
    title = "Pass not found"
    status_code = 404


class AlreadyRedeemedError(PassVaultError):
    kind = "ALREADY_REDEEMED"
    title = "Already redeemed"
    status_code = 409


class VoidedError(PassVaultError):
    kind = "VOIDED"
    title = "Pass voided"
    status_code = 409


class ExpiredError(PassVaultError):
    kind = "EXPIRED"
    title = "Pass expired"
    status_code = 410


class LocationMismatchError(PassVaultError):
    kind = "LOCATION_MISMATCH"
    title = "Wrong pickup location"
    status_code = 422


class ValidationFailedError(PassVaultError):
    kind = "VALIDATION_FAILED"
    title = "Missing information"
    status_code = 400


class InvalidTransitionError(PassVaultError):
    kind = "INVALID_TRANSITION"
    title = "Status change not allowed"
    status_code = 400


class VoidedCertificateError(PassVaultError):
    kind = "VOIDED_CERTIFICATE"
    title = "Pass voided"
    status_code = 409


class ConflictError(PassVaultError):
    kind = "CONFLICT"
    title = "Pass changed on another device"
    status_code = 409
    retryable = True


class TransientFetchError(PassVaultError):
    kind = "TRANSIENT_FETCH_ERROR"
    title = "Data may be stale"
    status_code = 503
    retryable = True


class UnauthorizedError(PassVaultError):
    kind = "UNAUTHORIZED"
    title = "Sign-in required"
    status_code = 401


class ForbiddenError(PassVaultError):
    kind = "FORBIDDEN"
    title = "Not allowed"
    status_code = 403
