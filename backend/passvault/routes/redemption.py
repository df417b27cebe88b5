# Overview: Flask API routes for scanning and redeeming passes at a counter.

from flask import Blueprint, request, jsonify, current_app, g

from ..actors import ROLE_ADMIN, ROLE_STAFF
from ..decorators import require_actor
from ..services import redemption_service


redemption_bp = Blueprint("redemption", __name__, url_prefix="/api/redeem")


def _scan_input(data: dict):
    """The scanned token: a QR payload object, free text, or a typed number."""
    if isinstance(data.get("payload"), dict):
        return data["payload"]
    return data.get("token") or data.get("certificate_number")


def _location_id(data: dict):
    location_id = data.get("location_id")
    return location_id if location_id is not None else g.actor.location_id


def _respond(outcome):
    status = 200 if outcome.success else outcome.error.status_code
    return jsonify(outcome.to_dict()), status


@redemption_bp.post("")
@require_actor(ROLE_STAFF, ROLE_ADMIN)
def redeem_route():
    """
    Redeem a pass exactly once.

    Body:
        token | certificate_number | payload   what was scanned or typed
        pos_transaction_id                     required
        location_id                            defaults to the actor's location

    Success: 200 {"success": true, "certificate": {...}, "discount_cents": N}
    Failure: {"success": false, "error_kind": "...", "title", "message"} with
    the status code of the error kind (404, 409, 410, 422, ...).
    """
    try:
        data = request.get_json(silent=True) or {}
        outcome = redemption_service.redeem(
            _scan_input(data),
            _location_id(data),
            data.get("pos_transaction_id"),
            actor=g.actor,
        )
        return _respond(outcome)
    except Exception:
        current_app.logger.exception("Failed to redeem pass")
        return jsonify({"error": "Internal server error"}), 500


@redemption_bp.post("/preview")
@require_actor(ROLE_STAFF, ROLE_ADMIN)
def preview_route():
    """Read-only scan: what would be redeemed, and the discount to apply."""
    try:
        data = request.get_json(silent=True) or {}
        outcome = redemption_service.preview(
            _scan_input(data),
            _location_id(data),
            actor=g.actor,
        )
        return _respond(outcome)
    except Exception:
        current_app.logger.exception("Failed to preview pass")
        return jsonify({"error": "Internal server error"}), 500
