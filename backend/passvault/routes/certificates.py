# Overview: Flask API routes for certificates and pickup locations; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request, current_app, g

from ..actors import ROLE_ADMIN, ROLE_CUSTOMER, ROLE_STAFF
from ..decorators import require_actor
from ..errors import PassVaultError
from ..services import audit_service, fulfillment_service, location_service, queue_service


certificates_bp = Blueprint("certificates", __name__, url_prefix="/api/certificates")
locations_bp = Blueprint("locations", __name__, url_prefix="/api/locations")


@locations_bp.get("")
def list_locations():
    """Active pickup locations, in display order (customer-visible)."""
    locations = location_service.list_locations()
    return jsonify([location.to_dict() for location in locations]), 200


@certificates_bp.get("/queue")
@require_actor(ROLE_STAFF, ROLE_ADMIN)
def staff_queue():
    """
    Preparation queue for a location with per-bucket counts.

    Query: location_id (defaults to the staff member's location)
    """
    try:
        location_id = request.args.get("location_id", type=int)
        if location_id is None:
            location_id = g.actor.location_id
        if location_id is None:
            return jsonify({"error": "VALIDATION_FAILED", "message": "location_id is required"}), 400
        return jsonify(queue_service.staff_queue(location_id, g.actor)), 200
    except PassVaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load staff queue")
        return jsonify({"error": "Internal server error"}), 500


@certificates_bp.get("/<int:certificate_id>")
@require_actor(ROLE_CUSTOMER, ROLE_STAFF, ROLE_ADMIN)
def get_certificate(certificate_id: int):
    try:
        cert = fulfillment_service.get_visible_certificate(certificate_id, g.actor)
        payload = cert.to_dict()
        payload["display_bucket"] = queue_service.display_bucket(cert.status)
        return jsonify(payload), 200
    except PassVaultError as e:
        return jsonify(e.to_dict()), e.status_code


@certificates_bp.get("/<int:certificate_id>/history")
@require_actor(ROLE_STAFF, ROLE_ADMIN)
def get_certificate_history(certificate_id: int):
    try:
        fulfillment_service.get_visible_certificate(certificate_id, g.actor)
        entries = audit_service.get_certificate_history(certificate_id)
        return jsonify([entry.to_dict() for entry in entries]), 200
    except PassVaultError as e:
        return jsonify(e.to_dict()), e.status_code


@certificates_bp.post("/<int:certificate_id>/status")
@require_actor(ROLE_STAFF, ROLE_ADMIN)
def update_status(certificate_id: int):
    """
    Staff workflow step (e.g. PENDING -> PREPARING -> READY).

    Body: {"status": "PREPARING", "expected_status": "PENDING"}

    expected_status is the status the terminal last showed. If the pass has
    moved since, the answer is 409 CONFLICT with the current status and
    nothing is written.
    """
    try:
        data = request.get_json(silent=True) or {}
        target = data.get("status")
        if not target:
            return jsonify({"error": "VALIDATION_FAILED", "message": "status is required"}), 400

        cert = fulfillment_service.staff_transition(
            certificate_id,
            target,
            g.actor,
            expected_status=data.get("expected_status"),
        )
        return jsonify(cert.to_dict()), 200
    except PassVaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update certificate status")
        return jsonify({"error": "Internal server error"}), 500


@certificates_bp.post("/<int:certificate_id>/claim-location")
@require_actor(ROLE_CUSTOMER, ROLE_ADMIN)
def select_claim_location(certificate_id: int):
    """Body: {"location_id": 2}"""
    try:
        data = request.get_json(silent=True) or {}
        cert = fulfillment_service.select_claim_location(certificate_id, data.get("location_id"), g.actor)
        return jsonify(cert.to_dict()), 200
    except PassVaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to select claim location")
        return jsonify({"error": "Internal server error"}), 500
