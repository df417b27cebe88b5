# Overview: Flask API routes for admin operations (drops board, void, sweep, returns).

from flask import Blueprint, jsonify, request, current_app, g

from ..actors import ROLE_ADMIN
from ..decorators import require_actor
from ..errors import PassVaultError
from ..services import audit_service, expiry_service, fulfillment_service, queue_service


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/drops")
@require_actor(ROLE_ADMIN)
def drops_board():
    """Winning-drops board: new / assigned / cancelled tabs with counts."""
    try:
        return jsonify(queue_service.admin_drops(g.actor)), 200
    except PassVaultError as e:
        return jsonify(e.to_dict()), e.status_code


@admin_bp.post("/certificates/<int:certificate_id>/assign")
@require_actor(ROLE_ADMIN)
def assign_certificate(certificate_id: int):
    """
    Send a pass to its claim location's staff queue (NEW -> ASSIGNED -> PENDING).

    Body: {"admin_notes": "..."} (optional)
    """
    try:
        data = request.get_json(silent=True) or {}
        cert = fulfillment_service.assign_to_location(certificate_id, g.actor, data.get("admin_notes"))
        return jsonify(cert.to_dict()), 200
    except PassVaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to assign certificate")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/certificates/<int:certificate_id>/void")
@require_actor(ROLE_ADMIN)
def void_certificate(certificate_id: int):
    """Body: {"reason": "..."} (required)"""
    try:
        data = request.get_json(silent=True) or {}
        cert = fulfillment_service.void_certificate(certificate_id, data.get("reason"), g.actor)
        return jsonify(cert.to_dict()), 200
    except PassVaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to void certificate")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/certificates/<int:certificate_id>/inventory-returned")
@require_actor(ROLE_ADMIN)
def inventory_returned(certificate_id: int):
    try:
        cert = fulfillment_service.mark_inventory_returned(certificate_id, g.actor)
        return jsonify(cert.to_dict()), 200
    except PassVaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark inventory returned")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.post("/expiry-sweep")
@require_actor(ROLE_ADMIN)
def expiry_sweep():
    """Run the auto-expiry sweep now. Returns {"cancelled_count": N}."""
    try:
        cancelled = expiry_service.run_auto_expiry_sweep()
        return jsonify({"cancelled_count": cancelled}), 200
    except PassVaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Expiry sweep failed")
        return jsonify({"error": "Internal server error"}), 500


@admin_bp.get("/cancelled-claims")
@require_actor(ROLE_ADMIN)
def cancelled_claims():
    """Outstanding inventory returns per active location, busiest first."""
    try:
        return jsonify(audit_service.pending_cancelled_claims_by_location()), 200
    except PassVaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load cancelled claims")
        return jsonify({"error": "Internal server error"}), 500
