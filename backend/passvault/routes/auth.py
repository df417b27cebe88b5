# Overview: Flask API routes for PIN sign-in and logout; parses input and returns JSON responses.

# backend/passvault/routes/auth.py
"""
PIN authentication API routes

A correct location PIN returns a bearer token bound to an actor:
- staff: scope "location" (only that location's passes)
- admin: scope "all"
"""

from flask import Blueprint, request, jsonify, current_app

from ..decorators import bearer_token
from ..errors import PassVaultError
from ..services import auth_service, session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/pin")
def pin_login_route():
    """
    Exchange a location PIN for a session token.

    Body: {"location_id": 1, "role": "staff" | "admin", "pin": "1234"}
    """
    try:
        data = request.get_json(silent=True) or {}
        location_id = data.get("location_id")
        role = (data.get("role") or "staff").lower()
        pin = data.get("pin")

        if location_id is None or not pin:
            return jsonify({"error": "VALIDATION_FAILED", "message": "location_id and pin required"}), 400

        session, token = auth_service.login_with_pin(
            location_id,
            role,
            str(pin),
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "token": token,
            "session": session.to_dict(),
            "message": "Login successful"
        }), 200

    except PassVaultError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed PIN login")
        return jsonify({"error": "Internal server error"}), 500


@auth_bp.post("/logout")
def logout_route():
    """
    Revoke session token (logout).

    Expects Authorization header: Bearer <token>
    """
    try:
        token = bearer_token()
        if not token:
            return jsonify({"error": "UNAUTHORIZED", "message": "Authorization header required"}), 401

        if not session_service.revoke_session(token):
            return jsonify({"error": "UNAUTHORIZED", "message": "Invalid or expired token"}), 401

        return jsonify({"message": "Logout successful"}), 200

    except Exception:
        current_app.logger.exception("Failed to logout")
        return jsonify({"error": "Internal server error"}), 500
