# Overview: Request decorators for API routes (bearer token -> Actor).

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_actor(*roles: str):
    """
    Require a valid capability token and, optionally, one of the given roles.

    Sets g.actor to the Actor the token was issued for. Routes pass g.actor
    explicitly into every service call.

    Returns 401 if the token is missing, expired or revoked; 403 if the
    actor's role is not allowed here.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            token = bearer_token()
            if not token:
                return jsonify({"error": "UNAUTHORIZED", "message": "Authentication required"}), 401

            actor = session_service.resolve_actor(token)
            if actor is None:
                return jsonify({"error": "UNAUTHORIZED", "message": "Invalid or expired token"}), 401

            if roles and actor.role not in roles:
                return jsonify({
                    "error": "FORBIDDEN",
                    "message": f"Requires one of: {', '.join(roles)}",
                }), 403

            g.actor = actor
            return f(*args, **kwargs)

        return decorated_function
    return decorator
