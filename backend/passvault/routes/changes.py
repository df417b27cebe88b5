# Overview: Polling endpoint over the in-process change feed.

from flask import Blueprint, jsonify, request, g

from ..actors import ROLE_ADMIN, ROLE_STAFF
from ..decorators import require_actor
from ..services import notifier


changes_bp = Blueprint("changes", __name__, url_prefix="/api/changes")


@changes_bp.get("")
@require_actor(ROLE_STAFF, ROLE_ADMIN)
def list_changes():
    """
    Events newer than ?since=N.

    When resync_required is true the client missed events that are no longer
    retained and must refetch its queue/board in full; "last_sequence" is the
    cursor to poll from afterwards.
    """
    since = request.args.get("since", default=0, type=int)
    if since < 0:
        return jsonify({"error": "VALIDATION_FAILED", "message": "since must be >= 0"}), 400

    events, resync_required, last_sequence = notifier.get_feed().since(since)
    # Staff only hear about their own location
    events = [e for e in events if g.actor.covers_location(e.claim_location_id)]
    return jsonify({
        "events": [event.to_dict() for event in events],
        "resync_required": resync_required,
        "last_sequence": last_sequence,
    }), 200
