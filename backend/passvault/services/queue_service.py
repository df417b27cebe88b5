# Overview: Server-side work queues (staff pickup queue, admin drops board) and display grouping.

"""
Queues

Eligibility, grouping and counts are computed here, from stored state, so
every terminal shows the same numbers. Clients render the result and never
filter a cached list to decide what a pass is eligible for.

display_bucket() is presentation only: it folds the canonical statuses into
the buckets the screens show (CANCELLED and EXPIRED both read "cancelled")
without ever touching the stored status.
"""

from __future__ import annotations

from datetime import datetime

from ..actors import ROLE_ADMIN, ROLE_STAFF, Actor
from ..extensions import db
from ..models import Certificate
from passvault.time_utils import as_naive_utc, start_of_utc_day, to_utc_z, utcnow
from . import state_machine

DEFAULT_LIMIT = 200

_DISPLAY_BUCKETS = {
    state_machine.NEW: "new",
    state_machine.ASSIGNED: "assigned",
    state_machine.PENDING: "pending",
    state_machine.PREPARING: "preparing",
    state_machine.READY: "ready",
    state_machine.ACTIVE: "active",
    state_machine.PICKED_UP: "completed",
    state_machine.REDEEMED: "completed",
    state_machine.CANCELLED: "cancelled",
    state_machine.EXPIRED: "cancelled",
}

STAFF_QUEUE_BUCKETS = ("pending", "preparing", "ready", "picked_up")
ADMIN_DROP_TABS = ("new", "assigned", "cancelled")


def display_bucket(status: str) -> str:
    state_machine.validate_status(status)
    return _DISPLAY_BUCKETS[status]


def _render(query, limit: int) -> tuple[int, list[dict]]:
    count = query.order_by(None).count()
    rows = query.limit(limit).all()
    items = []
    for cert in rows:
        item = cert.to_dict()
        item["display_bucket"] = display_bucket(cert.status)
        items.append(item)
    return count, items


def staff_queue(location_id: int, actor: Actor, *, now: datetime | None = None, limit: int = DEFAULT_LIMIT) -> dict:
    """
    The preparation queue of one location.

    pending / preparing / ready: claimed here, not voided, in that status.
    picked_up: completed here since the start of today (UTC).
    """
    actor.require_role(ROLE_STAFF, ROLE_ADMIN)
    actor.require_location(location_id)

    now = as_naive_utc(now) if now is not None else utcnow()
    since = start_of_utc_day(now)
    base = db.session.query(Certificate).filter(
        Certificate.claim_location_id == location_id,
        Certificate.voided.is_(False),
    )

    filters = {
        "pending": (Certificate.status == state_machine.PENDING,),
        "preparing": (Certificate.status == state_machine.PREPARING,),
        "ready": (Certificate.status == state_machine.READY,),
        "picked_up": (
            Certificate.status.in_(sorted(state_machine.SUCCESS_TERMINALS)),
            Certificate.redeemed_at >= since,
        ),
    }

    buckets, counts = {}, {}
    for name in STAFF_QUEUE_BUCKETS:
        query = base.filter(*filters[name])
        if name == "picked_up":
            query = query.order_by(Certificate.redeemed_at.desc(), Certificate.id.desc())
        else:
            query = query.order_by(Certificate.admin_assigned_at, Certificate.id)
        counts[name], buckets[name] = _render(query, limit)

    return {
        "location_id": location_id,
        "generated_at": to_utc_z(now),
        "counts": counts,
        "buckets": buckets,
    }


def admin_drops(actor: Actor, *, limit: int = DEFAULT_LIMIT) -> dict:
    """
    Winning-drops board: non-voided, unredeemed passes in three tabs.

    new        not yet sent to staff, not cancelled
    assigned   sent to staff, still in progress
    cancelled  failure terminals (awaiting inventory return or done)
    """
    actor.require_role(ROLE_ADMIN)

    base = db.session.query(Certificate).filter(
        Certificate.voided.is_(False),
        Certificate.redeemed_at.is_(None),
    )
    failed = sorted(state_machine.FAILURE_TERMINALS)

    tabs_filters = {
        "new": (Certificate.admin_assigned_at.is_(None), ~Certificate.status.in_(failed)),
        "assigned": (Certificate.admin_assigned_at.is_not(None), ~Certificate.status.in_(failed)),
        "cancelled": (Certificate.status.in_(failed),),
    }

    tabs, counts = {}, {}
    for name in ADMIN_DROP_TABS:
        query = base.filter(*tabs_filters[name]).order_by(Certificate.created_at.desc(), Certificate.id.desc())
        counts[name], tabs[name] = _render(query, limit)

    return {"counts": counts, "tabs": tabs}
