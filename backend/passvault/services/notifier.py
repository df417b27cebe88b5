# Overview: Change notification for certificate mutations (signals + polling feed).

"""
Change Notifier

Every committed certificate mutation is broadcast as a ChangeEvent on the
``certificate-changed`` blinker signal, with the Flask app as sender.
Observers either connect a receiver (push) or poll the bounded in-process
ChangeFeed by sequence number (pull).

DELIVERY RULES:
- Best-effort. A failing receiver is logged and skipped; it never fails or
  blocks the mutation that produced the event (publish runs after commit).
- No ordering guarantee across observers. The feed's sequence numbers only
  let a poller detect that it fell behind the retained window, in which
  case it is told to resync (refetch everything) instead of being handed a
  partial history.
- Not a source of truth. Invariants live in the state machine.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import asdict, dataclass, replace
from datetime import datetime

from blinker import ANY, Namespace
from flask import current_app

from passvault.time_utils import to_utc_z, utcnow

_signals = Namespace()

certificate_changed = _signals.signal("certificate-changed")

FEED_EXTENSION_KEY = "passvault.change_feed"


@dataclass(frozen=True)
class ChangeEvent:
    certificate_id: int
    certificate_number: str
    action: str
    status: str
    claim_location_id: int | None
    performed_by: str | None
    occurred_at: datetime
    sequence: int | None = None

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["occurred_at"] = to_utc_z(self.occurred_at)
        return payload


def event_for(certificate, action: str, performed_by: str | None) -> ChangeEvent:
    return ChangeEvent(
        certificate_id=certificate.id,
        certificate_number=certificate.certificate_number,
        action=action,
        status=certificate.status,
        claim_location_id=certificate.claim_location_id,
        performed_by=performed_by,
        occurred_at=utcnow(),
    )


def publish(event: ChangeEvent) -> int:
    """
    Deliver an event to every receiver. Returns how many accepted it.

    Must be called after the mutation is committed.
    """
    app = current_app._get_current_object()
    delivered = 0
    for receiver in list(certificate_changed.receivers_for(app)):
        try:
            receiver(app, event=event)
            delivered += 1
        except Exception:
            app.logger.warning(
                "Change observer %r failed for %s (%s)",
                receiver, event.certificate_number, event.action,
                exc_info=True,
            )
    return delivered


def subscribe(callback, *, app=None):
    """
    Connect ``callback(sender, event=...)`` and return an unsubscribe function.

    With no app the receiver hears every app in the process.
    """
    sender = app if app is not None else ANY
    certificate_changed.connect(callback, sender=sender, weak=False)

    def unsubscribe() -> None:
        certificate_changed.disconnect(callback, sender=sender)

    return unsubscribe


class ChangeFeed:
    """Bounded, sequence-numbered window of recent events for polling clients."""

    def __init__(self, maxlen: int = 500):
        self._events: deque[ChangeEvent] = deque(maxlen=max(1, maxlen))
        self._lock = threading.Lock()
        self._last_sequence = 0

    @property
    def last_sequence(self) -> int:
        with self._lock:
            return self._last_sequence

    def record(self, _sender, *, event: ChangeEvent) -> ChangeEvent:
        with self._lock:
            self._last_sequence += 1
            stamped = replace(event, sequence=self._last_sequence)
            self._events.append(stamped)
        return stamped

    def since(self, sequence: int) -> tuple[list[ChangeEvent], bool, int]:
        """
        Events newer than ``sequence``.

        Returns (events, resync_required, last_sequence). resync_required is
        True when events after ``sequence`` have already been evicted, or when
        the caller's cursor is ahead of this feed (process restart).
        """
        with self._lock:
            last = self._last_sequence
            if sequence > last:
                return [], True, last
            oldest = self._events[0].sequence if self._events else last + 1
            if sequence < oldest - 1:
                return [], True, last
            return [e for e in self._events if e.sequence > sequence], False, last


def init_app(app) -> ChangeFeed:
    feed = ChangeFeed(app.config.get("CHANGE_FEED_SIZE", 500))
    app.extensions[FEED_EXTENSION_KEY] = feed
    certificate_changed.connect(feed.record, sender=app, weak=False)
    return feed


def get_feed() -> ChangeFeed:
    return current_app.extensions[FEED_EXTENSION_KEY]
