# Overview: Capability-token sessions: issue, resolve to an Actor, revoke, clean up.

"""
Session Token Management

Tokens are 32 random bytes (hex), returned once to the client; only the
SHA-256 hash is stored. Each session row records the actor it was issued for,
so resolving a token yields an explicit Actor with no further lookups.

- Absolute expiry: SESSION_TTL_HOURS after issue
- Revocable (logout)
- last_used_at tracks activity for the health report
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..actors import ROLE_CUSTOMER, SCOPE_OWNER, Actor
from ..extensions import db
from ..models import SessionToken
from passvault.time_utils import as_naive_utc, utcnow


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    """SHA-256 is enough for high-entropy tokens (unlike PINs)."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_session(
    *,
    role: str,
    scope: str,
    identity: str,
    location_id: int | None,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """Returns (session_record, plaintext_token)."""
    plaintext_token = generate_token()
    now = utcnow()
    session = SessionToken(
        token_hash=hash_token(plaintext_token),
        role=role,
        scope=scope,
        identity=identity,
        location_id=location_id,
        created_at=now,
        last_used_at=now,
        expires_at=now + timedelta(hours=current_app.config.get("SESSION_TTL_HOURS", 12)),
        user_agent=(user_agent or "")[:255] or None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, plaintext_token


def _active_session(token: str) -> SessionToken | None:
    if not token:
        return None
    session = db.session.query(SessionToken).filter_by(
        token_hash=hash_token(token),
        is_revoked=False,
    ).first()
    if session is None:
        return None
    if as_naive_utc(session.expires_at) < utcnow():
        return None
    return session


def resolve_actor(token: str) -> Actor | None:
    """The Actor a token was issued for, or None if invalid, expired or revoked."""
    session = _active_session(token)
    if session is None:
        return None
    session.last_used_at = utcnow()
    db.session.commit()
    return Actor(
        role=session.role,
        identity=session.identity,
        scope=session.scope,
        location_id=session.location_id,
    )


def revoke_session(token: str) -> bool:
    session = _active_session(token)
    if session is None:
        return False
    session.is_revoked = True
    session.revoked_at = utcnow()
    db.session.commit()
    return True


def cleanup_expired_sessions() -> int:
    """Delete sessions that are expired or revoked. Returns rows removed."""
    now = utcnow()
    deleted = db.session.query(SessionToken).filter(
        db.or_(SessionToken.expires_at < now, SessionToken.is_revoked.is_(True))
    ).delete(synchronize_session=False)
    db.session.commit()
    return deleted


def create_customer_session(owner_id: str) -> tuple[SessionToken, str]:
    """
    Session for a pass owner. Customer sign-in itself is handled upstream;
    this is how it hands a verified owner id to the API.
    """
    owner_id = (owner_id or "").strip()
    if not owner_id:
        raise ValueError("owner_id is required")
    return create_session(role=ROLE_CUSTOMER, scope=SCOPE_OWNER, identity=owner_id, location_id=None)
