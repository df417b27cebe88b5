# backend/passvault/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in the working directory unless DATABASE_URL says otherwise
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///passvault.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Certificate numbers look like VLT-20240101-AB123
    CERTIFICATE_PREFIX = os.environ.get("CERTIFICATE_PREFIX", "VLT").upper()

    # PREP: NEW -> ... -> READY -> PICKED_UP ; DIRECT: ACTIVE -> REDEEMED
    FULFILLMENT_WORKFLOW = os.environ.get("FULFILLMENT_WORKFLOW", "PREP").upper()
    CERTIFICATE_VALIDITY_DAYS = _env_int("CERTIFICATE_VALIDITY_DAYS", 7)

    # Bounded wait for a locked database before a write is reported as transient
    DB_LOCK_TIMEOUT_SECONDS = _env_int("DB_LOCK_TIMEOUT_SECONDS", 10)
    WRITE_RETRY_ATTEMPTS = _env_int("WRITE_RETRY_ATTEMPTS", 3)

    CHANGE_FEED_SIZE = _env_int("CHANGE_FEED_SIZE", 500)
    SESSION_TTL_HOURS = _env_int("SESSION_TTL_HOURS", 12)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # bcrypt cost for location PINs
    PIN_HASH_ROUNDS = _env_int("PIN_HASH_ROUNDS", 12)
