# Overview: Retry and locking helpers shared by every certificate write.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConflictError, PassVaultError, TransientFetchError
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for read-validate-write sequences.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the conditional UPDATE
    issued by the certificate store is what makes the write safe.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on transient storage failures.

    - OperationalError (locked database, deadlock, dropped connection) is
      retried with exponential backoff, then surfaced as TransientFetchError.
    - StaleDataError is an optimistic-locking loss and becomes ConflictError.
    - Domain errors roll the session back and propagate unchanged.
    """
    if attempts is None:
        attempts = current_app.config.get("WRITE_RETRY_ATTEMPTS", 3)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except PassVaultError:
            db.session.rollback()
            raise
        except StaleDataError as exc:
            db.session.rollback()
            raise ConflictError("The pass was changed by another device. Refresh and try again.") from exc
        except OperationalError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.warning("Giving up after %d attempts: %s", attempts, exc)
                raise TransientFetchError(
                    "The pass could not be read or saved right now. Refresh and try again."
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))
