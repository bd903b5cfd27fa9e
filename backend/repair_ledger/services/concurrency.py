# Overview: Service-layer helpers for row locking and contention retries.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import LedgerBusyError, LedgerConflictError, StoreUnavailableError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the ticket's version_id column still turns a stale
    read-modify-write into a StaleDataError.
    """
    return query.with_for_update()


def _is_lock_contention(exc: OperationalError) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return any(
        marker in message
        for marker in ("locked", "deadlock", "lock wait timeout", "could not obtain lock", "could not serialize")
    )


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError from lock contention (deadlocks, busy
    database) and StaleDataError (optimistic locking conflicts). Each retry
    calls func again from the start, so it re-reads rows and re-validates.

    Any exception rolls the session back, so a failed operation never leaves
    a half-applied write pending. Exhausted retries surface as
    LedgerConflictError (stale version) or LedgerBusyError (lock timeout);
    other persistence failures surface as StoreUnavailableError.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF", 0.1)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except StaleDataError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise LedgerConflictError(
                    "Ticket was modified concurrently; please retry",
                    attempts=attempts,
                ) from exc
            current_app.logger.warning(
                "Stale ticket version, retrying (attempt %s/%s)", attempt + 1, attempts
            )
        except OperationalError as exc:
            db.session.rollback()
            if not _is_lock_contention(exc):
                current_app.logger.exception("Ledger store operation failed")
                raise StoreUnavailableError("Ledger store is unavailable") from exc
            if attempt >= attempts - 1:
                raise LedgerBusyError(
                    "Ticket is locked by another operation; please retry",
                    attempts=attempts,
                ) from exc
            current_app.logger.warning(
                "Ledger lock contention, retrying (attempt %s/%s)", attempt + 1, attempts
            )
        except DBAPIError as exc:
            db.session.rollback()
            current_app.logger.exception("Ledger store operation failed")
            raise StoreUnavailableError("Ledger store is unavailable") from exc
        except Exception:
            db.session.rollback()
            raise
        time.sleep(backoff_base * (2 ** attempt))
