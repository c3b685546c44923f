# Overview: Service-layer operations for concurrency; row locks, retry and the unit-of-work boundary.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConcurrencyConflictError


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the version_id compare-and-swap is what catches the race.
    """
    return query.with_for_update()


def _default_attempts() -> int:
    return int(current_app.config.get("PROCURE_RETRY_ATTEMPTS", 3))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Either one surviving every attempt
    surfaces as ConcurrencyConflictError so callers can ask the client to
    retry.
    """
    if attempts is None:
        attempts = _default_attempts()
    for attempt in range(attempts):
        try:
            return func()
        except StaleDataError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConcurrencyConflictError() from exc
            current_app.logger.info("Optimistic lock conflict, retrying (attempt %s/%s)", attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))
        except OperationalError as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise ConcurrencyConflictError() from exc
            current_app.logger.info("Database busy, retrying (attempt %s/%s)", attempt + 1, attempts)
            time.sleep(backoff_base * (2 ** attempt))


def run_in_transaction(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Run one workflow operation as a single unit of work.

    func performs every step (status change, ledger movement, history and
    activity rows) against db.session and flushes; this wrapper commits.
    On a lost race the whole func is re-run from a clean session, so a retry
    re-reads current state and re-checks its guards. Any other exception
    rolls back and propagates unchanged.
    """
    def _op():
        try:
            result = func()
            db.session.commit()
            return result
        except (StaleDataError, OperationalError):
            raise
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)
