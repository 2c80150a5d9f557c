# Overview: Service-layer operations for concurrency; encapsulates business logic and database work.

from __future__ import annotations

import time

from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    populate_existing() refreshes objects already in the identity map, so a
    retried operation always sees the committed state of the row.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The version_id_col on the locked models still makes every UPDATE a
    compare-and-swap there.
    """
    return query.with_for_update().populate_existing()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on optimistic locking conflicts.

    Only StaleDataError is retried: the losing writer rolls back, re-reads
    the committed row and then observes the winner's state. OperationalError
    (store unavailable, lock timeout) is fatal for the request and propagates
    to the caller, which owns the backoff.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except StaleDataError as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_in_transaction(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    run_with_retry for whole write operations.

    Any other exception raised by func (business-rule and infrastructure
    errors included) rolls the session back before propagating, so a
    rejected operation leaves no partial change behind.
    """
    try:
        return run_with_retry(func, attempts=attempts, backoff_base=backoff_base)
    except StaleDataError:
        raise
    except Exception:
        db.session.rollback()
        raise
