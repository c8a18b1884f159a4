# Overview: Transaction, locking and retry helpers shared by the stock services.

from __future__ import annotations

import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db

# Session.info key counting active retry boundaries
_RETRY_DEPTH = "wms.retry_depth"


def lock_for_update(query):
    """
    Apply row-level locking for stock-bearing rows.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


@contextmanager
def _retry_boundary():
    info = db.session.info
    info[_RETRY_DEPTH] = info.get(_RETRY_DEPTH, 0) + 1
    try:
        yield
    finally:
        info[_RETRY_DEPTH] -= 1


def in_retry_boundary() -> bool:
    return db.session.info.get(_RETRY_DEPTH, 0) > 0


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (version_id conflicts on products and documents).

    Only the outermost call retries. A nested call runs once and lets the
    error reach the enclosing boundary, whose rollback and re-run cover the
    whole unit of work.
    """
    if in_retry_boundary():
        return func()

    for attempt in range(attempts):
        try:
            with _retry_boundary():
                return func()
        except (OperationalError, StaleDataError):
            db.session.rollback()
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))


def run_in_transaction(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run `func` and commit as one unit; any exception rolls back every row it touched.

    This is the retry boundary of a request: a lock or version conflict
    anywhere inside `func` or at commit re-runs `func` from the start on a
    clean session.
    """
    def _unit():
        result = func()
        db.session.commit()
        return result

    try:
        return run_with_retry(_unit, attempts=attempts, backoff_base=backoff_base)
    except Exception:
        db.session.rollback()
        raise
