# Overview: Unit-of-work helpers: row locks, retries, and rollback-on-failure.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import PersistenceError
from ..extensions import db


class ConcurrentInsertError(Exception):
    """Another transaction inserted the same unique row first; retrying re-reads it."""


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Optimistic version_id columns cover the SQLite case.
    """
    return query.with_for_update()


def _retry_attempts(attempts: int | None) -> int:
    if attempts is not None:
        return attempts
    return int(current_app.config.get("STOCK_TX_RETRY_ATTEMPTS", 3))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB unit of work with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks), StaleDataError
    (optimistic locking conflicts) and ConcurrentInsertError. Every failure
    rolls the session back so no partial write stays visible. Storage
    failures surface as PersistenceError; domain errors propagate unchanged.

    Only for units of work that own the transaction; see run_unit_of_work.
    """
    attempts = _retry_attempts(attempts)
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, ConcurrentInsertError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                raise PersistenceError(f"transaction failed after {attempts} attempts: {exc}") from exc
            time.sleep(backoff_base * (2 ** attempt))
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f"transaction failed: {exc}") from exc
        except Exception:
            db.session.rollback()
            raise


def run_unit_of_work(func, *, commit: bool):
    """
    Run func with retry and rollback when it owns the transaction (commit=True).

    With commit=False the caller owns the transaction: func runs once, the
    session is never rolled back here, and failures reach the caller with
    its earlier flushed work still pending.
    """
    if commit:
        return run_with_retry(func)
    try:
        return func()
    except (SQLAlchemyError, ConcurrentInsertError) as exc:
        raise PersistenceError(f"unit of work failed: {exc}") from exc


def finish(commit: bool) -> None:
    """Commit the unit of work, or flush when the caller owns the transaction."""
    if commit:
        db.session.commit()
    else:
        db.session.flush()
