# Overview: Transaction scope, row locking and retry for ledger operations.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import ConcurrencyConflict


RETRYABLE_ERRORS = (OperationalError, StaleDataError, ConcurrencyConflict)


def lock_for_update(query, *, of=None):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there begin_write() takes the
    database write lock up front instead.
    """
    if of is not None:
        return query.with_for_update(of=of)
    return query.with_for_update()


def begin_write(timeout: float | None = None) -> None:
    """
    Open the write transaction for one business operation.

    SQLite: BEGIN IMMEDIATE serialises writers; waiting is bounded by the
    driver busy timeout. PostgreSQL: bound row-lock waits with lock_timeout.
    Joins the transaction when one is already open on the connection.
    """
    if timeout is None:
        timeout = current_app.config["TRANSACTION_TIMEOUT_SECONDS"]

    conn = db.session.connection()
    dialect = conn.dialect.name
    if dialect == "sqlite":
        dbapi_conn = conn.connection.dbapi_connection
        if not dbapi_conn.in_transaction:
            conn.exec_driver_sql("BEGIN IMMEDIATE")
    elif dialect == "postgresql":
        db.session.execute(text(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'"))


def run_in_transaction(func, *, attempts: int | None = None, backoff_base: float = 0.1,
                       timeout: float | None = None):
    """
    Run func as one atomic unit of work and commit it.

    Retries on OperationalError (deadlocks, lock timeouts), StaleDataError
    (optimistic locking) and ConcurrencyConflict (allocation re-check) with
    exponential backoff, bounded by attempts and by the timeout. When the
    budget runs out the caller gets a retryable ConcurrencyConflict.

    Every other exception, cancellation included, rolls the transaction
    back and propagates unchanged.
    """
    config = current_app.config
    if attempts is None:
        attempts = config["TRANSACTION_RETRY_ATTEMPTS"]
    if timeout is None:
        timeout = config["TRANSACTION_TIMEOUT_SECONDS"]

    deadline = time.monotonic() + timeout
    for attempt in range(attempts):
        try:
            begin_write(timeout)
            result = func()
            db.session.commit()
            return result
        except RETRYABLE_ERRORS as exc:
            db.session.rollback()
            remaining = deadline - time.monotonic()
            if attempt >= attempts - 1 or remaining <= 0:
                if isinstance(exc, ConcurrencyConflict):
                    raise
                raise ConcurrencyConflict(
                    "transaction could not be completed, retry the operation",
                    details={"attempts": attempt + 1, "error": str(exc)},
                ) from exc
            delay = min(backoff_base * (2 ** attempt), remaining)
            current_app.logger.warning(
                "Retrying transaction after %s (attempt %d/%d)",
                type(exc).__name__, attempt + 1, attempts,
            )
            time.sleep(delay)
        except BaseException:
            db.session.rollback()
            raise
