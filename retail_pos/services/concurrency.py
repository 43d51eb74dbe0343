# Overview: Transaction boundary for stock-moving operations: row locks, retries, deadline.

from __future__ import annotations

import math
import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import Conflict, ConstraintViolation, Timeout


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; begin_write_transaction()
    takes the database write lock there instead.

    Every operation takes its row locks in the same order:
    sale -> customer -> products (ascending id).
    """
    return query.with_for_update()


def begin_write_transaction(remaining_seconds: float | None = None) -> None:
    """
    Open the unit of work so that reads made under it are safe to act on.

    Lock waits are bounded by what is left of the deadline:
    - SQLite: busy_timeout, then BEGIN IMMEDIATE serializes writers before
      the first read.
    - PostgreSQL: SET LOCAL lock_timeout, so a blocked FOR UPDATE cannot hang.
    """
    wait_ms = max(math.ceil(remaining_seconds * 1000), 1) if remaining_seconds is not None else None
    dialect = db.session.get_bind().dialect.name
    if dialect == "sqlite":
        raw = db.session.connection().connection.dbapi_connection
        if not raw.in_transaction:
            if wait_ms:
                db.session.execute(text(f"PRAGMA busy_timeout = {wait_ms}"))
            db.session.execute(text("BEGIN IMMEDIATE"))
    elif dialect == "postgresql" and wait_ms:
        db.session.execute(text(f"SET LOCAL lock_timeout = '{wait_ms}ms'"))


def run_in_transaction(
    func,
    *,
    attempts: int | None = None,
    backoff_base: float | None = None,
    timeout_seconds: float | None = None,
):
    """
    Execute func() inside one atomic transaction and commit its result.

    - OperationalError (locks, deadlocks) and StaleDataError (optimistic
      version conflicts) are retried with exponential backoff; once the
      attempts are spent the caller gets Conflict.
    - Past the deadline the transaction is rolled back and Timeout raised.
    - IntegrityError becomes ConstraintViolation and is never retried.
    - Anything else, including KeyboardInterrupt, rolls back and propagates.
    """
    config = current_app.config
    if attempts is None:
        attempts = config["SALE_RETRY_ATTEMPTS"]
    if backoff_base is None:
        backoff_base = config["SALE_RETRY_BACKOFF_SECONDS"]
    if timeout_seconds is None:
        timeout_seconds = config["SALE_TRANSACTION_TIMEOUT_SECONDS"]

    deadline = time.monotonic() + timeout_seconds
    last_exc = None

    for attempt in range(attempts):
        if time.monotonic() >= deadline:
            raise Timeout(
                f"Transaction exceeded {timeout_seconds}s",
                details={"timeout_seconds": timeout_seconds, "attempts": attempt},
            ) from last_exc
        try:
            begin_write_transaction(deadline - time.monotonic())
            result = func()
            db.session.flush()
            if time.monotonic() >= deadline:
                raise Timeout(
                    f"Transaction exceeded {timeout_seconds}s",
                    details={"timeout_seconds": timeout_seconds, "attempts": attempt + 1},
                )
            db.session.commit()
            return result
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if time.monotonic() >= deadline:
                raise Timeout(
                    f"Transaction exceeded {timeout_seconds}s",
                    details={"timeout_seconds": timeout_seconds, "attempts": attempt + 1},
                ) from exc
            if attempt >= attempts - 1:
                break
            current_app.logger.warning(
                "Concurrent update conflict (attempt %d/%d): %s", attempt + 1, attempts, exc
            )
            time.sleep(backoff_base * (2 ** attempt))
        except IntegrityError as exc:
            db.session.rollback()
            raise ConstraintViolation(
                "Database constraint violated",
                details={"constraint": str(exc.orig)},
            ) from exc
        except BaseException:
            db.session.rollback()
            raise

    raise Conflict(
        f"Gave up after {attempts} attempts due to concurrent updates",
        details={"attempts": attempts},
    ) from last_exc
