# Overview: Locking and atomic-unit helpers shared by settlement, transfer, adjustment and receiving.

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..validation import RetailPosError, StorageFailure


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the atomic unit takes the database write lock up front instead
    (see begin_immediate). Rows already in the session are refreshed so the
    caller decides on the locked values.
    """
    return query.with_for_update().populate_existing()


def begin_immediate() -> None:
    """
    On SQLite, take the write lock before the first read of the unit.

    Without it two units could both read a ledger quantity under a shared
    lock and then race to write (lost update / oversell).
    """
    if db.engine.dialect.name != "sqlite":
        return
    driver_connection = db.session.connection().connection.driver_connection
    if getattr(driver_connection, "in_transaction", False):
        return
    db.session.execute(text("BEGIN IMMEDIATE"))


@contextmanager
def atomic_unit(operation: str) -> Iterator:
    """
    One all-or-nothing unit of work.

    Commits when the block completes, rolls back on any error. Domain errors
    propagate unchanged; data store errors become StorageFailure:
    - OperationalError / StaleDataError (lock timeout, deadlock, busy db,
      concurrent version bump): retryable
    - IntegrityError and other SQLAlchemy errors: not retryable

    No retry happens here; the caller decides whether to re-run the operation.
    """
    try:
        begin_immediate()
        yield db.session
        db.session.commit()
    except RetailPosError:
        db.session.rollback()
        raise
    except (OperationalError, StaleDataError) as exc:
        db.session.rollback()
        current_app.logger.exception("%s aborted by the data store", operation)
        raise StorageFailure(
            f"{operation} could not complete because of concurrent access; retry the operation",
            retryable=True,
        ) from exc
    except IntegrityError as exc:
        db.session.rollback()
        current_app.logger.exception("%s violated a data store constraint", operation)
        raise StorageFailure(f"{operation} violated a data store constraint", retryable=False) from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("%s failed in the data store", operation)
        raise StorageFailure(f"{operation} failed in the data store", retryable=False) from exc
    except Exception:
        db.session.rollback()
        raise
