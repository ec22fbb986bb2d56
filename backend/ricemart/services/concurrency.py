# Overview: Transaction and retry helpers shared by every write service.

from __future__ import annotations

import logging
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..events import EventCollector
from ..extensions import db


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    SQLite writers are serialized by begin_write_transaction() instead.
    Rows already in the identity map are reloaded so checks made under
    the lock see committed state.
    """
    return query.with_for_update().populate_existing()


def begin_write_transaction() -> None:
    """
    On SQLite, take the database write lock up front (BEGIN IMMEDIATE) so
    two writers cannot both read stale stock and then both write.
    No-op on other dialects and when a transaction is already open.
    """
    if db.engine.dialect.name != "sqlite":
        return
    raw = db.session.connection().connection.dbapi_connection
    if not raw.in_transaction:
        db.session.execute(text("BEGIN IMMEDIATE"))


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            logger.warning("Retrying after database contention (attempt %s): %s", attempt + 1, exc)
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_in_transaction(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run `func` as one unit of work: commit on success, roll back on any
    exception, retry the whole unit on lock contention.
    """
    def _op():
        try:
            begin_write_transaction()
            result = func()
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return result

    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)


def run_unit_of_work(func, dispatcher):
    """
    run_in_transaction() for operations that raise domain events.

    `func` receives an EventCollector. Events from a retried attempt are
    discarded; the surviving batch is published only after the commit.
    """
    collector = EventCollector()

    def _op():
        collector.drain()
        return func(collector)

    result = run_in_transaction(_op)
    dispatcher.publish(collector.drain())
    return result
