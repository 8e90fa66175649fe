# Overview: Row locking and retry helpers for payout ledger writes.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


def lock_for_update(query):
    """
    Lock the rows a ledger write depends on (original SALE rows before a refund).

    NOTE: SQLite ignores SELECT ... FOR UPDATE; Postgres/MySQL serialize
    concurrent refunds of the same transaction on these rows.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Run one ledger write, retrying on lock contention.

    Retries on OperationalError (deadlocks, lock timeouts) and StaleDataError
    (version_id conflicts on plans/settings). The session is rolled back
    before each retry, so func must redo its reads; idempotency keys make a
    retried write return the rows a previous attempt already stored.
    Anything else (ValidationError, PayoutLedgerError, invariant failures)
    propagates on the first attempt.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt == attempts:
                current_app.logger.error("Ledger write failed after %d attempt(s): %s", attempt, exc)
                raise
            current_app.logger.warning("Ledger write conflict (attempt %d/%d): %s", attempt, attempts, exc)
            time.sleep(backoff_base * (2 ** (attempt - 1)))
