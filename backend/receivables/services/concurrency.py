# Overview: Transaction plumbing for the ledger store: row locks, retries, commit/rollback.

from __future__ import annotations

import logging
import time

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for settlement reads.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; version_id columns on the
    mutable rows (customers, sales, receipts) still turn a lost update
    into a StaleDataError there, which run_with_retry handles.
    """
    return query.with_for_update()


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute one unit of work with retry on concurrency-related failures.

    func must open, write and commit its own work; any exception rolls the
    session back so nothing partial stays pending. Only OperationalError
    (deadlocks, lock timeouts) and StaleDataError (optimistic locking
    conflicts) are retried; everything else propagates after rollback.
    """
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                logger.error("Giving up after %d attempts: %s", attempts, exc)
                raise
            delay = backoff_base * (2 ** attempt)
            logger.warning("Concurrency conflict (attempt %d/%d), retrying in %.2fs: %s",
                           attempt + 1, attempts, delay, exc)
            time.sleep(delay)
        except Exception:
            db.session.rollback()
            raise

