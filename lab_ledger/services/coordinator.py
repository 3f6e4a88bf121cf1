"""
Unit-of-work runner for ledger mutations.

A unit is any callable taking the open ``Session``. It performs the stock
guard check, the quantity update, the paired record insert and the audit
entry, in whatever order it needs. ``TransactionCoordinator.run`` wraps all of
it in one database transaction: commit when the unit returns, roll back
everything when it raises.

Usage:
    def unit(session):
        item, _ = guard.apply(session, item_id, -3)
        session.add(Transaction(...))
        audit.record(session, actor, AuditAction.ITEM_ISSUED, "...")
        return item

    item = coordinator.run(unit, label="issue")
"""
import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlmodel import Session

from lab_ledger.db import Store
from lab_ledger.errors import LedgerError, StoreFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_MARKERS = (
    "database is locked",
    "database table is locked",
    "deadlock",
    "could not serialize",
    "lock timeout",
    "lock_timeout",
    "canceling statement due to lock timeout",
)


def classify_store_error(exc: DBAPIError) -> StoreFailure:
    if isinstance(exc, IntegrityError):
        return StoreFailure("The change violates a store constraint", retryable=False)

    text = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    if exc.connection_invalidated or any(marker in text for marker in _RETRYABLE_MARKERS):
        return StoreFailure("The store is busy, try again", retryable=True)
    if isinstance(exc, OperationalError):
        return StoreFailure("The store is unavailable", retryable=True)
    return StoreFailure("The store rejected the change", retryable=False)


class TransactionCoordinator:
    def __init__(self, store: Store, *, max_attempts: int = 3, retry_backoff: float = 0.05):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._store = store
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff

    def run(self, unit: Callable[[Session], T], *, label: str = "unit") -> T:
        attempt = 1
        while True:
            try:
                return self._run_once(unit, label)
            except StoreFailure as failure:
                if not failure.retryable or attempt >= self.max_attempts:
                    raise
                logger.info(
                    "retrying %s after store contention",
                    label,
                    extra={"attempt": attempt, "max_attempts": self.max_attempts},
                )
                time.sleep(self.retry_backoff * attempt)
                attempt += 1

    def _run_once(self, unit: Callable[[Session], T], label: str) -> T:
        session = self._store.session()
        try:
            with session.begin():
                self._store.lock_for_write(session)
                return unit(session)
        except LedgerError as exc:
            logger.warning("%s rolled back: %s", label, exc.code, extra={"reason": exc.message})
            raise
        except DBAPIError as exc:
            failure = classify_store_error(exc)
            logger.warning(
                "%s rolled back on store failure",
                label,
                extra={"retryable": failure.retryable},
                exc_info=True,
            )
            raise failure from exc
        finally:
            session.close()
