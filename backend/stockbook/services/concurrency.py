# Overview: Locking and retry helpers for the stock ledger's write path.

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import ConcurrencyConflict, StorageError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    The in-process ProductLockRegistry covers the SQLite case.
    """
    return query.with_for_update()


def is_sequence_conflict(exc: IntegrityError) -> bool:
    """True when the unique (product_id, sequence) key on stock_movements fired."""
    message = str(getattr(exc, "orig", exc)).lower()
    return "uq_stock_movements_product_sequence" in message or (
        "stock_movements" in message and "sequence" in message
    )


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class ProductLockRegistry:
    """
    One mutex per product id.

    Movements against the same product run one at a time; movements against
    different products never wait on each other. Locks for several products
    are always taken in sorted id order so two multi-product writers cannot
    deadlock.

    An entry lives only while some caller holds or waits on it, so ids that
    were looked up once (including ids of products that do not exist) do not
    accumulate.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: dict[str, _LockEntry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _checkout(self, product_ids: list[str]) -> list[_LockEntry]:
        with self._guard:
            entries = []
            for product_id in product_ids:
                entry = self._entries.get(product_id)
                if entry is None:
                    entry = self._entries[product_id] = _LockEntry()
                entry.users += 1
                entries.append(entry)
            return entries

    def _checkin(self, product_ids: list[str], entries: list[_LockEntry]) -> None:
        with self._guard:
            for product_id, entry in zip(product_ids, entries):
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[product_id]

    @contextmanager
    def hold(self, *product_ids: str):
        ids = sorted(set(product_ids))
        entries = self._checkout(ids)
        acquired = []
        try:
            for entry in entries:
                entry.lock.acquire()
                acquired.append(entry.lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            self._checkin(ids, entries)


def run_with_retry(session, func, *, attempts: int = 3, backoff_base: float = 0.05):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (locks), StaleDataError (optimistic version
    check on products) and ConcurrencyConflict (duplicate movement sequence
    or a generated invoice number taken by another writer).
    Every failed attempt is rolled back before the next one, so a retry always
    starts from a fresh read. Once attempts run out the failure surfaces as
    StorageError.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError, ConcurrencyConflict) as exc:
            session.rollback()
            if attempt >= attempts - 1:
                logger.error("Giving up after %d attempts: %s", attempts, exc)
                if isinstance(exc, StorageError):
                    raise StorageError(f"write conflicted {attempts} times, try again") from exc
                raise StorageError("storage is busy, try again") from exc
            logger.warning("Retrying after concurrency failure (attempt %d/%d): %s", attempt + 1, attempts, exc)
            time.sleep(backoff_base * (2 ** attempt))
