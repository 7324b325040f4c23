from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Hashable, Iterable, Iterator

from sqlalchemy.orm import Session

from stockledger.services.errors import LedgerBusy


def stock_key(product_id: int, warehouse_id: int) -> tuple:
    return ("stock", int(product_id), int(warehouse_id))


def order_key(order_id: int) -> tuple:
    return ("order", int(order_id))


class KeyedLock:
    """
    In-process mutex per key.

    Entries are reference counted so the registry only holds keys that somebody
    is waiting on or holding.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, list] = {}

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: Hashable) -> None:
        with self._guard:
            entry = self._entries[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, keys: Iterable[Hashable], *, timeout: float) -> Iterator[None]:
        # fixed acquisition order, so two multi-key holders cannot deadlock
        ordered = sorted(set(keys))
        acquired: list[tuple[Hashable, threading.Lock]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                if not lock.acquire(timeout=timeout):
                    self._checkin(key)
                    raise LedgerBusy(key, timeout)
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)


@contextmanager
def locked_transaction(
    db: Session,
    locks: KeyedLock,
    keys: Iterable[Hashable],
    *,
    timeout: float,
) -> Iterator[Session]:
    """
    Serialize on `keys`, run the block, commit. The commit happens before the
    locks are released; any exception rolls the session back and propagates.
    """
    with locks.hold(keys, timeout=timeout):
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
