"""
Per-product locks for stock mutations.

A product lock covers the product's flat counter and every variant of its
ledger. Locks are always taken in sorted key order so two orders touching
the same products cannot deadlock. These locks serialize requests inside one
process; the conditional updates in catalog.py and inventory.py still guard
against writers in other processes.

The registry only holds locks weakly. A lock lives while some request holds
or waits on it and is dropped afterwards, so the registry stays as large as
the set of products currently being written.
"""
import logging
import threading
import weakref
from contextlib import ExitStack, contextmanager
from typing import Iterable

logger = logging.getLogger(__name__)


class StockLocks:
    def __init__(self):
        self._guard = threading.Lock()
        self._locks = weakref.WeakValueDictionary()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        return len(self._locks)

    @contextmanager
    def hold(self, keys: Iterable[str]):
        ordered = sorted({str(k) for k in keys})
        with ExitStack() as stack:
            # strong references keep the locks registered until release
            held = [self._lock_for(key) for key in ordered]
            for lock in held:
                stack.enter_context(lock)
            logger.debug("holding stock locks for %s", ordered)
            yield


stock_locks = StockLocks()
