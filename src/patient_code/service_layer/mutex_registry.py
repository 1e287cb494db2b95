"""Process-local locks for sequence periods."""

import threading
from contextlib import contextmanager
from typing import Dict, Tuple


class MutexRegistry:
    """
    One lock per (establishment, year), created on first use and kept for the
    life of the process. Keeps threads of the same process from racing each
    other into the database for the same period.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}  # type: Dict[Tuple[str, int], threading.Lock]

    def lock_for(self, tenant_code: str, year: int) -> threading.Lock:
        key = (tenant_code, year)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, tenant_code: str, year: int):
        lock = self.lock_for(tenant_code, year)
        with lock:
            yield

    def __len__(self):
        with self._guard:
            return len(self._locks)
