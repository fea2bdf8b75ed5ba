"""
cache.py

Process-lifetime memoization of encoded buffers keyed by mesh-source identity.

`get_or_compute` is single flight: the first caller for a key runs the
producer while concurrent callers for the same key wait on that key's lock
and then receive the stored result. Different keys compute in parallel.
Entries are never evicted; mesh sources are static input data.
"""
from typing import Any, Callable, Dict, Hashable
import logging
import threading
import time

logger = logging.getLogger(__name__)


class MeshCache:
    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Dict[Hashable, Any] = {}
        self._key_locks: Dict[Hashable, threading.Lock] = {}

    def get_or_compute(self, key: Hashable, producer: Callable[[], Any]) -> Any:
        """Return the cached value for ``key``, running ``producer`` at most once.

        If the producer raises, nothing is stored and the exception propagates;
        a later caller will try again.
        """
        with self._lock:
            if key in self._entries:
                return self._entries[key]
            key_lock = self._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            with self._lock:
                if key in self._entries:
                    return self._entries[key]
            t0 = time.perf_counter()
            value = producer()
            with self._lock:
                self._entries[key] = value
            logger.info('Cached %r in %.2fs', key, time.perf_counter() - t0)
            return value

    def contains(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._key_locks.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
