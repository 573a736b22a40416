"""Per-key locks for read-then-upsert sequences."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator


class KeyedLocks:
    """One lock per key, e.g. (caller_id, parameter_id).

    Two runs touching the same caller+parameter serialize; different keys
    proceed concurrently. A key's lock lives only while someone holds or
    waits on it, so the table stays bounded by in-flight keys.
    """

    def __init__(self) -> None:
        # key -> [lock, holders + waiters]
        self._locks: dict[Hashable, list] = {}
        self._guard = threading.Lock()

    def _acquire_entry(self, key: Hashable) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _release_entry(self, key: Hashable) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, *key: Hashable) -> Iterator[None]:
        lock = self._acquire_entry(key)
        try:
            with lock:
                yield
        finally:
            self._release_entry(key)

    def __len__(self) -> int:
        """Number of keys currently held or waited on."""
        with self._guard:
            return len(self._locks)


def store_locks(store: object) -> KeyedLocks:
    """The store's shared target locks, or a private set for stores without one."""
    locks = getattr(store, "target_locks", None)
    return locks if isinstance(locks, KeyedLocks) else KeyedLocks()
