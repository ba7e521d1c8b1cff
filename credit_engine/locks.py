"""
Per-key locking for row-level read-modify-write.

A key's lock exists only while some thread holds or waits for it, so the
table stays as small as the set of keys in use.
"""

from contextlib import contextmanager
from typing import Dict, Iterator, List
import threading


class KeyedLock:
    """Mutual exclusion per key (credit id, account id)"""

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._entries: Dict[str, List] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._entries[key] = entry
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            with self._guard:
                entry[0].release()
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]
