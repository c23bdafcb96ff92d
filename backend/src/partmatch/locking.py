"""Per-key locking shared by the feedback writer and the snapshot loader."""

import threading
from contextlib import contextmanager
from typing import Any, Dict, Hashable, Iterator, List


class KeyedLock:
    """Per-key mutual exclusion.

    Holders of different keys never block each other. Lock objects are
    dropped once no thread holds or waits for them.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, List[Any]] = {}  # key -> [lock, users]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
