# Per-Conversation Locks
# Serializes actions on one conversation inside this process

import threading
from contextlib import contextmanager
from typing import Dict, List


class KeyedLocks:
    """
    One mutex per key, created on demand and dropped when unused.
    Combined with SELECT ... FOR UPDATE on the conversation row for
    multi-process deployments.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # key -> [lock, holders]

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)
