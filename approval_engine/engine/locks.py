"""Per-instance locks - serialize mutations of the same workflow instance"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class InstanceLockRegistry:
    """
    Reentrant lock per instance ID

    Actions on one instance are serialized; different instances proceed
    in parallel. Entries are reference counted by holders and waiters and
    dropped when the last one leaves, so the registry only tracks instances
    that are being worked on.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # instance_id -> [lock, holders and waiters]
        self._locks: Dict[str, List] = {}

    @contextmanager
    def hold(self, instance_id: str) -> Iterator[None]:
        """Hold the instance lock for the duration of the block"""
        with self._guard:
            entry = self._locks.get(instance_id)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[instance_id] = entry
            entry[1] += 1

        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[instance_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
