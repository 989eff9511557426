"""
Seen-set for transfer notifications.
"""
import threading
from collections import OrderedDict
from typing import Optional


class Deduplicator:
    """
    Answers "is this new?" exactly once per key.

    With capacity=None every key is remembered for the life of the process.
    With a capacity, the oldest keys are forgotten first once the
    set is full, so a very old transfer could in theory be reported again.
    """

    def __init__(self, capacity: Optional[int] = None):
        if capacity is not None and capacity <= 0:
            raise ValueError("capacity must be positive or None")
        self.capacity = capacity
        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()

    def observe(self, key: str) -> bool:
        """Record key; True only the first time it is presented."""
        with self._lock:
            if key in self._seen:
                return False
            self._seen[key] = None
            if self.capacity is not None and len(self._seen) > self.capacity:
                self._seen.popitem(last=False)
            return True

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
