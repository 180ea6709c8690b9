"""
In-memory guards for the notification receiver: a bounded window of seen
message numbers and the per-event processing locks.
"""

from collections import OrderedDict
from typing import Hashable, Set


class DedupWindow:
    """Insertion-ordered set of recently seen keys, evicting the oldest when full"""

    def __init__(self, max_size: int = 1000):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._seen: "OrderedDict[Hashable, None]" = OrderedDict()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def add(self, key: Hashable) -> bool:
        """Record key; False when it was already in the window"""
        if key in self._seen:
            return False
        self._seen[key] = None
        while len(self._seen) > self.max_size:
            self._seen.popitem(last=False)
        return True


class ProcessingLocks:
    """
    Presence-only locks keyed by event id.

    A held key is not waited on: the caller skips the event and relies on
    the in-flight holder or a later pull.
    """

    def __init__(self):
        self._held: Set[str] = set()

    def __contains__(self, key: str) -> bool:
        return key in self._held

    def __len__(self) -> int:
        return len(self._held)

    def try_acquire(self, key: str) -> bool:
        if key in self._held:
            return False
        self._held.add(key)
        return True

    def release(self, key: str) -> None:
        self._held.discard(key)
