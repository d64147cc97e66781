"""
Workflow Hub - Workflow Item Cache

Bounded read-through cache of item snapshots keyed by item id.

- An entry is visible while `now - inserted_at < ttl`; expired entries are
  dropped lazily on lookup.
- When the capacity is exceeded the entry with the earliest insertion time is
  evicted, irrespective of TTL. Insertion order governs eviction, not access
  order: overwriting an id counts as a fresh insertion, reading does not.
- All operations hold a lock, so concurrent get/put never see a partially
  written entry.
"""

from collections import OrderedDict
from typing import Any, Callable, Optional, Tuple
import logging
import threading
import time

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300  # 5 minutes
DEFAULT_CAPACITY = 100


class WorkflowCache:
    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError("cache capacity must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.capacity = capacity
        self._clock = clock
        # id -> (value, inserted_at), kept in insertion order
        self._entries: "OrderedDict[str, Tuple[Any, float]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, inserted_at = entry
            if self._clock() - inserted_at >= self.ttl_seconds:
                del self._entries[key]
                logger.debug("Cache entry expired: %s", key)
                return None
            return value

    def put(self, key: str, value: Any):
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (value, self._clock())
            while len(self._entries) > self.capacity:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Cache evicted oldest entry: %s", evicted)

    def invalidate(self, key: str):
        with self._lock:
            self._entries.pop(key, None)

    def clear(self):
        with self._lock:
            self._entries.clear()
        logger.debug("Workflow cache cleared")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def stats(self) -> dict:
        with self._lock:
            return {
                "size": len(self._entries),
                "capacity": self.capacity,
                "ttl_seconds": self.ttl_seconds,
            }
