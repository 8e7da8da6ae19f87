"""Bounded in-memory dedup sets (LRU with a retention window).

Replaces an ever-growing ``set`` of processed ids: entries are evicted once
the set is full (least recently inserted first) or once they are older than
the retention window, which is chosen far beyond any relay's realistic
replay horizon.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict

DEFAULT_MAX_SIZE = 100_000
DEFAULT_RETENTION_SECONDS = 7 * 24 * 3600


class DedupSet:
    """Thread-safe set of opaque keys with atomic insert-if-absent."""

    def __init__(
        self,
        *,
        max_size: int = DEFAULT_MAX_SIZE,
        retention_seconds: float | None = DEFAULT_RETENTION_SECONDS,
    ) -> None:
        """Initialize the set.

        Args:
            max_size: Maximum number of keys before evicting the oldest.
            retention_seconds: Age after which a key may be forgotten.
                None keeps keys until evicted by size.
        """
        self._max_size = max_size
        self._retention = retention_seconds
        self._entries: OrderedDict[str, float] = OrderedDict()
        self._lock = threading.Lock()

    def add_if_absent(self, key: str) -> bool:
        """Insert *key* unless present.

        Returns:
            True if the key was newly inserted, False if it was already known.
        """
        with self._lock:
            now = time.time()
            self._expire(now)
            if key in self._entries:
                return False
            self._entries[key] = now
            while len(self._entries) > self._max_size:
                self._entries.popitem(last=False)
            return True

    def discard(self, key: str) -> None:
        """Forget *key* if present."""
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        """Remove all keys."""
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            self._expire(time.time())
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _expire(self, now: float) -> None:
        """Drop entries older than the retention window (oldest first)."""
        if self._retention is None:
            return
        cutoff = now - self._retention
        while self._entries:
            key, inserted = next(iter(self._entries.items()))
            if inserted >= cutoff:
                break
            del self._entries[key]


class ProcessedSet:
    """Process-local idempotence state shared by both processors.

    Attributes:
        orders: Processed order ids.
        receipts: Processed receipt event ids.
    """

    def __init__(
        self,
        *,
        max_size: int = DEFAULT_MAX_SIZE,
        retention_seconds: float | None = DEFAULT_RETENTION_SECONDS,
    ) -> None:
        self.orders = DedupSet(max_size=max_size, retention_seconds=retention_seconds)
        self.receipts = DedupSet(max_size=max_size, retention_seconds=retention_seconds)
