"""Thread-safe in-memory LRU cache with an entry cap and an idle TTL.

Holds one chat session (system prompt + recent history) per phone number
for the booking assistant.

Design decisions
────────────────
• **OrderedDict** for O(1) LRU eviction and promotion.
• **Idle TTL**: an entry untouched for ``ttl_seconds`` is dropped on the
  next access, so a customer returning days later starts a fresh chat.
• **Entry cap**: inserting beyond ``max_entries`` evicts the least
  recently used phone number.
• **threading.Lock** because webhook turns run in worker threads.
• Purely ephemeral: everything is lost on process restart.  Durable
  state (flows, bookings) lives in the database, not here.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_TTL_SECONDS = 6 * 60 * 60


class ChatSessionCache:
    """Least-recently-used cache bounded by entry count and idle time."""

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_entries = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        # key → (value, last_access)
        self._store: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._lock = threading.Lock()

    def _expired(self, last_access: float, now: float) -> bool:
        return now - last_access > self._ttl

    # ── Core operations ──────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Return the cached value (promoting it to MRU) or ``None``."""
        now = self._clock()
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, last_access = entry
            if self._expired(last_access, now):
                del self._store[key]
                logger.debug("Cache: %s expired after %.0fs idle", key, now - last_access)
                return None
            self._store[key] = (value, now)
            self._store.move_to_end(key)
            return value

    def put(self, key: str, value: Any) -> None:
        """Insert or overwrite *key*.  Evicts LRU entries if needed."""
        now = self._clock()
        with self._lock:
            self._store.pop(key, None)
            while len(self._store) >= self._max_entries and self._store:
                evicted_key, _ = self._store.popitem(last=False)
                logger.debug("Cache: evicted %s", evicted_key)
            self._store[key] = (value, now)

    def invalidate(self, key: str) -> bool:
        """Remove a single key.  Returns ``True`` if the key existed."""
        with self._lock:
            return self._store.pop(key, None) is not None

    def purge_expired(self) -> int:
        """Drop every expired entry.  Returns count removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, (_, seen) in self._store.items() if self._expired(seen, now)]
            for key in stale:
                del self._store[key]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    # ── Introspection ────────────────────────────────────────────────

    @property
    def entry_count(self) -> int:
        return len(self._store)

    def has(self, key: str) -> bool:
        """Check if a key is present *without* promoting it."""
        return key in self._store
