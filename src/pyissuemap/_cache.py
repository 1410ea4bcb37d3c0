"""Bounded LRU cache with lazily-checked per-entry TTL.

One instance is shared by the tier resolver and the query orchestrator.
Keys are tuples whose first element is a namespace (``"location"``,
``"issues"``) so both can coexist and be invalidated independently.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import Any

DEFAULT_CAPACITY = 100


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A cached value and its absolute expiry (clock seconds)."""

    value: Any
    expires_at: float


class CacheStore:
    """LRU cache with TTL layered on top.

    * ``set`` past capacity evicts the least recently used entry.
    * ``get`` refreshes recency; on an expired entry it evicts and
      reports absent.  There are no background timers.
    * Entries are never mutated in place, only overwritten.

    Capacity and TTL values are trusted; the store performs no validation.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._capacity = capacity
        self._clock = clock
        self._entries: OrderedDict[Hashable, CacheEntry] = OrderedDict()

    @property
    def capacity(self) -> int:
        return self._capacity

    def set(self, key: Hashable, value: Any, ttl_ms: float) -> None:
        """Insert or overwrite *key*, making it the most recently used."""
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._capacity:
            self._entries.popitem(last=False)
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl_ms / 1000.0)

    def get(self, key: Hashable) -> Any | None:
        """Return the cached value, or ``None`` when absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        self._entries.move_to_end(key)
        return entry.value

    def delete(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def evict_where(self, predicate: Callable[[Hashable, Any], bool]) -> int:
        """Drop every entry for which ``predicate(key, value)`` is true."""
        doomed = [key for key, entry in self._entries.items() if predicate(key, entry.value)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        # Membership does not refresh recency.
        entry = self._entries.get(key)  # type: ignore[call-overload]
        return entry is not None and self._clock() <= entry.expires_at
