"""In-memory TTL cache with LRU eviction.

Used to memoize query classifications and short-lived registry lookups.
Keys are case-folded and trimmed so trivially different inputs share an
entry.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, TypeVar

import structlog

logger = structlog.get_logger()

V = TypeVar("V")


def normalize_key(key: Hashable) -> Hashable:
    if isinstance(key, str):
        return key.strip().lower()
    return key


class TTLCache(Generic[V]):
    """Bounded mapping whose entries expire after ``ttl_s`` seconds."""

    def __init__(self, ttl_s: float = 900.0, max_entries: int = 1000, name: str = "cache") -> None:
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self.name = name
        self._entries: OrderedDict[Hashable, tuple[float, V]] = OrderedDict()

    def get(self, key: Hashable) -> V | None:
        k = normalize_key(key)
        entry = self._entries.get(k)
        if entry is None:
            return None
        expires_at, value = entry
        if time.monotonic() >= expires_at:
            self._entries.pop(k, None)
            return None
        self._entries.move_to_end(k)
        return value

    def set(self, key: Hashable, value: V) -> None:
        k = normalize_key(key)
        if k in self._entries:
            self._entries.move_to_end(k)
        self._entries[k] = (time.monotonic() + self.ttl_s, value)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("cache_lru_eviction", cache=self.name, evicted=str(evicted)[:80])

    def pop(self, key: Hashable) -> V | None:
        entry = self._entries.pop(normalize_key(key), None)
        return entry[1] if entry else None

    def discard_where(self, predicate: Callable[[Hashable], bool]) -> int:
        """Drop every entry whose key satisfies *predicate*."""
        doomed = [k for k in self._entries if predicate(k)]
        for k in doomed:
            self._entries.pop(k, None)
        return len(doomed)

    def clear_expired(self) -> int:
        now = time.monotonic()
        expired = [k for k, (exp, _) in self._entries.items() if now >= exp]
        for k in expired:
            self._entries.pop(k, None)
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, float | int | str]:
        return {
            "name": self.name,
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "ttl_s": self.ttl_s,
        }
