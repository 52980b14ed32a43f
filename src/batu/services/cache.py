"""
batu.services.cache

Bounded in-process TTL map (audit results per ad account and token).
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Generic, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """
    In-process map whose entries expire `ttl_seconds` after they were set.
    Expired entries are dropped lazily on read, or in bulk by `purge()`.
    At most `max_entries` are held; inserting past that evicts the oldest first.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._clock = clock
        # dicts keep insertion order, so the first key is always the oldest write.
        self._items: dict[str, tuple[float, V]] = {}

    def get(self, key: str) -> V | None:
        item = self._items.get(key)
        if item is None:
            return None
        expires_at, value = item
        if self._clock() >= expires_at:
            del self._items[key]
            return None
        return value

    def set(self, key: str, value: V, *, ttl_seconds: float | None = None) -> None:
        ttl = self._ttl if ttl_seconds is None else ttl_seconds
        # Re-inserting moves the key to the back of the eviction order.
        self._items.pop(key, None)
        if len(self._items) >= self._max_entries:
            self.purge()
        while len(self._items) >= self._max_entries:
            del self._items[next(iter(self._items))]
        self._items[key] = (self._clock() + ttl, value)

    def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def purge(self) -> int:
        now = self._clock()
        stale = [k for k, (exp, _) in self._items.items() if now >= exp]
        for k in stale:
            del self._items[k]
        return len(stale)

    def __len__(self) -> int:
        return len(self._items)
