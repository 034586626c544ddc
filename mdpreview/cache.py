"""Bounded in-memory cache with first-in-first-out eviction.

Insertion order is tracked explicitly with an :class:`OrderedDict`, so
the entry evicted at capacity is always the oldest *inserted* one.
Reads do not refresh an entry's position (this is FIFO, not LRU).
Re-inserting an existing key replaces the value in place and keeps its
original position.
"""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterator
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class FifoCache(Generic[K, V]):
    """Mapping bounded to ``max_size`` entries, evicting the oldest insert."""

    def __init__(self, max_size: int) -> None:
        if max_size < 1:
            raise ValueError(f"max_size must be at least 1, got {max_size}")
        self._max_size = max_size
        self._entries: OrderedDict[K, V] = OrderedDict()

    @property
    def max_size(self) -> int:
        return self._max_size

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[K]:
        """Iterate keys from oldest to newest insertion."""
        return iter(self._entries)

    def get(self, key: K) -> V | None:
        return self._entries.get(key)

    def put(self, key: K, value: V) -> K | None:
        """Insert *value* under *key*.

        Returns:
            The evicted key, or ``None`` if nothing was evicted.
        """
        if key in self._entries:
            self._entries[key] = value
            return None

        evicted: K | None = None
        if len(self._entries) >= self._max_size:
            evicted, _ = self._entries.popitem(last=False)
        self._entries[key] = value
        return evicted

    def pop(self, key: K) -> V | None:
        return self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
