"""Fixed-capacity cache with FIFO or LRU eviction.

Used by the regional shape-point cache; the streaming loader trims registered
caches down to a smaller size when the process approaches its memory ceiling.
"""
from __future__ import annotations

import enum
from collections import OrderedDict
from typing import Generic, Hashable, Iterator, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class EvictionPolicy(str, enum.Enum):
    FIFO = "fifo"
    LRU = "lru"


class BoundedCache(Generic[K, V]):
    """Mapping with a hard entry cap; oldest entries are evicted first.

    With ``EvictionPolicy.LRU`` a successful ``get`` refreshes the entry so it
    becomes the newest; with FIFO only insertion order counts.
    """

    def __init__(
        self,
        max_entries: int,
        policy: EvictionPolicy = EvictionPolicy.FIFO,
        pressure_entries: int | None = None,
    ) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.max_entries = max_entries
        self.policy = EvictionPolicy(policy)
        # Size to trim down to under memory pressure
        self.pressure_entries = max_entries if pressure_entries is None else min(pressure_entries, max_entries)
        self._data: OrderedDict[K, V] = OrderedDict()
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[K]:
        return iter(self._data)

    def get(self, key: K, default: V | None = None) -> V | None:
        if key not in self._data:
            return default
        if self.policy is EvictionPolicy.LRU:
            self._data.move_to_end(key)
        return self._data[key]

    def put(self, key: K, value: V) -> None:
        if key in self._data:
            self._data[key] = value
            if self.policy is EvictionPolicy.LRU:
                self._data.move_to_end(key)
            return
        self._data[key] = value
        if len(self._data) > self.max_entries:
            self._data.popitem(last=False)
            self.evictions += 1

    def values(self) -> Iterator[V]:
        return iter(self._data.values())

    def items(self) -> Iterator[tuple[K, V]]:
        return iter(self._data.items())

    def trim(self, limit: int | None = None) -> int:
        """Evict oldest entries until at most ``limit`` remain.

        Defaults to ``pressure_entries``. Returns the number evicted.
        """
        target = self.pressure_entries if limit is None else max(limit, 0)
        removed = 0
        while len(self._data) > target:
            self._data.popitem(last=False)
            removed += 1
        self.evictions += removed
        return removed

    def clear(self) -> None:
        self._data.clear()
