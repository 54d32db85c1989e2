"""Bounded cache for related-record lookups made during one run."""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass(slots=True)
class LookupCache[V]:
    """Least-recently-used cache whose entries also expire after ``ttl_seconds``.

    ``None`` is a legitimate cached value (a lookup that found nothing), so
    :meth:`get` reports hits separately from the value. A ``max_size`` of 0
    disables caching.
    """

    max_size: int
    ttl_seconds: float
    clock: Callable[[], float] = time.monotonic
    evictions: int = field(default=0, init=False)
    _entries: OrderedDict[str, tuple[float, V]] = field(
        default_factory=OrderedDict, init=False, repr=False
    )

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> tuple[bool, V | None]:
        entry = self._entries.get(key)
        if entry is None:
            return False, None
        expires_at, value = entry
        if expires_at <= self.clock():
            del self._entries[key]
            return False, None
        self._entries.move_to_end(key)
        return True, value

    def put(self, key: str, value: V) -> None:
        if self.max_size == 0:
            return
        self._entries[key] = (self.clock() + self.ttl_seconds, value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)
            self.evictions += 1

    def clear(self) -> None:
        self._entries.clear()
