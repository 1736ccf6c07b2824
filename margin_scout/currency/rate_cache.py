"""
Exchange rate cache.

An owned, bounded cache with a fixed time-to-live. Entries older than the TTL
are treated as missing; when the cache is full the least recently used entry
is evicted.
"""

import time
from collections import OrderedDict
from decimal import Decimal
from typing import Callable, Hashable, Optional

DEFAULT_TTL = 24 * 60 * 60  # seconds


class RateCache:
    def __init__(self, ttl: float = DEFAULT_TTL, max_size: int = 512,
                 clock: Callable[[], float] = time.monotonic):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[Decimal, float]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[Decimal]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        rate, stored_at = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[key]
            self.misses += 1
            return None

        self._entries.move_to_end(key)
        self.hits += 1
        return rate

    def set(self, key: Hashable, rate: Decimal) -> None:
        self._entries[key] = (rate, self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> dict:
        lookups = self.hits + self.misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }

    def __len__(self) -> int:
        return len(self._entries)
