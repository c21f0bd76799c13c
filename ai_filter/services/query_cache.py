"""In-memory LRU cache with TTL for resolved filter queries.

Key: "shop::collectionHandle::normalizedQuery". OrderedDict order is
recency order; the first key is always the least recently used.

Single-process only: every operation is synchronous, so the event loop
never interleaves two of them. A multi-instance deployment needs a shared
store instead.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from ai_filter.models.contracts import CachedResolution

log = structlog.get_logger("query_cache")

KEY_SEPARATOR = "::"
ALL_COLLECTIONS = "all"
DEFAULT_MAX_ENTRIES = 500
DEFAULT_TTL_SECONDS = 30 * 60


@dataclass
class _Entry:
    value: CachedResolution
    timestamp: float


class QueryCache:
    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()

    @staticmethod
    def build_key(shop: str, collection_handle: str | None, query: str) -> str:
        """Case and surrounding whitespace of the query do not affect the key."""
        return KEY_SEPARATOR.join(
            (shop, collection_handle or ALL_COLLECTIONS, query.lower().strip())
        )

    def get(self, key: str) -> CachedResolution | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._clock() - entry.timestamp > self.ttl_seconds:
            del self._entries[key]
            return None

        self._entries.move_to_end(key)
        return entry.value

    def set(self, key: str, value: CachedResolution) -> None:
        # Drop first so a rewrite lands at the most-recently-used end
        self._entries.pop(key, None)

        if self._entries and len(self._entries) >= self.max_entries:
            self._entries.popitem(last=False)

        self._entries[key] = _Entry(value=value, timestamp=self._clock())

    def flush_shop(self, shop: str) -> int:
        """Drop every entry for ``shop``. Returns how many were removed."""
        prefix = f"{shop}{KEY_SEPARATOR}"
        stale = [key for key in self._entries if key.startswith(prefix)]
        for key in stale:
            del self._entries[key]
        if stale:
            log.info("query_cache_flushed", shop=shop, flushed=len(stale))
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
