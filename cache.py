"""Per-user read-through cache for aggregate views.

Entries live for ``ttl_seconds`` and are dropped wholesale per user by
``invalidate`` after every committed write. A read racing an invalidation can
re-store a value computed just before the commit; that entry survives at most
one TTL window.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheKey:
    user_id: int
    view: str
    params: tuple[tuple[str, Hashable], ...] = ()


def cache_key(user_id: int, view: str, **params: Hashable) -> CacheKey:
    # Unset filters are dropped so ``movements`` and ``movements(category=None)``
    # share one entry.
    items = tuple(sorted((k, v) for k, v in params.items() if v is not None))
    return CacheKey(user_id=user_id, view=view, params=items)


@dataclass
class _Entry:
    value: Any
    expires_at: float


class ReadThroughCache:
    def __init__(
        self,
        ttl_seconds: float = 30.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = ttl_seconds
        self._clock = clock or time.monotonic
        self._entries: dict[CacheKey, _Entry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: CacheKey, loader: Callable[[], T]) -> T:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.expires_at > now:
                self.hits += 1
                return entry.value
            if entry is not None:
                del self._entries[key]
            self.misses += 1

        value = loader()
        with self._lock:
            self._entries[key] = _Entry(value, self._clock() + self.ttl_seconds)
        logger.debug(f"cache_fill: user={key.user_id} view={key.view}")
        return value

    def peek(self, key: CacheKey) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.expires_at <= self._clock():
                return None
            return entry.value

    def invalidate(self, user_id: int) -> int:
        with self._lock:
            stale = [key for key in self._entries if key.user_id == user_id]
            for key in stale:
                del self._entries[key]
        if stale:
            logger.debug(f"cache_invalidate: user={user_id} entries={len(stale)}")
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
