"""
services/allowset_cache.py
--------------------------
Process-local read-through cache for tenant allow-sets.

Tenant membership changes outside this service, so entries are only ever
time-bounded (ALLOWSET_CACHE_TTL_SECONDS). Callers must tolerate a short
window of over- or under-scoping after a membership change; invalidate()
narrows it when the change happens through this service.

Not shared between worker processes. Size is capped at
ALLOWSET_CACHE_MAX_ENTRIES; the oldest entry is evicted first.
"""

import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Hashable, Optional

from tokenscope.core.config import settings
from tokenscope.core.logging import get_logger

logger = get_logger(__name__)

CacheKey = tuple[int, str, Optional[int]]  # (tenant_id, entity kind, department_id)


@dataclass
class CacheEntry:
    value: frozenset
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class AllowSetCache:

    def __init__(
        self,
        ttl_seconds: int,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._store: dict[Hashable, CacheEntry] = {}

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get(self, key: CacheKey) -> Optional[frozenset]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._store[key]
            return None
        return entry.value

    def set(self, key: CacheKey, value: frozenset) -> None:
        if not self.enabled:
            return
        now = self._clock()
        self._cleanup_expired(now)
        # Re-inserting moves the key to the end of the eviction order
        self._store.pop(key, None)
        while len(self._store) >= self.max_entries:
            del self._store[next(iter(self._store))]
        self._store[key] = CacheEntry(value=value, expires_at=now + self.ttl_seconds)

    def __len__(self) -> int:
        return len(self._store)

    def _cleanup_expired(self, now: float) -> None:
        expired = [k for k, v in self._store.items() if v.is_expired(now)]
        for key in expired:
            del self._store[key]

    async def get_or_load(
        self, key: CacheKey, loader: Callable[[], Awaitable[frozenset]]
    ) -> frozenset:
        if self.enabled:
            cached = self.get(key)
            if cached is not None:
                return cached
        value = await loader()
        self.set(key, value)
        return value

    def invalidate(self, tenant_id: Optional[int] = None) -> int:
        """Drop entries for one tenant, or everything when tenant_id is None."""
        if tenant_id is None:
            count = len(self._store)
            self._store.clear()
        else:
            keys = [k for k in self._store if k[0] == tenant_id]
            for key in keys:
                del self._store[key]
            count = len(keys)
        if count:
            logger.debug("Allow-set cache invalidated", tenant_id=tenant_id, entries=count)
        return count


# Singleton shared across all requests in this process
allowset_cache = AllowSetCache(
    ttl_seconds=settings.ALLOWSET_CACHE_TTL_SECONDS,
    max_entries=settings.ALLOWSET_CACHE_MAX_ENTRIES,
)
