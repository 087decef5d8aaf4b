"""In-memory TTL cache for resolver results."""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable

from vibestream.logging import get_logger
from vibestream.logging_events import log_event

logger = get_logger(__name__)


TimeProvider = Callable[[], float]


@dataclass(slots=True)
class CacheEntry:
    """A cached payload keyed by request fingerprint."""

    key: str
    payload: Any
    created_at: float
    expires_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class ResolverCache:
    """TTL cache evicting the oldest inserted entry once ``max_items`` is reached.

    Expiry is evaluated lazily on ``get``; :meth:`purge_expired` may be called
    to reclaim memory eagerly.
    """

    def __init__(
        self,
        *,
        max_items: int,
        default_ttl: float,
        time_func: TimeProvider | None = None,
    ) -> None:
        if max_items <= 0:
            raise ValueError("max_items must be positive")
        if default_ttl < 0:
            raise ValueError("default_ttl must be non-negative")
        self._max_items = max_items
        self._default_ttl = default_ttl
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._now: TimeProvider = time_func or time.time

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    @property
    def max_items(self) -> int:
        return self._max_items

    def __len__(self) -> int:
        return len(self._cache)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._log_operation("miss", "miss", key=key)
                return None
            now = self._now()
            if entry.is_expired(now):
                self._cache.pop(key, None)
                self._log_operation("expired", "expired", key=key, age_s=round(now - entry.created_at, 3))
                return None
            self._log_operation("hit", "hit", key=key)
            return entry.payload

    async def set(self, key: str, payload: Any, *, ttl: float | None = None) -> bool:
        """Store ``payload``; returns ``False`` when the TTL leaves nothing to cache."""

        ttl_value = self._resolve_ttl(ttl)
        if ttl_value <= 0:
            self._log_operation("store", "skipped", key=key, ttl_s=ttl_value)
            return False
        async with self._lock:
            now = self._now()
            self._cache.pop(key, None)
            self._cache[key] = CacheEntry(
                key=key,
                payload=payload,
                created_at=now,
                expires_at=now + ttl_value,
                ttl=ttl_value,
            )
            self._enforce_limit()
        self._log_operation("store", "stored", key=key, ttl_s=ttl_value)
        return True

    async def invalidate(self, key: str) -> bool:
        async with self._lock:
            removed = self._cache.pop(key, None)
        if removed is not None:
            self._log_operation("invalidate", "invalidated", key=key)
        return removed is not None

    async def purge_expired(self) -> int:
        async with self._lock:
            now = self._now()
            expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
            for key in expired:
                self._cache.pop(key, None)
        if expired:
            self._log_operation("purge", "purged", count=len(expired))
        return len(expired)

    async def clear(self) -> None:
        async with self._lock:
            if not self._cache:
                return
            self._cache.clear()
        self._log_operation("clear", "cleared")

    def _enforce_limit(self) -> None:
        while len(self._cache) > self._max_items:
            key, _ = self._cache.popitem(last=False)
            self._log_operation("evict", "evicted", key=key)

    def _resolve_ttl(self, ttl: float | None) -> float:
        if ttl is None:
            return self._default_ttl
        return max(0.0, ttl)

    def _log_operation(self, operation: str, status: str, **fields: object) -> None:
        log_event(
            logger,
            "service.cache",
            component="service.cache",
            operation=operation,
            status=status,
            **fields,
        )


def normalize_query(text: str) -> str:
    """Lower-case ``text`` and collapse runs of whitespace."""

    return " ".join(text.split()).lower()


def build_fingerprint(operation: str, *parts: object) -> str:
    return ":".join([operation, *(str(part) for part in parts)])


def search_fingerprint(query: str, limit: int) -> str:
    return build_fingerprint("search", normalize_query(query), limit)


def trending_fingerprint(limit: int) -> str:
    return build_fingerprint("trending", limit)


def playlist_fingerprint(playlist_id: str, limit: int) -> str:
    return build_fingerprint("playlist", playlist_id.strip(), limit)


def stream_fingerprint(track_id: str, tier: str) -> str:
    return build_fingerprint("stream", track_id.strip(), tier)


__all__ = [
    "CacheEntry",
    "ResolverCache",
    "TimeProvider",
    "build_fingerprint",
    "normalize_query",
    "playlist_fingerprint",
    "search_fingerprint",
    "stream_fingerprint",
    "trending_fingerprint",
]
