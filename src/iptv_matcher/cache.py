from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

LOGGER = logging.getLogger(__name__)

RESULT_TTL_SECONDS = 3600
DEFAULT_MAX_ENTRIES = 1000

T = TypeVar("T")


@dataclass(slots=True)
class CachedResult(Generic[T]):
    key: str
    payload: Optional[T]
    cached_at: float


class ExpiringCache(Generic[T]):
    """In-process key/value cache with lazy expiry and bounded capacity.

    Expired entries are reported as misses and left in place until the next
    ``put`` for the same key overwrites them. When the cache is full the
    oldest written entry is evicted. ``ttl_seconds=None`` keeps entries for
    the lifetime of the cache.
    """

    def __init__(
        self,
        ttl_seconds: Optional[float] = RESULT_TTL_SECONDS,
        *,
        max_entries: Optional[int] = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ) -> None:
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive when provided")
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries must be positive when provided")
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self.name = name
        self._clock = clock
        self._entries: "OrderedDict[str, CachedResult[T]]" = OrderedDict()
        self._lock = threading.Lock()

    def _is_expired(self, entry: CachedResult[T], now: float) -> bool:
        if self.ttl_seconds is None:
            return False
        return now - entry.cached_at >= self.ttl_seconds

    def get(self, key: str) -> Optional[CachedResult[T]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._is_expired(entry, self._clock()):
                LOGGER.debug("%s entry expired for %s", self.name, key)
                return None
            return entry

    def put(self, key: str, payload: Optional[T]) -> CachedResult[T]:
        entry = CachedResult(key=key, payload=payload, cached_at=self._clock())
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = entry
            if self.max_entries is not None:
                while len(self._entries) > self.max_entries:
                    evicted, _ = self._entries.popitem(last=False)
                    LOGGER.debug("%s evicted %s", self.name, evicted)
        return entry

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: Any) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class ResultCache(ExpiringCache[list]):
    """Ranked match results keyed by request (``id`` or ``id:season:episode``)."""

    def __init__(
        self,
        ttl_seconds: float = RESULT_TTL_SECONDS,
        *,
        max_entries: Optional[int] = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(ttl_seconds, max_entries=max_entries, clock=clock, name="result cache")


__all__ = ["CachedResult", "ExpiringCache", "ResultCache", "RESULT_TTL_SECONDS"]
