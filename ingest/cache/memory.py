"""
In-process response cache (L1).

Bounded map of cache key -> CacheEntry with batch eviction.
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
from urllib.parse import quote

from .policy import CachePolicy

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """Cached upstream payload. Times are epoch seconds."""
    key: str
    payload: Any
    created_at: float
    expires_at: float
    category: Optional[str] = None

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


def build_cache_key(action: str, params: Optional[Dict[str, Any]] = None) -> str:
    """
    Build a deterministic cache key.

    Parameters are sorted by name and empty values dropped, so
    ``build_cache_key('quote', {'timeRange': '1D', 'symbol': 'AAPL'})`` and the
    same call with the dict in another order both give
    ``quote:symbol=AAPL&timeRange=1D``.
    """
    parts = [
        f"{name}={quote(str(value), safe='')}"
        for name, value in sorted((params or {}).items())
        if value is not None and value != ''
    ]
    return f"{action}:{'&'.join(parts)}"


def parse_cache_key(key: str) -> Tuple[str, Dict[str, str]]:
    """Split a key made by build_cache_key back into (action, params)."""
    action, _, query = key.partition(':')
    params = {}
    for part in query.split('&'):
        if '=' in part:
            name, value = part.split('=', 1)
            params[name] = value
    return action, params


class CacheStore(Protocol):
    """L1 storage. ``get`` ignores expiry; freshness is decided by the caller."""

    def get(self, key: str) -> Optional[CacheEntry]:
        ...

    def put(self, entry: CacheEntry) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def clear(self) -> None:
        ...

    def __len__(self) -> int:
        ...


class InMemoryCacheStore:
    """
    Thread-safe bounded cache.

    When the store grows past ``max_items`` it first drops entries past their
    category gc horizon, then the oldest entries by ``created_at`` until at
    most ``int(max_items * trim_ratio)`` remain.
    """

    def __init__(self, max_items: int = 100, trim_ratio: float = 0.8,
                 policy: Optional[CachePolicy] = None, clock: Callable[[], float] = time.time):
        if max_items < 1:
            raise ValueError("max_items must be >= 1")
        if not 0 < trim_ratio <= 1:
            raise ValueError("trim_ratio must be in (0, 1]")
        self.max_items = max_items
        self.trim_ratio = trim_ratio
        self.policy = policy or CachePolicy()
        self.clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self.evictions = 0

    def get(self, key: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def put(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[entry.key] = entry
            if len(self._entries) > self.max_items:
                self._evict()

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict(self) -> None:
        now = self.clock()
        before = len(self._entries)

        for key, entry in list(self._entries.items()):
            if now >= entry.created_at + self.policy.gc_time(entry.category):
                del self._entries[key]

        target = int(self.max_items * self.trim_ratio)
        if len(self._entries) > target:
            oldest = sorted(self._entries.values(), key=lambda e: e.created_at)
            for entry in oldest[:len(self._entries) - target]:
                del self._entries[entry.key]

        removed = before - len(self._entries)
        self.evictions += removed
        logger.debug(f"Evicted {removed} cache entries ({len(self._entries)} remain)")
