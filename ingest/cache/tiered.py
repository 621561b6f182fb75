"""
Two-tier response cache.

L1 is the per-process InMemoryCacheStore; L2 is an optional persisted
response cache repository shared across processes. Failures in L2 are
logged and treated as misses so that a database outage never fails a read.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from .memory import CacheEntry, CacheStore, InMemoryCacheStore
from .policy import CachePolicy

logger = logging.getLogger(__name__)


class TieredCache:
    """
    Read-through cache with fresh and stale lookups.

    Example:
        >>> cache = TieredCache(policy=CachePolicy())
        >>> cache.set('quote:symbol=AAPL', {'currentPrice': 190.1}, category='quote')
        >>> cache.get('quote:symbol=AAPL').payload
        {'currentPrice': 190.1}
    """

    def __init__(self, l1: Optional[CacheStore] = None, l2=None,
                 policy: Optional[CachePolicy] = None, clock: Callable[[], float] = time.time):
        """
        Initialize tiered cache.

        Args:
            l1: In-process store (defaults to InMemoryCacheStore)
            l2: ResponseCacheRepository or None for memory-only operation
            policy: Category TTL map
            clock: Wall clock in epoch seconds
        """
        self.policy = policy or CachePolicy()
        self.clock = clock
        self.l1 = l1 if l1 is not None else InMemoryCacheStore(policy=self.policy, clock=clock)
        self.l2 = l2
        self._stats_lock = threading.Lock()
        self._stats = {'hits': 0, 'stale_hits': 0, 'misses': 0, 'l2_hits': 0, 'l2_errors': 0}

    def _count(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1

    def _read_l2(self, key: str) -> Optional[CacheEntry]:
        if self.l2 is None:
            return None
        try:
            return self.l2.get(key)
        except Exception as e:
            self._count('l2_errors')
            logger.warning(f"L2 cache read failed for {key}: {e}")
            return None

    def get(self, key: str) -> Optional[CacheEntry]:
        """
        Fresh lookup. Expired entries are invisible here but remain
        available to ``get_stale``.
        """
        now = self.clock()
        entry = self.l1.get(key)
        if entry is not None and entry.is_fresh(now):
            self._count('hits')
            return entry

        entry = self._read_l2(key)
        if entry is not None and entry.is_fresh(now):
            self.l1.put(entry)
            self._count('hits')
            self._count('l2_hits')
            return entry

        self._count('misses')
        return None

    def get_stale(self, key: str) -> Optional[CacheEntry]:
        """Lookup ignoring expiry, for degraded responses."""
        entry = self.l1.get(key)
        if entry is None:
            entry = self._read_l2(key)
        if entry is not None:
            self._count('stale_hits')
        return entry

    def set(self, key: str, payload: Any, ttl: Optional[float] = None,
            category: Optional[str] = None) -> CacheEntry:
        """
        Store a payload in both tiers.

        Args:
            key: Cache key from build_cache_key
            payload: JSON-serializable value
            ttl: Freshness in seconds (defaults to the category stale_time)
            category: Policy category ('quote', 'messages', ...)

        Raises:
            ValueError: If ttl is not positive
        """
        if ttl is None:
            ttl = self.policy.stale_time(category)
        if ttl <= 0:
            raise ValueError(f"Cache TTL must be positive, got {ttl}")

        now = self.clock()
        entry = CacheEntry(key=key, payload=payload, created_at=now,
                           expires_at=now + ttl, category=category)
        self.l1.put(entry)

        if self.l2 is not None:
            try:
                self.l2.upsert(entry)
            except Exception as e:
                self._count('l2_errors')
                logger.warning(f"L2 cache write failed for {key}: {e}")
        return entry

    def invalidate(self, key: str) -> None:
        self.l1.delete(key)

    def cleanup(self, grace: float = 300.0) -> int:
        """Delete persisted entries expired for longer than ``grace`` seconds."""
        if self.l2 is None:
            return 0
        deleted = self.l2.delete_expired(self.clock() - grace)
        logger.info(f"Deleted {deleted} expired response cache rows")
        return deleted

    def stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = dict(self._stats)
        stats['size'] = len(self.l1)
        stats['persistent'] = self.l2 is not None
        return stats
