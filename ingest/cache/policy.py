"""Per-category freshness policy for cached upstream responses."""
from dataclasses import dataclass, field
from typing import Dict, Optional

from common.config.settings import DEFAULT_CACHE_POLICY, CacheTTL


@dataclass
class CachePolicy:
    """
    Maps a cache category to its (stale_time, gc_time) pair.

    stale_time: seconds an entry is served as fresh
    gc_time: seconds an entry is kept for stale fallback before eviction
    """

    ttls: Dict[str, CacheTTL] = field(default_factory=lambda: dict(DEFAULT_CACHE_POLICY))
    default_ttl: float = 30.0

    def __post_init__(self):
        for category, ttl in self.ttls.items():
            if ttl.stale_time <= 0 or ttl.gc_time < ttl.stale_time:
                raise ValueError(f"Invalid cache TTL for {category}: {ttl}")

    @classmethod
    def from_config(cls, config) -> 'CachePolicy':
        return cls(ttls=dict(config.policy), default_ttl=config.default_ttl)

    def ttl_for(self, category: Optional[str]) -> CacheTTL:
        if category and category in self.ttls:
            return self.ttls[category]
        return CacheTTL(stale_time=self.default_ttl, gc_time=self.default_ttl * 10)

    def stale_time(self, category: Optional[str]) -> float:
        return self.ttl_for(category).stale_time

    def gc_time(self, category: Optional[str]) -> float:
        return self.ttl_for(category).gc_time
