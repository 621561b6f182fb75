"""Response caching: category policy, in-process store and two-tier cache."""
from .memory import CacheEntry, InMemoryCacheStore, build_cache_key
from .policy import CachePolicy
from .tiered import TieredCache

__all__ = ['CacheEntry', 'CachePolicy', 'InMemoryCacheStore', 'TieredCache', 'build_cache_key']
