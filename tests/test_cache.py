"""Tests for cache keys, the L1 store and the tiered cache."""
from unittest.mock import MagicMock

import pytest

from common.config.settings import CacheTTL
from ingest.cache.memory import CacheEntry, InMemoryCacheStore, build_cache_key, parse_cache_key
from ingest.cache.policy import CachePolicy
from ingest.cache.tiered import TieredCache


class TestCacheKey:

    def test_parameter_order_does_not_matter(self):
        a = build_cache_key('quote', {'symbol': 'AAPL', 'timeRange': '1D'})
        b = build_cache_key('quote', {'timeRange': '1D', 'symbol': 'AAPL'})
        assert a == b == 'quote:symbol=AAPL&timeRange=1D'

    def test_empty_values_dropped(self):
        assert build_cache_key('messages', {'symbol': 'TSLA', 'start': None, 'end': ''}) == \
            'messages:symbol=TSLA'

    def test_values_are_escaped(self):
        key = build_cache_key('messages', {'start': '2025-01-10T00:00:00Z'})
        assert key == 'messages:start=2025-01-10T00%3A00%3A00Z'

    def test_no_params(self):
        assert build_cache_key('trending') == 'trending:'

    def test_parse_round_trip(self):
        action, params = parse_cache_key('quote:symbol=AAPL&timeRange=7D')
        assert action == 'quote'
        assert params == {'symbol': 'AAPL', 'timeRange': '7D'}


class TestCachePolicy:

    def test_known_category(self):
        policy = CachePolicy()
        assert policy.stale_time('quote') == 300
        assert policy.gc_time('quote') == 900

    def test_unknown_category_uses_default(self):
        policy = CachePolicy(default_ttl=30.0)
        assert policy.stale_time('unknown') == 30.0
        assert policy.gc_time(None) == 300.0

    def test_rejects_gc_shorter_than_stale(self):
        with pytest.raises(ValueError):
            CachePolicy(ttls={'quote': CacheTTL(stale_time=60, gc_time=30)})


class TestInMemoryCacheStore:

    def _entry(self, key, created_at, category='quote'):
        return CacheEntry(key=key, payload={'k': key}, created_at=created_at,
                          expires_at=created_at + 300, category=category)

    def test_trims_oldest_to_ratio(self, clock):
        store = InMemoryCacheStore(max_items=10, trim_ratio=0.8, clock=clock)
        for i in range(11):
            store.put(self._entry(f'k{i}', clock.now + i))

        assert len(store) == 8
        assert store.get('k0') is None
        assert store.get('k2') is None
        assert store.get('k3') is not None
        assert store.get('k10') is not None
        assert store.evictions == 3

    def test_drops_entries_past_gc_first(self, clock):
        store = InMemoryCacheStore(max_items=3, trim_ratio=1.0, clock=clock)
        store.put(self._entry('old', clock.now - 1000))
        store.put(self._entry('a', clock.now))
        store.put(self._entry('b', clock.now))
        store.put(self._entry('c', clock.now))

        assert sorted(store.keys()) == ['a', 'b', 'c']

    def test_get_ignores_expiry(self, clock):
        store = InMemoryCacheStore(clock=clock)
        store.put(self._entry('k', clock.now - 600))
        assert store.get('k') is not None

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            InMemoryCacheStore(max_items=0)
        with pytest.raises(ValueError):
            InMemoryCacheStore(trim_ratio=1.5)


class TestTieredCache:

    def test_fresh_hit(self, clock):
        cache = TieredCache(clock=clock)
        cache.set('quote:symbol=AAPL', {'currentPrice': 190.1}, category='quote')
        entry = cache.get('quote:symbol=AAPL')
        assert entry.payload == {'currentPrice': 190.1}
        assert entry.expires_at == clock.now + 300
        assert cache.stats()['hits'] == 1

    def test_expired_entry_is_stale_only(self, clock):
        cache = TieredCache(clock=clock)
        cache.set('stats:symbol=AAPL', {'v': 1}, category='stats')
        clock.advance(31)

        assert cache.get('stats:symbol=AAPL') is None
        stale = cache.get_stale('stats:symbol=AAPL')
        assert stale.payload == {'v': 1}
        stats = cache.stats()
        assert stats['misses'] == 1
        assert stats['stale_hits'] == 1

    def test_explicit_ttl(self, clock):
        cache = TieredCache(clock=clock)
        cache.set('k:', 'v', ttl=10)
        clock.advance(9)
        assert cache.get('k:') is not None
        clock.advance(1)
        assert cache.get('k:') is None

    def test_non_positive_ttl_rejected(self, clock):
        cache = TieredCache(clock=clock)
        with pytest.raises(ValueError):
            cache.set('k:', 'v', ttl=0)

    def test_writes_through_to_l2(self, clock, cache_repo):
        cache = TieredCache(l2=cache_repo, clock=clock)
        cache.set('quote:symbol=AAPL', {'p': 1}, category='quote')
        assert cache_repo.get('quote:symbol=AAPL').payload == {'p': 1}

    def test_l2_hit_promoted_to_l1(self, clock, cache_repo):
        writer = TieredCache(l2=cache_repo, clock=clock)
        writer.set('quote:symbol=MSFT', {'p': 2}, category='quote')

        reader = TieredCache(l2=cache_repo, clock=clock)
        assert reader.get('quote:symbol=MSFT').payload == {'p': 2}
        assert reader.l1.get('quote:symbol=MSFT') is not None
        assert reader.stats()['l2_hits'] == 1

    def test_l2_failure_is_a_miss(self, clock):
        l2 = MagicMock()
        l2.get.side_effect = RuntimeError("connection refused")
        l2.upsert.side_effect = RuntimeError("connection refused")
        cache = TieredCache(l2=l2, clock=clock)

        cache.set('quote:symbol=AAPL', {'p': 1}, category='quote')
        assert cache.get('quote:symbol=AAPL') is not None
        assert cache.get('quote:symbol=NVDA') is None
        assert cache.stats()['l2_errors'] == 2

    def test_cleanup_deletes_past_grace(self, clock, cache_repo):
        cache = TieredCache(l2=cache_repo, clock=clock)
        cache.set('messages:symbol=A', [1], category='messages')
        cache.set('quote:symbol=A', {'p': 1}, category='quote')
        clock.advance(15 + 300 + 1)

        assert cache.cleanup(grace=300) == 1
        assert len(cache_repo) == 1

    def test_cleanup_without_l2(self, clock):
        assert TieredCache(clock=clock).cleanup() == 0

    def test_invalidate(self, clock):
        cache = TieredCache(clock=clock)
        cache.set('k:', 'v', ttl=60)
        cache.invalidate('k:')
        assert cache.get('k:') is None
