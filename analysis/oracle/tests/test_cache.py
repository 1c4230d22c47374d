"""Tests for the Oracle result cache."""

from types import SimpleNamespace

import pytest

from oracle.cache import CACHE_NAMESPACE, ResultCache, cache_key
from oracle.errors import CacheError


def fake_result(end_time_ms: int):
    return SimpleNamespace(metadata=SimpleNamespace(end_time_ms=end_time_ms))


class ExplodingStore(dict):
    def get(self, key, default=None):
        raise OSError("disk gone")


class TestResultCache:
    """Test suite for ResultCache."""

    def test_set_and_get(self, clock):
        """A fresh entry is returned as stored."""
        cache = ResultCache(max_age_ms=60_000, clock=clock)
        result = fake_result(clock())

        cache.set("k", result)

        assert cache.get("k") is result
        assert cache.get_stats()["hits"] == 1

    def test_missing_key(self, clock):
        """Unknown keys are a miss."""
        cache = ResultCache(clock=clock)

        assert cache.get("nope") is None
        assert cache.get_stats()["misses"] == 1

    def test_freshness_uses_result_end_time(self, clock):
        """Entries older than max_age relative to end_time are dropped."""
        cache = ResultCache(max_age_ms=60_000, clock=clock)
        cache.set("k", fake_result(clock() - 59_000), ttl_ms=600_000)

        assert cache.get("k") is not None
        clock.advance(1_000)
        assert cache.get("k") is None
        assert len(cache) == 0

    def test_ttl_expiry(self, clock):
        """The per-entry ttl bounds freshness as well."""
        cache = ResultCache(max_age_ms=600_000, clock=clock)
        cache.set("k", fake_result(clock()), ttl_ms=5_000)

        clock.advance(5_000)

        assert cache.get("k") is None

    def test_last_writer_wins(self, clock):
        """A later write replaces the earlier entry."""
        cache = ResultCache(clock=clock)
        first, second = fake_result(clock()), fake_result(clock())

        cache.set("k", first)
        cache.set("k", second)

        assert cache.get("k") is second

    def test_purge_expired(self, clock):
        """Only stale entries are purged."""
        cache = ResultCache(max_age_ms=10_000, clock=clock)
        cache.set("old", fake_result(clock()))
        clock.advance(8_000)
        cache.set("new", fake_result(clock()))
        clock.advance(3_000)

        assert cache.purge_expired() == 1
        assert cache.get("new") is not None

    def test_corrupt_entry(self, clock):
        """Foreign values in the store raise CacheError."""
        store = {"k": "garbage"}
        cache = ResultCache(store=store, clock=clock)

        with pytest.raises(CacheError):
            cache.get("k")

    def test_store_failure_wrapped(self, clock):
        """Backend exceptions surface as CacheError with the cause attached."""
        cache = ResultCache(store=ExplodingStore(), clock=clock)

        with pytest.raises(CacheError) as exc_info:
            cache.get("k")

        assert isinstance(exc_info.value.__cause__, OSError)


class TestCacheKey:
    """Test suite for cache key construction."""

    def test_namespace_and_sorting(self):
        """Keys are namespaced and sorted."""
        assert cache_key(["SOL", "BTC", "ETH"]) == f"{CACHE_NAMESPACE}BTC,ETH,SOL"

    def test_single_symbol(self):
        """A single symbol has no separator."""
        assert cache_key(["BTC"]) == "oracle-validation:BTC"
