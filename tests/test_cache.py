"""Tests for the generation cache."""

import pytest

from specforge.engine.cache import DEFAULT_MAX_SIZE, GenerationCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> GenerationCache:
    return GenerationCache(max_size=3, ttl_seconds=60, clock=clock)


class TestGetPut:
    """Basic storage and counters."""

    def test_miss_then_hit(self, cache: GenerationCache):
        assert cache.get("h1", "models") is None

        cache.put("h1", "models", {"models/user.go": "package models"})

        assert cache.get("h1", "models") == {"models/user.go": "package models"}
        stats = cache.stats()
        assert (stats.hits, stats.misses, stats.entries) == (1, 1, 1)
        assert stats.hit_rate == pytest.approx(0.5)

    def test_returned_files_are_copies(self, cache: GenerationCache):
        cache.put("h1", "models", {"a.go": "a"})

        cache.get("h1", "models")["a.go"] = "mutated"

        assert cache.get("h1", "models") == {"a.go": "a"}

    def test_keys_include_package(self, cache: GenerationCache):
        cache.put("h1", "models", {"a.go": "a"})

        assert cache.get("h1", "service") is None
        assert cache.get("h2", "models") is None

    def test_empty_stats(self, cache: GenerationCache):
        assert cache.stats().hit_rate == 0.0


class TestExpiry:
    """TTL and size bounds."""

    def test_entry_expires_after_ttl(self, cache: GenerationCache, clock: FakeClock):
        cache.put("h1", "models", {"a.go": "a"})

        clock.now += 60
        assert cache.get("h1", "models") is not None

        clock.now += 1
        assert cache.get("h1", "models") is None
        assert cache.stats().entries == 0

    def test_oldest_entry_evicted_when_full(self, cache: GenerationCache):
        for package in ("a", "b", "c", "d"):
            cache.put("h1", package, {f"{package}.go": package})

        assert cache.get("h1", "a") is None
        assert cache.get("h1", "d") == {"d.go": "d"}
        assert cache.stats().entries == 3

    def test_overwrite_does_not_evict(self, cache: GenerationCache):
        for package in ("a", "b", "c"):
            cache.put("h1", package, {})
        cache.put("h1", "a", {"a.go": "new"})

        assert cache.stats().entries == 3
        assert cache.get("h1", "b") == {}

    def test_invalid_bounds_fall_back_to_defaults(self):
        cache = GenerationCache(max_size=0, ttl_seconds=-1)

        assert cache.max_size == DEFAULT_MAX_SIZE
        assert cache.ttl_seconds > 0


class TestMerge:
    """Merging files into an entry."""

    def test_merge_extends_entry(self, cache: GenerationCache):
        cache.merge("h1", "models", {"a.go": "a"})
        cache.merge("h1", "models", {"b.go": "b"})

        assert cache.get("h1", "models") == {"a.go": "a", "b.go": "b"}

    def test_merge_replaces_expired_entry(self, cache: GenerationCache, clock: FakeClock):
        cache.merge("h1", "models", {"a.go": "a"})
        clock.now += 120
        cache.merge("h1", "models", {"b.go": "b"})

        assert cache.get("h1", "models") == {"b.go": "b"}


class TestInvalidation:
    """Dropping entries."""

    def test_invalidate_by_spec_hash(self, cache: GenerationCache):
        cache.put("h1", "models", {})
        cache.put("h1", "service", {})
        cache.put("h2", "models", {})

        assert cache.invalidate("h1") == 2
        assert cache.get("h2", "models") == {}
        assert cache.invalidate("missing") == 0

    def test_clear_resets_counters(self, cache: GenerationCache):
        cache.put("h1", "models", {})
        cache.get("h1", "models")
        cache.get("h1", "nope")

        cache.clear()

        stats = cache.stats()
        assert (stats.entries, stats.hits, stats.misses) == (0, 0, 0)


def test_disabled_cache_stores_nothing():
    cache = GenerationCache(enabled=False)

    cache.put("h1", "models", {"a.go": "a"})
    cache.merge("h1", "models", {"b.go": "b"})

    assert cache.get("h1", "models") is None
    stats = cache.stats()
    assert (stats.entries, stats.hits, stats.misses) == (0, 0, 0)
