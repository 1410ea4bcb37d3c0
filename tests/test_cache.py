from __future__ import annotations

from pyissuemap._cache import CacheStore


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def test_get_returns_value_before_ttl() -> None:
    clock = _Clock()
    cache = CacheStore(10, clock=clock)
    cache.set(("issues", "a"), "page", ttl_ms=1000)

    clock.advance(0.999)

    assert cache.get(("issues", "a")) == "page"


def test_expired_entry_is_absent_and_evicted() -> None:
    clock = _Clock()
    cache = CacheStore(10, clock=clock)
    cache.set("k", "v", ttl_ms=1000)

    clock.advance(1.001)

    assert cache.get("k") is None
    assert len(cache) == 0


def test_capacity_evicts_least_recently_used() -> None:
    cache = CacheStore(2, clock=_Clock())
    cache.set("a", 1, ttl_ms=60_000)
    cache.set("b", 2, ttl_ms=60_000)

    # Touch "a" so "b" becomes the least recently used entry.
    assert cache.get("a") == 1
    cache.set("c", 3, ttl_ms=60_000)

    assert cache.get("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3
    assert len(cache) == 2


def test_overwrite_existing_key_does_not_evict() -> None:
    cache = CacheStore(2, clock=_Clock())
    cache.set("a", 1, ttl_ms=60_000)
    cache.set("b", 2, ttl_ms=60_000)
    cache.set("a", 10, ttl_ms=60_000)

    assert cache.get("a") == 10
    assert cache.get("b") == 2


def test_overwrite_resets_ttl() -> None:
    clock = _Clock()
    cache = CacheStore(2, clock=clock)
    cache.set("a", 1, ttl_ms=1000)
    clock.advance(0.8)
    cache.set("a", 2, ttl_ms=1000)
    clock.advance(0.8)

    assert cache.get("a") == 2


def test_contains_is_expiry_aware_and_does_not_refresh_recency() -> None:
    clock = _Clock()
    cache = CacheStore(2, clock=clock)
    cache.set("a", 1, ttl_ms=60_000)
    cache.set("b", 2, ttl_ms=500)

    assert "a" in cache
    cache.set("c", 3, ttl_ms=60_000)
    # Membership on "a" did not refresh it, so "a" was the LRU victim.
    assert "a" not in cache

    clock.advance(1.0)
    assert "b" not in cache


def test_evict_where_and_delete() -> None:
    cache = CacheStore(10, clock=_Clock())
    cache.set(("issues", "country", "France"), 1, ttl_ms=60_000)
    cache.set(("issues", "global", "World"), 2, ttl_ms=60_000)
    cache.set(("location", 2.35, 48.85, "country"), 3, ttl_ms=60_000)

    evicted = cache.evict_where(lambda key, _value: key[0] == "issues")

    assert evicted == 2
    assert len(cache) == 1
    assert cache.delete(("location", 2.35, 48.85, "country")) is True
    assert cache.delete(("location", 2.35, 48.85, "country")) is False
