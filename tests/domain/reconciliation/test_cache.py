from __future__ import annotations

from relinkpy.domain.reconciliation.cache import LookupCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_cached_none_is_a_hit() -> None:
    cache: LookupCache[str | None] = LookupCache(max_size=2, ttl_seconds=60)

    cache.put("missing", None)

    assert cache.get("missing") == (True, None)
    assert cache.get("other") == (False, None)


def test_least_recently_used_entry_is_evicted() -> None:
    cache: LookupCache[int] = LookupCache(max_size=2, ttl_seconds=60)
    cache.put("a", 1)
    cache.put("b", 2)
    cache.get("a")

    cache.put("c", 3)

    assert cache.get("b") == (False, None)
    assert cache.get("a") == (True, 1)
    assert len(cache) == 2
    assert cache.evictions == 1


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache: LookupCache[int] = LookupCache(max_size=10, ttl_seconds=5, clock=clock)
    cache.put("a", 1)

    clock.now = 4.9
    assert cache.get("a") == (True, 1)

    clock.now = 5.0
    assert cache.get("a") == (False, None)
    assert len(cache) == 0


def test_zero_size_disables_caching() -> None:
    cache: LookupCache[int] = LookupCache(max_size=0, ttl_seconds=60)

    cache.put("a", 1)

    assert cache.get("a") == (False, None)
