from dotguard.backends.cache import SecretCache

from fakes import ManualClock


def test_entries_expire():
    clock = ManualClock()
    cache = SecretCache(ttl=300, clock=clock)
    cache.set("A", "1", "local")

    clock.now = 299
    assert cache.get("A").value == "1"
    clock.now = 301
    assert cache.get("A") is None
    assert len(cache) == 0


def test_per_entry_ttl_and_prune():
    clock = ManualClock()
    cache = SecretCache(ttl=300, clock=clock)
    cache.set("SHORT", "1", "1password", ttl=10)
    cache.set("LONG", "2", "1password")
    clock.now = 11
    assert cache.prune() == 1
    assert cache.keys() == ["LONG"]
    assert cache.has("LONG")


def test_stats_track_hits_and_misses():
    cache = SecretCache()
    cache.set("A", "1", "local")
    cache.get("A")
    cache.get("A")
    cache.get("B")
    stats = cache.stats()
    assert (stats.size, stats.hits, stats.misses) == (1, 2, 1)
    assert round(stats.hit_rate, 2) == 66.67

    cache.clear()
    assert cache.stats().hits == 0
    assert cache.stats().hit_rate == 0.0


def test_invalidation():
    cache = SecretCache()
    cache.set("A", "1", "bitwarden")
    cache.set("B", "2", "pass")
    cache.set("C", "3", "bitwarden")
    cache.invalidate_backend("bitwarden")
    assert cache.keys() == ["B"]
    cache.invalidate("B")
    assert len(cache) == 0
    cache.set("D", "4", "pass")
    cache.invalidate()
    assert len(cache) == 0


def test_values_are_not_in_repr():
    cache = SecretCache()
    cache.set("A", "top-secret-value", "local")
    assert "top-secret-value" not in repr(cache.get("A"))
