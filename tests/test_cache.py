"""Tests for the TTL cache."""

from komic.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_values_expire_after_ttl():
    clock = FakeClock()
    cache = TTLCache(ttl=10, clock=clock)
    cache.set("slug", "123456")

    clock.now = 9
    assert cache.get("slug") == "123456"
    clock.now = 10
    assert cache.get("slug") is None


def test_get_or_load_calls_loader_once():
    clock = FakeClock()
    cache = TTLCache(ttl=10, clock=clock)
    calls = []

    def load():
        calls.append(1)
        return "654321"

    assert cache.get_or_load("slug", load) == "654321"
    assert cache.get_or_load("slug", load) == "654321"
    assert len(calls) == 1


def test_none_results_are_not_cached():
    cache = TTLCache(ttl=10, clock=FakeClock())
    calls = []

    def load():
        calls.append(1)
        return None

    cache.get_or_load("missing", load)
    cache.get_or_load("missing", load)
    assert len(calls) == 2


def test_sweep_and_invalidate():
    clock = FakeClock()
    cache = TTLCache(ttl=5, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate("a")
    assert len(cache) == 1

    clock.now = 6
    assert cache.sweep() == 1
    assert len(cache) == 0
