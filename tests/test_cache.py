"""Tests for the per-phone chat session cache."""

from __future__ import annotations

from heykaelo.services.cache import ChatSessionCache


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ── Basic operations ─────────────────────────────────────────────────


class TestChatSessionCacheBasic:
    def test_put_and_get(self):
        cache = ChatSessionCache(max_entries=10, ttl_seconds=60)
        cache.put("27821234567", {"history": []})
        assert cache.get("27821234567") == {"history": []}

    def test_get_missing_returns_none(self):
        cache = ChatSessionCache()
        assert cache.get("nope") is None

    def test_overwrite_existing_key(self):
        cache = ChatSessionCache()
        cache.put("k", "v1")
        cache.put("k", "v2")
        assert cache.get("k") == "v2"
        assert cache.entry_count == 1

    def test_invalidate(self):
        cache = ChatSessionCache()
        cache.put("k", "v")
        assert cache.invalidate("k") is True
        assert cache.get("k") is None
        assert cache.invalidate("k") is False

    def test_clear(self):
        cache = ChatSessionCache()
        cache.put("a", 1)
        cache.put("b", 2)
        cache.clear()
        assert cache.entry_count == 0


# ── LRU eviction ─────────────────────────────────────────────────────


class TestChatSessionCacheEviction:
    def test_evicts_least_recently_used_at_capacity(self):
        cache = ChatSessionCache(max_entries=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)
        assert not cache.has("a")
        assert cache.has("b")
        assert cache.has("c")

    def test_get_promotes_entry(self):
        cache = ChatSessionCache(max_entries=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)
        assert cache.has("a")
        assert not cache.has("b")

    def test_never_exceeds_capacity(self):
        cache = ChatSessionCache(max_entries=5)
        for i in range(50):
            cache.put(f"phone-{i}", i)
        assert cache.entry_count == 5


# ── Idle TTL ─────────────────────────────────────────────────────────


class TestChatSessionCacheTTL:
    def test_entry_expires_after_idle_ttl(self):
        clock = FakeClock()
        cache = ChatSessionCache(ttl_seconds=60, clock=clock)
        cache.put("k", "v")
        clock.advance(61)
        assert cache.get("k") is None
        assert cache.entry_count == 0

    def test_access_refreshes_idle_timer(self):
        clock = FakeClock()
        cache = ChatSessionCache(ttl_seconds=60, clock=clock)
        cache.put("k", "v")
        clock.advance(50)
        assert cache.get("k") == "v"
        clock.advance(50)
        assert cache.get("k") == "v"

    def test_purge_expired(self):
        clock = FakeClock()
        cache = ChatSessionCache(ttl_seconds=60, clock=clock)
        cache.put("old", 1)
        clock.advance(45)
        cache.put("fresh", 2)
        clock.advance(30)
        assert cache.purge_expired() == 1
        assert cache.has("fresh")
        assert not cache.has("old")
