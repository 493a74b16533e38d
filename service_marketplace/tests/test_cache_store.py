"""
Unit tests for the in-process cache store.
"""

import asyncio

import pytest

from service_marketplace.app.caching.store import MISSING, CacheStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestCacheStore:
    """Test cases for CacheStore without a running event loop."""

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def store(self, clock):
        return CacheStore(default_ttl=300, clock=clock)

    def test_set_and_get(self, store):
        """Stored values come back unchanged."""
        assert store.set("orders:list:{}", [{"id": "o1"}], namespace="orders") is True
        assert store.get("orders:list:{}") == [{"id": "o1"}]

    def test_get_missing_returns_default(self, store):
        """Absent keys return None or the supplied default."""
        assert store.get("nope") is None
        assert store.get("nope", MISSING) is MISSING

    def test_cached_none_is_distinguishable(self, store):
        """A cached None is not confused with a miss when using MISSING."""
        store.set("k", None)
        assert store.get("k", MISSING) is None

    def test_ttl_expiry(self, store, clock):
        """Entries are served before the TTL and absent at or after it."""
        store.set("k", "v", ttl=5)

        clock.advance(4.5)
        assert store.get("k") == "v"

        clock.advance(0.5)
        assert store.get("k") is None
        assert store.get_metadata("k") is None
        assert store.get_stats()["expirations"] == 1

    def test_default_ttl_applies(self, store, clock):
        store.set("k", "v")
        assert store.get_metadata("k")["ttl"] == 300

        clock.advance(300)
        assert store.get("k") is None

    def test_overwrite_resets_ttl(self, store, clock):
        """Writing a key again restarts its TTL from the new write."""
        store.set("k", "v1", ttl=0.05)
        clock.advance(0.04)
        store.set("k", "v2", ttl=0.05)
        clock.advance(0.04)

        assert store.get("k") == "v2"

    def test_overwrite_moves_namespace_and_tags(self, store):
        """Replacing an entry drops it from its old namespace and tags."""
        store.set("k", "v1", namespace="orders", tags=["order-1"])
        store.set("k", "v2", namespace="chats", tags=["user-1"])

        assert store.get_namespace_keys("orders") == []
        assert store.get_keys_by_tag("order-1") == []
        assert store.get_namespace_keys("chats") == ["k"]
        assert store.delete_by_tag("order-1") == 0
        assert store.get("k") == "v2"

    def test_non_positive_ttl_rejected(self, store):
        with pytest.raises(ValueError):
            store.set("k", "v", ttl=0)
        with pytest.raises(ValueError):
            CacheStore(default_ttl=-1)

    def test_namespace_defaults(self, store):
        store.set("k", "v")
        assert store.get_namespace_keys("default") == ["k"]

    def test_delete_namespace(self, store):
        """Only entries of the cleared namespace are removed."""
        store.set("orders:list:{}", [], namespace="orders")
        store.set('orders:list:{"status":"PENDING"}', [], namespace="orders")
        store.set("orders:detail:1", {}, namespace="orders")
        store.set("chats:user:1", [], namespace="chats")

        assert store.delete_namespace("orders") == 3
        assert store.get_namespace_keys("orders") == []
        assert store.get("chats:user:1") == []

    def test_delete_by_tag(self, store):
        """Only entries carrying the tag are removed."""
        store.set("orders:detail:42", {"id": "42"}, tags=["orders", "order-42"])
        store.set("orders:list:{}", [], tags=["orders"])

        assert store.delete_by_tag("order-42") == 1
        assert store.get("orders:detail:42") is None
        assert store.get("orders:list:{}") == []

    def test_delete_by_tag_crosses_namespaces(self, store):
        store.set("chats:user:u1", [], namespace="chats", tags=["user-u1"])
        store.set("notifications:user:u1", [], namespace="notifications", tags=["user-u1"])
        store.set("notifications:user:u2", [], namespace="notifications", tags=["user-u2"])

        assert store.delete_by_tag("user-u1") == 2
        assert store.keys() == ["notifications:user:u2"]

    def test_delete_pattern_substring(self, store):
        store.set("orders:list:{}", [])
        store.set("orders:detail:1", {})
        store.set("chats:user:1", [])

        assert store.delete_pattern("orders:") == 2
        assert store.keys() == ["chats:user:1"]

    def test_delete_pattern_wildcard_and_literals(self, store):
        """'*' spans any characters; regex metacharacters are literal."""
        store.set("GET:/api/orders?status=PENDING", [])
        store.set("GET:/api/orders/1", {})
        store.set("GET:/api/chats", [])

        assert store.delete_pattern("/api/orders?") == 1
        assert store.delete_pattern("GET:*/1") == 1
        assert store.keys() == ["GET:/api/chats"]

    def test_delete_is_idempotent(self, store):
        """Deleting a missing key is a no-op."""
        store.set("k", "v")
        before = store.get_stats()

        assert store.delete("missing") is False

        after = store.get_stats()
        assert after["size"] == before["size"]
        assert after["deletes"] == before["deletes"]
        assert store.get("k") == "v"

    def test_clear(self, store):
        store.set("a", 1, namespace="orders", tags=["t"])
        store.set("b", 2)

        assert store.clear() == 2
        assert len(store) == 0
        assert store.get_stats()["tag_count"] == 0

    def test_stats(self, store, clock):
        store.set("a", 1, namespace="orders")
        store.set("b", 2, namespace="orders", ttl=1)
        store.set("c", 3, namespace="chats", tags=["user-1"])
        store.get("a")
        store.get("missing")
        clock.advance(2)

        stats = store.get_stats()

        assert stats["size"] == 2
        assert stats["namespaces"] == {"orders": 1, "chats": 1}
        assert stats["namespace_count"] == 2
        assert stats["tag_count"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["sets"] == 3
        assert stats["hit_rate"] == 50.0
        assert stats["default_ttl"] == 300

    def test_stats_is_read_only(self, store, clock):
        """Stats skip expired entries without evicting or counting them."""
        store.set("k", "v", ttl=1)
        clock.advance(2)

        store.get_stats()

        assert store.get_metadata("k") is not None
        assert store.get_stats()["expirations"] == 0

    def test_namespace_keys_skip_expired(self, store, clock):
        store.set("a", 1, namespace="orders", ttl=1)
        store.set("b", 2, namespace="orders", ttl=10)
        clock.advance(5)

        assert store.get_namespace_keys("orders") == ["b"]

    def test_cleanup_sweeps_expired(self, store, clock):
        store.set("a", 1, ttl=1)
        store.set("b", 2, ttl=10)
        clock.advance(5)

        assert store.cleanup() == 1
        assert store.get_metadata("a") is None
        assert store.get("b") == 2

    def test_has_and_contains(self, store, clock):
        store.set("k", "v", ttl=1)
        assert store.has("k")
        assert "k" in store

        clock.advance(1)
        assert "k" not in store

    def test_batch_operations(self, store):
        store.mset({"a": 1, "b": 2}, namespace="batch")

        assert store.mget(["a", "b", "c"]) == {"a": 1, "b": 2, "c": None}
        assert store.mdelete(["a", "c"]) == 1
        assert store.get_namespace_keys("batch") == ["b"]

    def test_metadata(self, store, clock):
        store.set("k", "v", ttl=10, namespace="orders", tags=["b", "a"])
        clock.advance(4)

        metadata = store.get_metadata("k")

        assert metadata["namespace"] == "orders"
        assert metadata["tags"] == ["a", "b"]
        assert metadata["remaining_ttl"] == pytest.approx(6)
        assert metadata["has_timer"] is False

    def test_reset_stats(self, store):
        store.set("k", "v")
        store.get("k")

        previous = store.reset_stats()

        assert previous["hits"] == 1
        assert store.get_stats()["hits"] == 0
        assert store.get("k") == "v"


class TestCacheStoreTimers:
    """Expiry timers on a running event loop."""

    @pytest.mark.asyncio
    async def test_timer_removes_entry(self):
        """The scheduled timer physically removes the entry."""
        store = CacheStore()
        store.set("k", "v", ttl=0.05)
        assert store.get_metadata("k")["has_timer"] is True
        assert store.get("k") == "v"

        await asyncio.sleep(0.15)

        assert store.get_metadata("k") is None
        assert store._timers == {}
        assert store.get_stats()["expirations"] == 1

    @pytest.mark.asyncio
    async def test_old_timer_does_not_delete_new_entry(self):
        """Overwriting cancels the previous timer before scheduling a new one."""
        store = CacheStore()
        store.set("k", "v1", ttl=0.2)
        first_timer = store._timers["k"]

        await asyncio.sleep(0.15)
        store.set("k", "v2", ttl=0.2)

        assert first_timer.cancelled()

        # Past the first entry's deadline, before the second's.
        await asyncio.sleep(0.15)
        assert store.get("k") == "v2"

    @pytest.mark.asyncio
    async def test_delete_cancels_timer(self):
        store = CacheStore()
        store.set("k", "v", ttl=10)
        timer = store._timers["k"]

        store.delete("k")

        assert timer.cancelled()
        assert "k" not in store._timers

    @pytest.mark.asyncio
    async def test_bulk_removal_cancels_timers(self):
        store = CacheStore()
        store.set("a", 1, namespace="orders", ttl=10)
        store.set("b", 2, tags=["t"], ttl=10)
        store.set("c", 3, ttl=10)
        timers = dict(store._timers)

        store.delete_namespace("orders")
        store.delete_by_tag("t")
        store.clear()

        assert all(timer.cancelled() for timer in timers.values())
        assert store._timers == {}

    @pytest.mark.asyncio
    async def test_get_or_set(self):
        store = CacheStore()
        calls = []

        async def factory():
            calls.append(1)
            return {"total": 3}

        first = await store.get_or_set("orders:stats", factory, namespace="orders")
        second = await store.get_or_set("orders:stats", factory, namespace="orders")

        assert first == second == {"total": 3}
        assert len(calls) == 1
        store.clear()

    @pytest.mark.asyncio
    async def test_start_and_stop_sweep(self):
        clock = FakeClock()
        store = CacheStore(cleanup_interval=0.01, clock=clock)
        await store.start()
        store.set("k", "v", ttl=100)
        store._timers.pop("k").cancel()

        clock.advance(200)
        await asyncio.sleep(0.05)

        assert store.get_metadata("k") is None

        await store.stop()
        assert store._cleanup_task is None
