"""Tests for the TTL cache and the copy-on-write snapshot cache."""
from datetime import timedelta

import pytest

from geo.cache import SnapshotCache, TTLCache

from conftest import FakeClock


def test_ttl_entry_served_until_expiry():
    clock = FakeClock()
    cache = TTLCache(ttl=3600, clock=clock)
    cache.set("1.2.3.4", "record")

    clock.advance(minutes=59)
    assert cache.get("1.2.3.4") == "record"

    clock.advance(minutes=2)
    assert cache.get("1.2.3.4") is None
    assert len(cache) == 0


def test_ttl_uses_explicit_stored_at():
    clock = FakeClock()
    cache = TTLCache(ttl=60, clock=clock)
    cache.set("k", "v", stored_at=clock() - timedelta(seconds=61))
    assert cache.get("k") is None


def test_ttl_invalidate_and_clear():
    cache = TTLCache(ttl=60, clock=FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate("a")
    assert cache.get("a") is None
    assert cache.get("b") == 2
    cache.clear()
    assert len(cache) == 0


def test_snapshot_readers_keep_their_view():
    """A reader holding a snapshot never sees a later write."""
    cache = SnapshotCache()
    cache.set("content", ("rule-1",))
    before = cache.snapshot()

    cache.set("content", ("rule-1", "rule-2"))
    cache.set("payment", ("rule-3",))

    assert before["content"] == ("rule-1",)
    assert "payment" not in before
    assert cache.get("content") == ("rule-1", "rule-2")


def test_snapshot_is_read_only():
    cache = SnapshotCache()
    cache.set("k", 1)
    snapshot = cache.snapshot()
    with pytest.raises(TypeError):
        snapshot["k"] = 2
    cache.invalidate("k")
    cache.invalidate("missing")
    assert cache.get("k") is None


def test_snapshot_fill_is_dropped_after_invalidation():
    cache = SnapshotCache()
    token = cache.generation("content")
    cache.invalidate("content")
    assert not cache.fill("content", ("stale",), token)
    assert cache.get("content") is None

    token = cache.generation("content")
    assert cache.fill("content", ("fresh",), token)
    assert cache.get("content") == ("fresh",)
