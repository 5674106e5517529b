from __future__ import annotations

import pytest

from sef_sync.infra.bounded_cache import BoundedTTLCache


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


def test_get_returns_value_until_ttl_expires():
    clock = FakeMonotonic()
    cache = BoundedTTLCache(10, 60, clock=clock)

    cache.set("a", 1)
    clock.value = 59.9
    assert cache.get("a") == 1

    clock.value = 60
    assert cache.get("a") is None
    assert len(cache) == 0


def test_evicts_oldest_entry_when_full():
    cache = BoundedTTLCache(3, 60, clock=FakeMonotonic())

    for key in ("a", "b", "c", "d"):
        cache.set(key, key)

    assert len(cache) == 3
    assert "a" not in cache
    assert "d" in cache


def test_expired_entries_are_purged_before_eviction():
    clock = FakeMonotonic()
    cache = BoundedTTLCache(2, 60, clock=clock)
    cache.set("old", 1, ttl_seconds=1)
    cache.set("keep", 2)

    clock.value = 5
    cache.set("new", 3)

    assert "keep" in cache
    assert "new" in cache


def test_add_if_absent_is_set_if_not_exists():
    clock = FakeMonotonic()
    cache = BoundedTTLCache(10, 300, clock=clock)

    assert cache.add_if_absent("n1") is True
    assert cache.add_if_absent("n1") is False

    clock.value = 300
    assert cache.add_if_absent("n1") is True


def test_delete_and_delete_prefix():
    cache = BoundedTTLCache(10, 60, clock=FakeMonotonic())
    cache.set("idempotency:u1:a", 1)
    cache.set("idempotency:u1:b", 2)
    cache.set("idempotency:u2:a", 3)

    assert cache.delete("idempotency:u2:a") is True
    assert cache.delete("missing") is False
    assert cache.delete_prefix("idempotency:u1:") == 2
    assert len(cache) == 0


def test_purge_expired_returns_count():
    clock = FakeMonotonic()
    cache = BoundedTTLCache(10, 10, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2, ttl_seconds=100)

    clock.value = 20

    assert cache.purge_expired() == 1


def test_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        BoundedTTLCache(0, 60)
