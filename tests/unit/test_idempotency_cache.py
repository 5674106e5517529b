"""Testes do cache de idempotência (Redis + fallback em memória)."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from sef_sync.config.settings import Settings
from sef_sync.infra.idempotency import (
    IdempotencyCache,
    IdempotencyRecord,
    build_idempotency_key,
    create_idempotency_cache,
    is_valid_idempotency_token,
)


class TestTokenValidation:
    @pytest.mark.parametrize(
        "token",
        [
            "3f2c1a9e-4b7d-4c2a-9e8f-1a2b3c4d5e6f",
            "payment-attempt-0001",
            "ABCDEFGHIJKLMNOP",
        ],
    )
    def test_valid_tokens(self, token: str):
        assert is_valid_idempotency_token(token) is True

    @pytest.mark.parametrize("token", [None, "", "short-token", "has spaces in it!!", "á" * 20])
    def test_invalid_tokens(self, token: str | None):
        assert is_valid_idempotency_token(token) is False


def test_build_key_uses_anonymous_actor_when_missing():
    key = build_idempotency_key(None, "post", "/payments", "payment-attempt-0001")
    assert key == "idempotency:anonymous:POST:/payments:payment-attempt-0001"


class TestMemoryCache:
    def test_put_then_get_returns_record(self):
        cache = IdempotencyCache()
        cache.put("k1", 201, '{"id": 1}')

        record = cache.get("k1")

        assert record is not None
        assert record.status_code == 201
        assert record.body == '{"id": 1}'
        assert record.ttl_seconds == 3600

    def test_non_2xx_responses_are_not_cached(self):
        cache = IdempotencyCache()

        assert cache.put("k1", 500, "error") is None
        assert cache.put("k2", 409, "conflict") is None
        assert cache.get("k1") is None
        assert cache.get("k2") is None

    def test_clear_actor_removes_only_that_actor(self):
        cache = IdempotencyCache()
        cache.put(build_idempotency_key("u1", "POST", "/a", "t" * 16), 200, "{}")
        cache.put(build_idempotency_key("u2", "POST", "/a", "t" * 16), 200, "{}")

        assert cache.clear_actor("u1") == 1
        assert cache.get(build_idempotency_key("u2", "POST", "/a", "t" * 16)) is not None


class TestRedisCache:
    def test_put_stores_json_with_ttl(self):
        mock_redis = MagicMock()
        cache = IdempotencyCache(mock_redis, default_ttl_seconds=120)

        cache.put("k1", 200, "{}")

        args, kwargs = mock_redis.set.call_args
        assert args[0] == "k1"
        assert IdempotencyRecord.from_json(args[1]).status_code == 200
        assert kwargs == {"ex": 120}

    def test_get_reads_from_redis(self):
        record = IdempotencyRecord(200, "{}", "application/json", "2026-01-15T12:00:00", 60)
        mock_redis = MagicMock()
        mock_redis.get.return_value = record.to_json()
        cache = IdempotencyCache(mock_redis)

        assert cache.get("k1") == record

    def test_redis_failure_falls_back_to_memory(self):
        mock_redis = MagicMock()
        mock_redis.set.side_effect = ConnectionError("down")
        mock_redis.get.side_effect = ConnectionError("down")
        cache = IdempotencyCache(mock_redis)

        cache.put("k1", 201, '{"ok": true}')
        record = cache.get("k1")

        assert record is not None
        assert record.status_code == 201


@pytest.mark.asyncio
async def test_lock_serializes_same_key():
    cache = IdempotencyCache()
    order: list[str] = []

    async def worker(name: str) -> None:
        async with cache.lock("k1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])


def test_factory_uses_redis_only_for_redis_backend():
    mock_redis = MagicMock()
    memory = create_idempotency_cache(Settings(idempotency_backend="memory"), mock_redis)
    memory.put("k1", 200, "{}")
    mock_redis.set.assert_not_called()

    redis_backed = create_idempotency_cache(
        Settings(idempotency_backend="redis", redis_url="redis://localhost"), mock_redis
    )
    redis_backed.put("k1", 200, "{}")
    mock_redis.set.assert_called_once()
