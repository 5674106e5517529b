"""Cache de idempotência para requests mutáveis.

Guarda o primeiro resultado 2xx de um request identificado por
(actor, método, path, Idempotency-Key) e o devolve em retries, sem
reexecutar o handler.

Backends:
- Redis (compartilhado, TTL nativo) quando configurado
- Fallback em memória, limitado, usado quando Redis está ausente ou falha

Trade-off: com Redis indisponível, a idempotência passa a ser best-effort
por processo em vez de inexistente.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

from sef_sync.infra.bounded_cache import BoundedTTLCache
from sef_sync.observability.logging import get_logger
from sef_sync.utils.clock import utc_now
from sef_sync.utils.locks import KeyedAsyncLock

if TYPE_CHECKING:
    from sef_sync.config.settings import Settings

logger: logging.Logger = get_logger(__name__)

DEFAULT_IDEMPOTENCY_TTL_SECONDS = 3600
KEY_PREFIX = "idempotency:"

_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9\-_]{16,}$")


def is_valid_idempotency_token(token: str | None) -> bool:
    """Token deve ser UUID ou alfanumérico (com - e _) de no mínimo 16 chars."""
    if not token:
        return False
    return bool(_UUID_PATTERN.match(token) or _TOKEN_PATTERN.match(token))


def build_idempotency_key(actor_id: str | None, method: str, path: str, token: str) -> str:
    """Monta a chave completa de cache.

    Formato: idempotency:{actor}:{METHOD}:{path}:{token}
    """
    actor = actor_id or "anonymous"
    return f"{KEY_PREFIX}{actor}:{method.upper()}:{path}:{token}"


@dataclass(slots=True, frozen=True)
class IdempotencyRecord:
    """Resposta cacheada de um request idempotente."""

    status_code: int
    body: str
    media_type: str | None
    created_at: str
    ttl_seconds: int

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str | bytes) -> IdempotencyRecord:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
        return cls(
            status_code=int(data["status_code"]),
            body=data["body"],
            media_type=data.get("media_type"),
            created_at=data["created_at"],
            ttl_seconds=int(data["ttl_seconds"]),
        )


class IdempotencyCache:
    """Cache de respostas com Redis opcional e fallback limitado em memória."""

    def __init__(
        self,
        redis_client: Any = None,
        *,
        default_ttl_seconds: int = DEFAULT_IDEMPOTENCY_TTL_SECONDS,
        fallback: BoundedTTLCache | None = None,
        fallback_max_entries: int = 10000,
    ) -> None:
        self._redis = redis_client
        self._default_ttl = default_ttl_seconds
        if fallback is None:
            fallback = BoundedTTLCache(fallback_max_entries, default_ttl_seconds)
        self._fallback = fallback
        self._locks = KeyedAsyncLock()

    @property
    def default_ttl_seconds(self) -> int:
        return self._default_ttl

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        """Serializa requests concorrentes com a mesma chave (por processo)."""
        async with self._locks.hold(key):
            yield

    def get(self, key: str) -> IdempotencyRecord | None:
        """Busca resposta cacheada; Redis primeiro, depois fallback."""
        if self._redis is not None:
            try:
                raw = self._redis.get(key)
                if raw:
                    return IdempotencyRecord.from_json(raw)
            except Exception as e:
                logger.error(
                    "Falha ao ler resposta idempotente no Redis",
                    extra={"operation": "get", "error_type": type(e).__name__},
                )

        return self._fallback.get(key)

    def put(
        self,
        key: str,
        status_code: int,
        body: str,
        media_type: str | None = "application/json",
        ttl_seconds: int | None = None,
    ) -> IdempotencyRecord | None:
        """Armazena resposta de sucesso (2xx). Demais status são ignorados."""
        if not 200 <= status_code < 300:
            return None

        ttl = ttl_seconds or self._default_ttl
        record = IdempotencyRecord(
            status_code=status_code,
            body=body,
            media_type=media_type,
            created_at=utc_now().isoformat(),
            ttl_seconds=ttl,
        )

        if self._redis is not None:
            try:
                self._redis.set(key, record.to_json(), ex=ttl)
                return record
            except Exception as e:
                logger.error(
                    "Falha ao gravar resposta idempotente no Redis; usando fallback em memória",
                    extra={"operation": "put", "error_type": type(e).__name__},
                )

        self._fallback.set(key, record, ttl)
        return record

    def delete(self, key: str) -> None:
        """Remove resposta cacheada (limpeza manual)."""
        if self._redis is not None:
            try:
                self._redis.delete(key)
            except Exception as e:
                logger.error(
                    "Falha ao remover resposta idempotente",
                    extra={"operation": "delete", "error_type": type(e).__name__},
                )
        self._fallback.delete(key)

    def clear_actor(self, actor_id: str) -> int:
        """Remove todas as respostas de um actor (útil para testes/suporte)."""
        prefix = f"{KEY_PREFIX}{actor_id}:"
        removed = 0
        if self._redis is not None:
            try:
                keys = list(self._redis.scan_iter(match=f"{prefix}*"))
                if keys:
                    removed += int(self._redis.delete(*keys))
            except Exception as e:
                logger.error(
                    "Falha ao limpar respostas idempotentes do actor",
                    extra={"operation": "clear_actor", "error_type": type(e).__name__},
                )
        removed += self._fallback.delete_prefix(prefix)
        logger.info("Respostas idempotentes removidas", extra={"count": removed})
        return removed


def create_idempotency_cache(settings: Settings, redis_client: Any = None) -> IdempotencyCache:
    """Factory do cache de idempotência conforme settings.idempotency_backend."""
    backend = settings.idempotency_backend.lower()
    if backend not in {"memory", "redis"}:
        raise ValueError(f"Backend de idempotência não reconhecido: {backend}")

    if backend == "redis" and redis_client is None:
        logger.warning("Redis indisponível para idempotência; usando apenas fallback em memória")

    logger.info(
        "Cache de idempotência configurado",
        extra={
            "backend": backend,
            "ttl_seconds": settings.idempotency_ttl_seconds,
            "fallback_max_entries": settings.idempotency_fallback_max_entries,
        },
    )
    return IdempotencyCache(
        redis_client if backend == "redis" else None,
        default_ttl_seconds=settings.idempotency_ttl_seconds,
        fallback_max_entries=settings.idempotency_fallback_max_entries,
    )
