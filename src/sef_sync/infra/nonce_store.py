"""Nonce store para proteção contra replay de webhooks.

Cada nonce recebido do SEF é marcado por uma janela fixa (padrão: 5 minutos).
A simples existência da chave é o payload.

- InMemoryNonceStore: limitado (10.000 entradas, despeja o mais antigo)
- RedisNonceStore: SET NX EX, compartilhado entre instâncias

O cliente Redis é síncrono (como no restante do serviço): uma operação
O(1) por webhook, limitada pelo socket_timeout configurado no app.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from sef_sync.infra.bounded_cache import BoundedTTLCache
from sef_sync.observability.logging import get_logger, mask_secret

if TYPE_CHECKING:
    from sef_sync.config.settings import Settings

logger: logging.Logger = get_logger(__name__)

DEFAULT_NONCE_TTL_SECONDS = 300
DEFAULT_NONCE_MAX_ENTRIES = 10000


class NonceStoreError(Exception):
    """Falha no backend de nonces."""


class NonceStore(ABC):
    """Contrato para stores de nonce."""

    @abstractmethod
    def mark_if_new(self, nonce: str) -> bool:
        """Marca nonce se não existir (set-if-not-exists).

        Returns:
            True se o nonce é novo (marcado agora)
            False se já foi visto dentro da janela (replay)

        Raises:
            NonceStoreError: Em caso de falha no backend
        """
        ...

    @abstractmethod
    def release(self, nonce: str) -> None:
        """Desfaz a marcação de um nonce cujo processamento não foi registrado.

        Permite que o reenvio do SEF (mesmo nonce) seja aceito.

        Raises:
            NonceStoreError: Em caso de falha no backend
        """
        ...


class InMemoryNonceStore(NonceStore):
    """Nonces em memória, limitado por capacidade e TTL.

    Não compartilha estado entre instâncias; adequado para dev/testes
    e instância única.
    """

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_NONCE_TTL_SECONDS,
        max_entries: int = DEFAULT_NONCE_MAX_ENTRIES,
        cache: BoundedTTLCache | None = None,
    ) -> None:
        self._cache = cache if cache is not None else BoundedTTLCache(max_entries, ttl_seconds)
        self._ttl_seconds = ttl_seconds

    def mark_if_new(self, nonce: str) -> bool:
        is_new = self._cache.add_if_absent(nonce, True, self._ttl_seconds)
        if not is_new:
            logger.debug("Nonce hit (in-memory)", extra={"nonce": mask_secret(nonce)})
        return is_new

    def release(self, nonce: str) -> None:
        self._cache.delete(nonce)

    def __len__(self) -> int:
        return len(self._cache)


class RedisNonceStore(NonceStore):
    """Nonces via Redis com TTL nativo."""

    def __init__(
        self,
        redis_client: Any,
        ttl_seconds: int = DEFAULT_NONCE_TTL_SECONDS,
        key_prefix: str = "webhook:nonce:",
    ) -> None:
        self._redis = redis_client
        self._ttl_seconds = ttl_seconds
        self._prefix = key_prefix

    def mark_if_new(self, nonce: str) -> bool:
        try:
            was_set = self._redis.set(f"{self._prefix}{nonce}", "1", nx=True, ex=self._ttl_seconds)
        except Exception as e:
            logger.error(
                "Erro em operação Redis",
                extra={"operation": "nonce_mark_if_new", "error_type": type(e).__name__},
            )
            raise NonceStoreError(f"Falha ao verificar nonce: {e}") from e
        return bool(was_set)

    def release(self, nonce: str) -> None:
        try:
            self._redis.delete(f"{self._prefix}{nonce}")
        except Exception as e:
            logger.error(
                "Erro em operação Redis",
                extra={"operation": "nonce_release", "error_type": type(e).__name__},
            )
            raise NonceStoreError(f"Falha ao liberar nonce: {e}") from e


def create_nonce_store(settings: Settings, redis_client: Any = None) -> NonceStore:
    """Factory do nonce store conforme settings.nonce_backend."""
    backend = settings.nonce_backend.lower()

    if backend == "memory":
        logger.info(
            "Usando InMemoryNonceStore",
            extra={
                "ttl_seconds": settings.webhook_nonce_ttl_seconds,
                "max_entries": settings.webhook_nonce_max_entries,
            },
        )
        return InMemoryNonceStore(
            ttl_seconds=settings.webhook_nonce_ttl_seconds,
            max_entries=settings.webhook_nonce_max_entries,
        )

    if backend == "redis":
        if redis_client is None:
            raise ValueError("NONCE_BACKEND=redis requer REDIS_URL configurado")
        logger.info(
            "Usando RedisNonceStore", extra={"ttl_seconds": settings.webhook_nonce_ttl_seconds}
        )
        return RedisNonceStore(redis_client, ttl_seconds=settings.webhook_nonce_ttl_seconds)

    raise ValueError(f"Backend de nonce não reconhecido: {backend}")
