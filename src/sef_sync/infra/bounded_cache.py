"""Cache chave-valor em memória, limitado e com TTL.

Estrutura compartilhada do processo usada por:
- Nonce store do webhook (replay protection)
- Fallback in-process do cache de idempotência

Características:
- Thread-safe (threading.Lock); seguro também entre handlers async
- Capacidade fixa com despejo do mais antigo (ordem de inserção)
- Expiração por entrada; relógio injetável para testes
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

MonotonicClock = Callable[[], float]


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


class BoundedTTLCache:
    """Mapa ordenado com TTL e limite de entradas.

    Args:
        max_entries: Capacidade máxima; ao exceder, remove a entrada mais antiga
        default_ttl_seconds: TTL aplicado quando `ttl_seconds` não é informado
        clock: Função de tempo monotônico (segundos)
    """

    def __init__(
        self,
        max_entries: int,
        default_ttl_seconds: float,
        clock: MonotonicClock = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries deve ser > 0")
        self._max_entries = max_entries
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._data: OrderedDict[str, _Entry] = OrderedDict()
        self._lock = threading.Lock()

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def get(self, key: str) -> Any | None:
        """Retorna valor se presente e não expirado."""
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._data[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Insere/substitui valor; a entrada passa a ser a mais recente."""
        with self._lock:
            self._store_locked(key, value, ttl_seconds)

    def add_if_absent(self, key: str, value: Any = True, ttl_seconds: float | None = None) -> bool:
        """Set-if-not-exists atômico.

        Returns:
            True se a chave foi inserida agora; False se já existia (não expirada)
        """
        with self._lock:
            entry = self._data.get(key)
            if entry is not None and entry.expires_at > self._clock():
                return False
            self._store_locked(key, value, ttl_seconds)
            return True

    def delete(self, key: str) -> bool:
        """Remove chave; retorna True se existia."""
        with self._lock:
            return self._data.pop(key, None) is not None

    def delete_prefix(self, prefix: str) -> int:
        """Remove todas as chaves com o prefixo informado."""
        with self._lock:
            keys = [k for k in self._data if k.startswith(prefix)]
            for k in keys:
                del self._data[k]
            return len(keys)

    def purge_expired(self) -> int:
        """Remove entradas expiradas; retorna quantidade removida."""
        with self._lock:
            return self._purge_locked()

    def __len__(self) -> int:
        with self._lock:
            self._purge_locked()
            return len(self._data)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def _store_locked(self, key: str, value: Any, ttl_seconds: float | None) -> None:
        ttl = self._default_ttl if ttl_seconds is None else ttl_seconds
        self._data.pop(key, None)
        self._data[key] = _Entry(value=value, expires_at=self._clock() + ttl)
        if len(self._data) > self._max_entries:
            self._purge_locked()
        while len(self._data) > self._max_entries:
            self._data.popitem(last=False)

    def _purge_locked(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._data.items() if e.expires_at <= now]
        for k in expired:
            del self._data[k]
        return len(expired)
