"""Contrato do log durável de webhooks recebidos."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from sef_sync.domain.models import WebhookLog


class WebhookLogUnavailableError(Exception):
    """Não foi possível gravar/atualizar o WebhookLog."""


class WebhookLogStore(ABC):
    """Registro append-only de notificações; linhas nunca são removidas."""

    @abstractmethod
    def create(self, log: WebhookLog) -> WebhookLog:
        """Grava o log antes de qualquer interpretação do evento.

        Raises:
            WebhookLogUnavailableError: backend indisponível
        """

    @abstractmethod
    def get(self, log_id: str) -> WebhookLog | None:
        ...

    @abstractmethod
    def mark_processed(self, log_id: str, error: str | None, processed_at: datetime) -> None:
        ...

    @abstractmethod
    def list(
        self,
        *,
        exchange_id: str | None = None,
        event_type: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[WebhookLog], int]:
        """Retorna (página, total) ordenado do mais recente para o mais antigo."""
