"""Log durável de webhooks do SEF (rastro de compliance)."""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from sef_sync.domain.models import WebhookLog
from sef_sync.domain.protocols.webhook_log import WebhookLogStore
from sef_sync.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)


class InMemoryWebhookLogStore(WebhookLogStore):
    """Store em memória (apenas dev/testes). Sem TTL: logs nunca expiram."""

    def __init__(self) -> None:
        self._data: dict[str, WebhookLog] = {}
        self._lock = threading.Lock()

    def create(self, log: WebhookLog) -> WebhookLog:
        with self._lock:
            self._data[log.id] = log
        return log

    def get(self, log_id: str) -> WebhookLog | None:
        with self._lock:
            return self._data.get(log_id)

    def mark_processed(self, log_id: str, error: str | None, processed_at: datetime) -> None:
        with self._lock:
            log = self._data.get(log_id)
            if log is None:
                logger.warning("webhook_log_not_found", extra={"webhook_log_id": log_id})
                return
            log.processed = True
            log.error = error
            log.processed_at = processed_at

    def list(
        self,
        *,
        exchange_id: str | None = None,
        event_type: str | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[WebhookLog], int]:
        with self._lock:
            logs = [
                log
                for log in self._data.values()
                if (exchange_id is None or log.exchange_id == exchange_id)
                and (event_type is None or log.event_type == event_type)
            ]
        logs.sort(key=lambda log: log.received_at, reverse=True)
        return logs[offset : offset + limit], len(logs)
