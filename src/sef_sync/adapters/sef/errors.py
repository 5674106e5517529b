"""Taxonomia de erros do cliente outbound do SEF.

Exceções do httpx nunca escapam do cliente; são traduzidas para:
- TransientExchangeError: 429, 5xx, timeout, conexão (retentável)
- MaintenanceWindowError: pausa planejada do SEF ("noćna pauza")
- PermanentRejectionError: 4xx exceto 429 (nunca retentado)
- ExchangeAuthenticationError: 401/403 (rejeição permanente)
- RetriesExhaustedError: retries esgotados (FAILED_PERMANENT)
"""

from __future__ import annotations

from datetime import datetime


class ExchangeError(Exception):
    """Erro de comunicação com o SEF sem expor informações sensíveis."""

    code = "exchange_error"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        is_retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.is_retryable = is_retryable


class TransientExchangeError(ExchangeError):
    code = "exchange_unavailable"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, status_code=status_code, is_retryable=True)


class MaintenanceWindowError(ExchangeError):
    """SEF em janela de manutenção; tentar novamente depois de `retry_after`."""

    code = "exchange_maintenance"

    def __init__(
        self,
        message: str = "SEF em pausa de manutenção",
        status_code: int | None = 503,
        retry_after: datetime | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, is_retryable=True)
        self.retry_after = retry_after


class PermanentRejectionError(ExchangeError):
    code = "exchange_rejected"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, status_code=status_code, is_retryable=False)


class ExchangeAuthenticationError(PermanentRejectionError):
    code = "exchange_unauthorized"


class RetriesExhaustedError(ExchangeError):
    code = "exchange_retries_exhausted"

    def __init__(
        self, message: str, attempts: int, last_error: ExchangeError | None = None
    ) -> None:
        status_code = last_error.status_code if last_error else None
        super().__init__(message, status_code=status_code, is_retryable=False)
        self.attempts = attempts
        self.last_error = last_error
