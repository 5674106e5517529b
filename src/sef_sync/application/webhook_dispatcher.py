"""Dispatcher de webhooks do SEF (chamado apenas após verificação).

Ordem de processamento:
1. Grava WebhookLog ANTES de interpretar o evento (nenhum evento verificado
   é perdido em silêncio; falha aqui → 500 para o SEF reenviar)
2. Converte payload em evento tipado (união discriminada)
3. Aplica transição via StatusStateMachine (auditoria fica com ela)
4. Marca o log `processed` com error=None ou com a mensagem de falha

Payloads conhecidamente ruins (JSON inválido, campos ausentes, fatura
desconhecida) ficam registrados com erro e são respondidos com 200, para
evitar tempestade de reenvios. eventType desconhecido é no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from sef_sync.application.state_machine import (
    SOURCE_WEBHOOK,
    StatusStateMachine,
    TransitionOutcome,
    TransitionResult,
)
from sef_sync.domain.events import (
    CancellationEvent,
    InvalidEventError,
    RejectionEvent,
    UnknownEventTypeError,
    WebhookEvent,
    decode_payload,
    parse_webhook_event,
)
from sef_sync.domain.models import WebhookLog
from sef_sync.domain.protocols.invoices import InvoiceRepository
from sef_sync.domain.protocols.webhook_log import WebhookLogStore, WebhookLogUnavailableError
from sef_sync.observability.logging import get_logger
from sef_sync.utils.clock import Clock, utc_now

logger: logging.Logger = get_logger(__name__)

UNKNOWN_EVENT_TYPE = "UNKNOWN"


class DispatchStatus(StrEnum):
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"  # Registrado com erro; elegível para retry manual
    IGNORED = "IGNORED"  # eventType desconhecido


@dataclass(slots=True)
class DispatchResult:
    status: DispatchStatus
    webhook_log_id: str
    error: str | None = None
    transition: TransitionResult | None = None


class WebhookLogNotFoundError(Exception):
    pass


class WebhookRetryNotAllowedError(Exception):
    """Log já processado com sucesso; retry só vale para falhas."""


def _peek_identity(raw_body: bytes) -> tuple[str, str]:
    """Extrai (sefId, eventType) para o log, sem validar o resto."""
    try:
        payload = decode_payload(raw_body)
    except InvalidEventError:
        return "", UNKNOWN_EVENT_TYPE
    sef_id = payload.get("sefId")
    event_type = payload.get("eventType")
    return (
        str(sef_id) if sef_id is not None else "",
        str(event_type) if event_type else UNKNOWN_EVENT_TYPE,
    )


def _event_note(event: WebhookEvent) -> str | None:
    if isinstance(event, RejectionEvent):
        return event.rejection_reason
    if isinstance(event, CancellationEvent):
        return event.cancellation_reason
    return None


class WebhookDispatcher:
    """Transforma notificação verificada em transição de estado."""

    def __init__(
        self,
        webhook_logs: WebhookLogStore,
        invoices: InvoiceRepository,
        state_machine: StatusStateMachine,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._webhook_logs = webhook_logs
        self._invoices = invoices
        self._state_machine = state_machine
        self._clock = clock or utc_now

    async def dispatch(self, raw_body: bytes, signature: str | None) -> DispatchResult:
        """Registra e processa uma notificação.

        Raises:
            WebhookLogUnavailableError: log não pôde ser gravado (→ HTTP 500)
        """
        exchange_id, event_type = _peek_identity(raw_body)
        log = WebhookLog(
            exchange_id=exchange_id,
            event_type=event_type,
            payload=raw_body.decode("utf-8", errors="replace"),
            signature=signature or "",
            received_at=self._clock(),
        )
        try:
            self._webhook_logs.create(log)
        except Exception as exc:
            logger.exception(
                "webhook_log_write_failed",
                extra={"exchange_id": exchange_id, "event_type": event_type},
            )
            raise WebhookLogUnavailableError("webhook_log_unavailable") from exc

        logger.info(
            "webhook_received",
            extra={
                "webhook_log_id": log.id,
                "exchange_id": exchange_id,
                "event_type": event_type,
                "payload_bytes": len(raw_body),
            },
        )
        return await self._process(log, raw_body)

    async def retry(self, log_id: str) -> DispatchResult:
        """Reprocessa um log que falhou (retry manual)."""
        log = self._webhook_logs.get(log_id)
        if log is None:
            raise WebhookLogNotFoundError(log_id)
        if log.processed and log.error is None:
            raise WebhookRetryNotAllowedError(log_id)

        logger.info("webhook_retry_started", extra={"webhook_log_id": log_id})
        return await self._process(log, log.payload.encode("utf-8"))

    def list_logs(
        self,
        *,
        exchange_id: str | None = None,
        event_type: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[WebhookLog], int]:
        offset = (max(page, 1) - 1) * limit
        return self._webhook_logs.list(
            exchange_id=exchange_id, event_type=event_type, offset=offset, limit=limit
        )

    async def _process(self, log: WebhookLog, raw_body: bytes) -> DispatchResult:
        try:
            event = parse_webhook_event(decode_payload(raw_body))
        except UnknownEventTypeError as exc:
            logger.info(
                "webhook_unknown_event_type",
                extra={"webhook_log_id": log.id, "event_type": exc.event_type},
            )
            self._mark(log, None)
            return DispatchResult(status=DispatchStatus.IGNORED, webhook_log_id=log.id)
        except InvalidEventError as exc:
            return self._fail(log, str(exc))

        try:
            return await self._handle(log, event)
        except Exception as exc:
            logger.exception(
                "webhook_processing_unexpected_error",
                extra={"webhook_log_id": log.id, "event_type": log.event_type},
            )
            return self._fail(log, f"{type(exc).__name__}: {exc}")

    async def _handle(self, log: WebhookLog, event: WebhookEvent) -> DispatchResult:
        target = event.target_state
        if target is None:
            return self._fail(log, f"Unknown status: {event.exchange_status}")

        invoice = self._invoices.find_by_exchange_id(event.sef_id)
        if invoice is None:
            return self._fail(log, f"Invoice not found for sefId: {event.sef_id}")

        data: dict[str, Any] = {"webhookLogId": log.id, **event.audit_data()}
        transition = await self._state_machine.apply(
            invoice.document_id,
            target,
            event_type=event.event_type,
            source=SOURCE_WEBHOOK,
            source_ref=log.id,
            occurred_at=event.occurred_at or log.received_at,
            exchange_status=event.exchange_status or target.value,
            note=_event_note(event),
            data=data,
        )
        if transition.outcome == TransitionOutcome.NOT_FOUND:
            return self._fail(log, f"Invoice not found: {invoice.document_id}")

        # Conflito não é erro do evento: a anomalia já foi registrada
        self._mark(log, None)
        return DispatchResult(
            status=DispatchStatus.PROCESSED, webhook_log_id=log.id, transition=transition
        )

    def _fail(self, log: WebhookLog, error: str) -> DispatchResult:
        logger.warning(
            "webhook_processing_failed",
            extra={"webhook_log_id": log.id, "event_type": log.event_type, "error": error},
        )
        self._mark(log, error)
        return DispatchResult(status=DispatchStatus.FAILED, webhook_log_id=log.id, error=error)

    def _mark(self, log: WebhookLog, error: str | None) -> None:
        try:
            self._webhook_logs.mark_processed(log.id, error, self._clock())
        except Exception:
            # O log continua com processed=False e pode ser reprocessado
            logger.exception("webhook_log_mark_failed", extra={"webhook_log_id": log.id})
