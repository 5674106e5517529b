"""Máquina de estados da fatura (único escritor do estado de ciclo de vida).

Responsabilidades:
- Serializar transições por documento (lock assíncrono por chave)
- Aplicar a regra de progressão monotônica (domain.transitions)
- Gravar exatamente uma entrada de auditoria por transição aplicada
- Registrar anomalia (e warning) em tentativas de retrocesso
- Usar o horário do evento como timestamp de negócio
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any

from sef_sync.domain.invoice_state import InvoiceState
from sef_sync.domain.models import AuditEntry, InvoiceRecord, StatusAnomaly
from sef_sync.domain.protocols.audit import AnomalyStore, AuditLogStore
from sef_sync.domain.protocols.invoices import InvoiceRepository
from sef_sync.domain.transitions import TransitionDecision, decide_transition, describe_conflict
from sef_sync.observability.logging import get_logger
from sef_sync.utils.clock import Clock, utc_now
from sef_sync.utils.locks import KeyedAsyncLock

logger: logging.Logger = get_logger(__name__)

SOURCE_WEBHOOK = "webhook"
SOURCE_POLL = "poll"
SOURCE_SUBMISSION = "submission"


class TransitionOutcome(StrEnum):
    APPLIED = "APPLIED"
    UNCHANGED = "UNCHANGED"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"


@dataclass(slots=True)
class TransitionResult:
    outcome: TransitionOutcome
    previous: InvoiceState | None = None
    current: InvoiceState | None = None
    audit_entry: AuditEntry | None = None
    anomaly: StatusAnomaly | None = None

    @property
    def changed(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED


class StatusStateMachine:
    """Aplica transições de estado vindas de webhook, polling ou envio."""

    def __init__(
        self,
        invoices: InvoiceRepository,
        audit_log: AuditLogStore,
        anomalies: AnomalyStore,
        *,
        clock: Clock | None = None,
    ) -> None:
        self._invoices = invoices
        self._audit_log = audit_log
        self._anomalies = anomalies
        self._clock = clock or utc_now
        self._locks = KeyedAsyncLock()

    async def apply(
        self,
        document_id: str,
        target: InvoiceState,
        *,
        event_type: str,
        source: str,
        source_ref: str | None = None,
        occurred_at: datetime | None = None,
        exchange_id: str | None = None,
        exchange_status: str | None = None,
        note: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> TransitionResult:
        """Tenta mover a fatura para `target`.

        Retrocessos não levantam exceção: retornam CONFLICT e ficam na lista
        de anomalias para revisão manual.
        """
        async with self._locks.hold(document_id):
            record = self._invoices.get(document_id)
            if record is None:
                logger.warning(
                    "invoice_not_found_for_transition",
                    extra={"document_id": document_id, "event_type": event_type},
                )
                return TransitionResult(outcome=TransitionOutcome.NOT_FOUND)

            current = record.state
            decision = decide_transition(current, target)
            business_time = occurred_at or self._clock()

            if decision == TransitionDecision.UNCHANGED:
                logger.debug(
                    "invoice_transition_unchanged",
                    extra={"document_id": document_id, "state": current.value, "source": source},
                )
                if exchange_id and record.exchange_id is None:
                    record.exchange_id = exchange_id
                    self._invoices.save(record)
                return TransitionResult(
                    outcome=TransitionOutcome.UNCHANGED, previous=current, current=current
                )

            if decision == TransitionDecision.CONFLICT:
                anomaly = StatusAnomaly(
                    document_id=document_id,
                    current_state=current,
                    attempted_state=target,
                    event_type=event_type,
                    source=source,
                    source_ref=source_ref,
                    occurred_at=business_time,
                    detected_at=self._clock(),
                )
                self._anomalies.record(anomaly)
                logger.warning(
                    "invoice_transition_conflict",
                    extra={
                        "document_id": document_id,
                        "current_state": current.value,
                        "attempted_state": target.value,
                        "event_type": event_type,
                        "source": source,
                        "anomaly_id": anomaly.id,
                        "detail": describe_conflict(current, target),
                    },
                )
                return TransitionResult(
                    outcome=TransitionOutcome.CONFLICT,
                    previous=current,
                    current=current,
                    anomaly=anomaly,
                )

            self._apply_to_record(
                record,
                target,
                business_time,
                exchange_id=exchange_id,
                exchange_status=exchange_status,
                note=note,
            )
            entry = AuditEntry(
                document_id=document_id,
                old_state=current,
                new_state=target,
                event_type=event_type,
                source=source,
                source_ref=source_ref,
                occurred_at=business_time,
                data=dict(data or {}),
                recorded_at=self._clock(),
            )
            self._audit_log.append(entry)

            logger.info(
                "invoice_transition_applied",
                extra={
                    "document_id": document_id,
                    "from_state": current.value,
                    "to_state": target.value,
                    "event_type": event_type,
                    "source": source,
                },
            )
            return TransitionResult(
                outcome=TransitionOutcome.APPLIED,
                previous=current,
                current=target,
                audit_entry=entry,
            )

    def _apply_to_record(
        self,
        record: InvoiceRecord,
        target: InvoiceState,
        business_time: datetime,
        *,
        exchange_id: str | None,
        exchange_status: str | None,
        note: str | None,
    ) -> None:
        record.state = target
        record.status_changed_at = business_time
        if exchange_id:
            record.exchange_id = exchange_id
        if exchange_status:
            record.exchange_status = exchange_status
        if note:
            record.note = note
        self._invoices.save(record)
