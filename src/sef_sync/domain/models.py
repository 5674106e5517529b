"""Modelos de domínio da sincronização com o SEF."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, field_validator

from sef_sync.domain.invoice_state import InvoiceState
from sef_sync.utils.clock import utc_now
from sef_sync.utils.ids import new_record_id


class DocumentType(StrEnum):
    """Tipos de documento aceitos pelo SEF."""

    INVOICE = "INVOICE"
    CREDIT_NOTE = "CREDIT_NOTE"
    DEBIT_NOTE = "DEBIT_NOTE"


class OutboundDocument(BaseModel):
    """Documento pronto para envio (payload já gerado por outro componente)."""

    document_id: str
    document_type: DocumentType
    payload: str
    company_pib: str | None = None

    @field_validator("document_id")
    @classmethod
    def _document_id_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("document_id não pode ser vazio")
        return value

    @field_validator("payload")
    @classmethod
    def _payload_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("payload não pode ser vazio")
        return value


class SubmissionState(StrEnum):
    """Estado da linhagem de envio de um documento."""

    QUEUED = "QUEUED"
    IN_FLIGHT = "IN_FLIGHT"
    DEFERRED = "DEFERRED"  # Janela de manutenção; reagendar
    SUBMITTED = "SUBMITTED"  # SEF aceitou e atribuiu sefId
    REJECTED = "REJECTED"  # 4xx permanente
    FAILED_PERMANENT = "FAILED_PERMANENT"  # Retries esgotados


TERMINAL_SUBMISSION_STATES = frozenset({
    SubmissionState.SUBMITTED,
    SubmissionState.REJECTED,
    SubmissionState.FAILED_PERMANENT,
})

RESTARTABLE_SUBMISSION_STATES = frozenset({
    SubmissionState.QUEUED,
    SubmissionState.DEFERRED,
    SubmissionState.REJECTED,
    SubmissionState.FAILED_PERMANENT,
})
"""Estados a partir dos quais um novo ciclo de envio pode começar."""


@dataclass(slots=True)
class ExchangeSubmission:
    """Linhagem de tentativas de envio de um documento local."""

    document_id: str
    document_type: DocumentType
    state: SubmissionState = SubmissionState.QUEUED
    exchange_id: str | None = None
    exchange_status: str | None = None
    attempt_count: int = 0
    last_attempt_at: datetime | None = None
    last_error: str | None = None
    next_attempt_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_SUBMISSION_STATES

    @property
    def in_flight(self) -> bool:
        return self.state == SubmissionState.IN_FLIGHT

    def to_dict(self) -> dict[str, Any]:
        return {
            "documentId": self.document_id,
            "documentType": self.document_type.value,
            "state": self.state.value,
            "exchangeId": self.exchange_id,
            "exchangeStatus": self.exchange_status,
            "attemptCount": self.attempt_count,
            "lastAttemptAt": _iso(self.last_attempt_at),
            "lastError": self.last_error,
            "nextAttemptAt": _iso(self.next_attempt_at),
        }


@dataclass(slots=True)
class WebhookLog:
    """Registro durável de uma notificação recebida (nunca apagado)."""

    exchange_id: str
    event_type: str
    payload: str
    signature: str
    id: str = field(default_factory=new_record_id)
    processed: bool = False
    error: str | None = None
    received_at: datetime = field(default_factory=utc_now)
    processed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sefId": self.exchange_id,
            "eventType": self.event_type,
            "processed": self.processed,
            "error": self.error,
            "receivedAt": _iso(self.received_at),
            "processedAt": _iso(self.processed_at),
        }


@dataclass(slots=True)
class InvoiceRecord:
    """Campos da fatura de negócio lidos/escritos por este núcleo."""

    document_id: str
    exchange_id: str | None = None
    state: InvoiceState = InvoiceState.DRAFT
    status_changed_at: datetime | None = None
    exchange_status: str | None = None
    note: str | None = None


@dataclass(slots=True, frozen=True)
class AuditEntry:
    """Entrada append-only por transição aceita."""

    document_id: str
    old_state: InvoiceState
    new_state: InvoiceState
    event_type: str
    source: str  # webhook | poll | submission
    source_ref: str | None
    occurred_at: datetime
    data: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_record_id)
    recorded_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class StatusAnomaly:
    """Tentativa de retrocesso registrada para revisão manual."""

    document_id: str
    current_state: InvoiceState
    attempted_state: InvoiceState
    event_type: str
    source: str
    source_ref: str | None
    occurred_at: datetime
    id: str = field(default_factory=new_record_id)
    detected_at: datetime = field(default_factory=utc_now)
    reviewed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "documentId": self.document_id,
            "currentState": self.current_state.value,
            "attemptedState": self.attempted_state.value,
            "eventType": self.event_type,
            "source": self.source,
            "sourceRef": self.source_ref,
            "occurredAt": _iso(self.occurred_at),
            "detectedAt": _iso(self.detected_at),
            "reviewed": self.reviewed,
        }


@dataclass(slots=True, frozen=True)
class CompanyCredentials:
    """Credencial do SEF por empresa (fornecida pelo colaborador Company)."""

    api_key: str
    environment: str = "demo"  # demo | production
    pib: str | None = None

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
