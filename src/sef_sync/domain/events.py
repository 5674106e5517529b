"""Eventos de webhook do SEF como união discriminada por `eventType`.

Cada tipo carrega seus próprios campos; formatos desconhecidos são
rejeitados na borda, antes de qualquer lógica de negócio.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from sef_sync.domain.invoice_state import InvoiceState, map_exchange_status
from sef_sync.utils.clock import parse_timestamp

KNOWN_EVENT_TYPES = frozenset({
    "STATUS_CHANGE",
    "DELIVERY_CONFIRMATION",
    "ACCEPTANCE",
    "REJECTION",
    "CANCELLATION",
})


class UnknownEventTypeError(Exception):
    """eventType fora do conjunto conhecido (no-op compatível com o futuro)."""

    def __init__(self, event_type: str | None) -> None:
        super().__init__(f"Unknown event type: {event_type}")
        self.event_type = event_type


class InvalidEventError(Exception):
    """Payload malformado (JSON inválido ou campos obrigatórios ausentes)."""


def _coerce_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError(f"timestamp inválido: {value!r}")
    return parsed


class _BaseEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sef_id: str = Field(alias="sefId", min_length=1)
    timestamp: datetime | None = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, value: Any) -> datetime | None:
        return _coerce_datetime(value)

    @property
    def occurred_at(self) -> datetime | None:
        """Horário reportado pelo SEF para o evento (não o de recebimento)."""
        return self.timestamp

    @property
    def exchange_status(self) -> str | None:
        return None

    def audit_data(self) -> dict[str, Any]:
        return {"sefId": self.sef_id}


class StatusChangeEvent(_BaseEvent):
    event_type: Literal["STATUS_CHANGE"] = Field(alias="eventType")
    status: str = Field(min_length=1)
    status_date: datetime | None = Field(default=None, alias="statusDate")

    @field_validator("status_date", mode="before")
    @classmethod
    def _parse_status_date(cls, value: Any) -> datetime | None:
        return _coerce_datetime(value)

    @property
    def target_state(self) -> InvoiceState | None:
        return map_exchange_status(self.status)

    @property
    def occurred_at(self) -> datetime | None:
        return self.status_date or self.timestamp

    @property
    def exchange_status(self) -> str | None:
        return self.status

    def audit_data(self) -> dict[str, Any]:
        return {"sefId": self.sef_id, "status": self.status}


class DeliveryConfirmationEvent(_BaseEvent):
    event_type: Literal["DELIVERY_CONFIRMATION"] = Field(alias="eventType")
    delivery_date: datetime | None = Field(default=None, alias="deliveryDate")
    buyer_info: dict[str, Any] | None = Field(default=None, alias="buyerInfo")

    @field_validator("delivery_date", mode="before")
    @classmethod
    def _parse_delivery_date(cls, value: Any) -> datetime | None:
        return _coerce_datetime(value)

    @property
    def target_state(self) -> InvoiceState | None:
        return InvoiceState.DELIVERED

    @property
    def occurred_at(self) -> datetime | None:
        return self.delivery_date or self.timestamp

    def audit_data(self) -> dict[str, Any]:
        data: dict[str, Any] = {"sefId": self.sef_id}
        if self.buyer_info:
            data["buyerInfo"] = self.buyer_info
        return data


class AcceptanceEvent(_BaseEvent):
    event_type: Literal["ACCEPTANCE"] = Field(alias="eventType")
    acceptance_date: datetime | None = Field(default=None, alias="acceptanceDate")

    @field_validator("acceptance_date", mode="before")
    @classmethod
    def _parse_acceptance_date(cls, value: Any) -> datetime | None:
        return _coerce_datetime(value)

    @property
    def target_state(self) -> InvoiceState | None:
        return InvoiceState.ACCEPTED

    @property
    def occurred_at(self) -> datetime | None:
        return self.acceptance_date or self.timestamp


class RejectionEvent(_BaseEvent):
    event_type: Literal["REJECTION"] = Field(alias="eventType")
    rejection_date: datetime | None = Field(default=None, alias="rejectionDate")
    rejection_reason: str | None = Field(default=None, alias="rejectionReason")

    @field_validator("rejection_date", mode="before")
    @classmethod
    def _parse_rejection_date(cls, value: Any) -> datetime | None:
        return _coerce_datetime(value)

    @property
    def target_state(self) -> InvoiceState | None:
        return InvoiceState.REJECTED

    @property
    def occurred_at(self) -> datetime | None:
        return self.rejection_date or self.timestamp

    def audit_data(self) -> dict[str, Any]:
        return {"sefId": self.sef_id, "reason": self.rejection_reason}


class CancellationEvent(_BaseEvent):
    event_type: Literal["CANCELLATION"] = Field(alias="eventType")
    cancellation_date: datetime | None = Field(default=None, alias="cancellationDate")
    cancellation_reason: str | None = Field(default=None, alias="cancellationReason")

    @field_validator("cancellation_date", mode="before")
    @classmethod
    def _parse_cancellation_date(cls, value: Any) -> datetime | None:
        return _coerce_datetime(value)

    @property
    def target_state(self) -> InvoiceState | None:
        return InvoiceState.CANCELLED

    @property
    def occurred_at(self) -> datetime | None:
        return self.cancellation_date or self.timestamp

    def audit_data(self) -> dict[str, Any]:
        return {"sefId": self.sef_id, "reason": self.cancellation_reason}


WebhookEvent = Annotated[
    StatusChangeEvent
    | DeliveryConfirmationEvent
    | AcceptanceEvent
    | RejectionEvent
    | CancellationEvent,
    Field(discriminator="event_type"),
]

_EVENT_ADAPTER: TypeAdapter[WebhookEvent] = TypeAdapter(WebhookEvent)


def decode_payload(raw_body: bytes | str) -> dict[str, Any]:
    """Decodifica o corpo bruto em dict; InvalidEventError se não for objeto JSON."""
    try:
        payload = json.loads(raw_body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidEventError("invalid_json") from exc
    if not isinstance(payload, dict):
        raise InvalidEventError("payload must be a JSON object")
    return payload


def parse_webhook_event(payload: dict[str, Any]) -> WebhookEvent:
    """Converte payload em evento tipado.

    Raises:
        UnknownEventTypeError: eventType ausente do conjunto conhecido
        InvalidEventError: campos obrigatórios ausentes ou inválidos
    """
    event_type = payload.get("eventType")
    if event_type not in KNOWN_EVENT_TYPES:
        raise UnknownEventTypeError(event_type if isinstance(event_type, str) else None)

    try:
        return _EVENT_ADAPTER.validate_python(payload)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise InvalidEventError(f"Invalid {event_type} payload: {', '.join(fields)}") from exc
