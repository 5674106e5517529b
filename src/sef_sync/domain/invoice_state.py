"""Estados canônicos do ciclo de vida da fatura.

Ordem canônica:
    DRAFT < SENT < DELIVERED < {ACCEPTED, REJECTED, CANCELLED, EXPIRED}

- DRAFT é o único estado inicial
- ACCEPTED, REJECTED, CANCELLED e EXPIRED são terminais
- Transições só avançam (progressão monotônica)
"""

from __future__ import annotations

from enum import StrEnum


class InvoiceState(StrEnum):
    """7 estados canônicos da fatura local."""

    # === Entrada ===
    DRAFT = "DRAFT"
    """Documento criado localmente, ainda não enviado ao SEF."""

    # === Intermediários ===
    SENT = "SENT"
    """Aceito para processamento pelo SEF (possui sefId)."""

    DELIVERED = "DELIVERED"
    """Entregue ao comprador."""

    # === Terminais ===
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


TERMINAL_STATES = frozenset({
    InvoiceState.ACCEPTED,
    InvoiceState.REJECTED,
    InvoiceState.CANCELLED,
    InvoiceState.EXPIRED,
})
"""Estados sem transição de saída (exceto override administrativo)."""

STATE_RANK: dict[InvoiceState, int] = {
    InvoiceState.DRAFT: 0,
    InvoiceState.SENT: 1,
    InvoiceState.DELIVERED: 2,
    InvoiceState.ACCEPTED: 3,
    InvoiceState.REJECTED: 3,
    InvoiceState.CANCELLED: 3,
    InvoiceState.EXPIRED: 3,
}
"""Posição na ordem canônica; terminais compartilham o mesmo rank."""


def is_terminal(state: InvoiceState) -> bool:
    return state in TERMINAL_STATES


# Vocabulário de status recebido do SEF (webhook e API pública)
_EXCHANGE_STATUS_MAP: dict[str, InvoiceState] = {
    # webhook
    "PENDING": InvoiceState.SENT,
    "SENT": InvoiceState.SENT,
    "DELIVERED": InvoiceState.DELIVERED,
    "ACCEPTED": InvoiceState.ACCEPTED,
    "REJECTED": InvoiceState.REJECTED,
    "CANCELLED": InvoiceState.CANCELLED,
    "EXPIRED": InvoiceState.EXPIRED,
    # API SEF (SalesInvoiceStatus)
    "NEW": InvoiceState.SENT,
    "SENDING": InvoiceState.SENT,
    "SEEN": InvoiceState.DELIVERED,
    "APPROVED": InvoiceState.ACCEPTED,
    "STORNO": InvoiceState.CANCELLED,
    "MISTAKE": InvoiceState.REJECTED,
}


def map_exchange_status(raw_status: str | None) -> InvoiceState | None:
    """Mapeia status reportado pelo SEF para o estado interno.

    Aceita o vocabulário do webhook (PENDING, SENT, ...) e o da API
    (New, Sending, Sent, Seen, Approved, Rejected, Cancelled, Storno, Mistake),
    sem diferenciar maiúsculas. Retorna None para status desconhecido ou
    que não representa avanço (ex.: Draft no SEF).
    """
    if not raw_status:
        return None
    return _EXCHANGE_STATUS_MAP.get(raw_status.strip().upper())
