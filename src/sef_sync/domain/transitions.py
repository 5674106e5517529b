"""Regra de transição da máquina de estados da fatura.

"Progressão monotônica vence":
- Alvo estritamente posterior ao atual → aplica
- Alvo igual ao atual → reaplicação idempotente (no-op)
- Qualquer outro caso (retrocesso, ou lateral entre terminais) → conflito

Validação pura: sem side effects, nunca lança exceção.
"""

from __future__ import annotations

from enum import StrEnum

from sef_sync.domain.invoice_state import STATE_RANK, InvoiceState


class TransitionDecision(StrEnum):
    APPLY = "APPLY"
    UNCHANGED = "UNCHANGED"
    CONFLICT = "CONFLICT"


def decide_transition(current: InvoiceState, target: InvoiceState) -> TransitionDecision:
    """Decide se a transição current → target deve ser aplicada."""
    if current == target:
        return TransitionDecision.UNCHANGED
    if STATE_RANK[target] > STATE_RANK[current]:
        return TransitionDecision.APPLY
    return TransitionDecision.CONFLICT


def describe_conflict(current: InvoiceState, target: InvoiceState) -> str:
    """Mensagem curta para log/anomalia."""
    return f"Backward or lateral transition {current} -> {target} refused"
