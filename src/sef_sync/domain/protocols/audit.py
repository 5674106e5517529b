"""Contratos da trilha de auditoria e da lista de anomalias."""

from __future__ import annotations

from abc import ABC, abstractmethod

from sef_sync.domain.models import AuditEntry, StatusAnomaly


class AuditLogStore(ABC):
    """Trilha append-only: uma entrada por transição aceita."""

    @abstractmethod
    def append(self, entry: AuditEntry) -> None:
        ...

    @abstractmethod
    def list_for_document(self, document_id: str) -> list[AuditEntry]:
        ...


class AnomalyStore(ABC):
    """Tentativas de retrocesso de estado, consultáveis para revisão manual."""

    @abstractmethod
    def record(self, anomaly: StatusAnomaly) -> None:
        ...

    @abstractmethod
    def list(
        self, *, document_id: str | None = None, include_reviewed: bool = False
    ) -> list[StatusAnomaly]:
        ...

    @abstractmethod
    def mark_reviewed(self, anomaly_id: str) -> StatusAnomaly | None:
        """Marca como revisada; None se o id não existir."""
