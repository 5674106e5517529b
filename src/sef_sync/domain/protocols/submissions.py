"""Contrato do store de linhagens de envio (ExchangeSubmission)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime

from sef_sync.domain.models import DocumentType, ExchangeSubmission, SubmissionState


class SubmissionStore(ABC):
    """Persistência das linhagens de envio.

    `begin` é a única operação que precisa ser atômica: garante no máximo
    uma tentativa IN_FLIGHT por document_id.
    """

    @abstractmethod
    def get(self, document_id: str) -> ExchangeSubmission | None:
        ...

    @abstractmethod
    def begin(
        self, document_id: str, document_type: DocumentType, now: datetime
    ) -> tuple[ExchangeSubmission, bool]:
        """Inicia um ciclo de envio de forma atômica.

        Returns:
            (linhagem, started). started=False quando já existe envio
            IN_FLIGHT ou SUBMITTED; a linhagem existente é devolvida sem
            alteração.
        """

    @abstractmethod
    def save(self, submission: ExchangeSubmission) -> None:
        ...

    @abstractmethod
    def list_by_state(
        self, states: Iterable[SubmissionState], limit: int | None = None
    ) -> list[ExchangeSubmission]:
        """Lista linhagens nos estados dados, mais antigas primeiro (limit=None: todas)."""
