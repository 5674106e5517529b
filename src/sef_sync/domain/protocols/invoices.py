"""Contratos dos colaboradores de negócio (fatura e documento).

A persistência das faturas pertence ao sistema de negócio; este núcleo só
lê/escreve os campos de sincronização (InvoiceRecord).
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from sef_sync.domain.models import InvoiceRecord, OutboundDocument


class InvoiceRepository(ABC):
    """Acesso aos campos de sincronização da fatura."""

    @abstractmethod
    def get(self, document_id: str) -> InvoiceRecord | None:
        """Retorna a fatura pelo id local (None se não existir)."""

    @abstractmethod
    def find_by_exchange_id(self, exchange_id: str) -> InvoiceRecord | None:
        """Localiza a fatura pelo sefId atribuído pelo SEF."""

    @abstractmethod
    def save(self, record: InvoiceRecord) -> None:
        """Persiste estado, sefId e timestamps da fatura."""


class DocumentSource(ABC):
    """Fornece o payload pronto para reenvio (gerado fora deste núcleo)."""

    @abstractmethod
    def get_document(self, document_id: str) -> OutboundDocument | None:
        ...
