"""Implementações em memória dos colaboradores de negócio.

Em produção a fatura e o payload vêm do sistema de negócio; estas classes
servem para desenvolvimento local e testes.
"""

from __future__ import annotations

import threading

from sef_sync.domain.models import InvoiceRecord, OutboundDocument
from sef_sync.domain.protocols.invoices import DocumentSource, InvoiceRepository


class InMemoryInvoiceRepository(InvoiceRepository):
    def __init__(self, records: list[InvoiceRecord] | None = None) -> None:
        self._data: dict[str, InvoiceRecord] = {}
        self._lock = threading.Lock()
        for record in records or []:
            self._data[record.document_id] = record

    def get(self, document_id: str) -> InvoiceRecord | None:
        with self._lock:
            return self._data.get(document_id)

    def find_by_exchange_id(self, exchange_id: str) -> InvoiceRecord | None:
        with self._lock:
            for record in self._data.values():
                if record.exchange_id == exchange_id:
                    return record
        return None

    def save(self, record: InvoiceRecord) -> None:
        with self._lock:
            self._data[record.document_id] = record


class InMemoryDocumentSource(DocumentSource):
    def __init__(self) -> None:
        self._documents: dict[str, OutboundDocument] = {}

    def add(self, document: OutboundDocument) -> None:
        self._documents[document.document_id] = document

    def get_document(self, document_id: str) -> OutboundDocument | None:
        return self._documents.get(document_id)
