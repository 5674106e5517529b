"""Trilha de auditoria de transições e lista de anomalias (memória)."""

from __future__ import annotations

import threading

from sef_sync.domain.models import AuditEntry, StatusAnomaly
from sef_sync.domain.protocols.audit import AnomalyStore, AuditLogStore


class InMemoryAuditLogStore(AuditLogStore):
    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def list_for_document(self, document_id: str) -> list[AuditEntry]:
        with self._lock:
            return [e for e in self._entries if e.document_id == document_id]

    def __len__(self) -> int:
        return len(self._entries)


class InMemoryAnomalyStore(AnomalyStore):
    def __init__(self) -> None:
        self._data: dict[str, StatusAnomaly] = {}
        self._lock = threading.Lock()

    def record(self, anomaly: StatusAnomaly) -> None:
        with self._lock:
            self._data[anomaly.id] = anomaly

    def list(
        self, *, document_id: str | None = None, include_reviewed: bool = False
    ) -> list[StatusAnomaly]:
        with self._lock:
            items = [
                a
                for a in self._data.values()
                if (document_id is None or a.document_id == document_id)
                and (include_reviewed or not a.reviewed)
            ]
        items.sort(key=lambda a: a.detected_at)
        return items

    def mark_reviewed(self, anomaly_id: str) -> StatusAnomaly | None:
        with self._lock:
            anomaly = self._data.get(anomaly_id)
            if anomaly is not None:
                anomaly.reviewed = True
            return anomaly
