"""Store de linhagens de envio ao SEF."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from datetime import datetime

from sef_sync.domain.models import (
    RESTARTABLE_SUBMISSION_STATES,
    DocumentType,
    ExchangeSubmission,
    SubmissionState,
)
from sef_sync.domain.protocols.submissions import SubmissionStore


class InMemorySubmissionStore(SubmissionStore):
    """Linhagens em memória; `begin` atômico via threading.Lock.

    Apenas dev/testes ou instância única.
    """

    def __init__(self) -> None:
        self._data: dict[str, ExchangeSubmission] = {}
        self._lock = threading.Lock()

    def get(self, document_id: str) -> ExchangeSubmission | None:
        with self._lock:
            return self._data.get(document_id)

    def begin(
        self, document_id: str, document_type: DocumentType, now: datetime
    ) -> tuple[ExchangeSubmission, bool]:
        with self._lock:
            existing = self._data.get(document_id)
            if existing is not None and existing.state not in RESTARTABLE_SUBMISSION_STATES:
                return existing, False

            if existing is None:
                submission = ExchangeSubmission(
                    document_id=document_id,
                    document_type=document_type,
                    state=SubmissionState.IN_FLIGHT,
                    created_at=now,
                )
                self._data[document_id] = submission
                return submission, True

            existing.state = SubmissionState.IN_FLIGHT
            existing.document_type = document_type
            existing.next_attempt_at = None
            return existing, True

    def save(self, submission: ExchangeSubmission) -> None:
        with self._lock:
            self._data[submission.document_id] = submission

    def list_by_state(
        self, states: Iterable[SubmissionState], limit: int | None = None
    ) -> list[ExchangeSubmission]:
        wanted = set(states)
        with self._lock:
            matches = [s for s in self._data.values() if s.state in wanted]
        matches.sort(key=lambda s: s.created_at)
        return matches if limit is None else matches[:limit]

    def __len__(self) -> int:
        return len(self._data)
