"""Re-exports dos contratos de persistência usados por Application."""

from __future__ import annotations

from sef_sync.domain.protocols.audit import AnomalyStore, AuditLogStore
from sef_sync.domain.protocols.invoices import DocumentSource, InvoiceRepository
from sef_sync.domain.protocols.submissions import SubmissionStore
from sef_sync.domain.protocols.webhook_log import WebhookLogStore, WebhookLogUnavailableError

__all__ = [
    "AnomalyStore",
    "AuditLogStore",
    "DocumentSource",
    "InvoiceRepository",
    "SubmissionStore",
    "WebhookLogStore",
    "WebhookLogUnavailableError",
]
