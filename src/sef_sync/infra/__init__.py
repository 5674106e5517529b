"""Camada de infraestrutura: stores e caches.

Exporta as implementações e factories principais:

- Nonce: InMemoryNonceStore, RedisNonceStore, create_nonce_store
- Idempotência: IdempotencyCache, create_idempotency_cache
- Stores em memória: submissões, webhook log, auditoria, anomalias

Conforme regras do projeto:
- Infraestrutura não decide regra de negócio
- Logs estruturados sem segredos
"""

from sef_sync.infra.audit_store import InMemoryAnomalyStore, InMemoryAuditLogStore
from sef_sync.infra.bounded_cache import BoundedTTLCache
from sef_sync.infra.idempotency import (
    IdempotencyCache,
    IdempotencyRecord,
    build_idempotency_key,
    create_idempotency_cache,
    is_valid_idempotency_token,
)
from sef_sync.infra.invoice_repository import InMemoryDocumentSource, InMemoryInvoiceRepository
from sef_sync.infra.nonce_store import (
    InMemoryNonceStore,
    NonceStore,
    NonceStoreError,
    RedisNonceStore,
    create_nonce_store,
)
from sef_sync.infra.submission_store import InMemorySubmissionStore
from sef_sync.infra.webhook_log_store import InMemoryWebhookLogStore

__all__ = [
    # Cache primitivo
    "BoundedTTLCache",
    # Nonce
    "NonceStore",
    "NonceStoreError",
    "InMemoryNonceStore",
    "RedisNonceStore",
    "create_nonce_store",
    # Idempotência
    "IdempotencyCache",
    "IdempotencyRecord",
    "build_idempotency_key",
    "is_valid_idempotency_token",
    "create_idempotency_cache",
    # Stores em memória
    "InMemorySubmissionStore",
    "InMemoryWebhookLogStore",
    "InMemoryAuditLogStore",
    "InMemoryAnomalyStore",
    "InMemoryInvoiceRepository",
    "InMemoryDocumentSource",
]
