"""Fábrica da aplicação FastAPI."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import redis
from fastapi import FastAPI

from sef_sync.adapters.sef.client import create_exchange_client, credentials_from_settings
from sef_sync.api.errors import register_exception_handlers
from sef_sync.api.idempotency_middleware import IdempotencyMiddleware
from sef_sync.api.routes import router
from sef_sync.application.orchestrator import create_sync_orchestrator
from sef_sync.application.scheduler import ReconciliationScheduler
from sef_sync.application.state_machine import StatusStateMachine
from sef_sync.application.webhook_dispatcher import WebhookDispatcher
from sef_sync.application.webhook_security import WebhookVerifier
from sef_sync.config.settings import Settings, get_settings
from sef_sync.domain.protocols.audit import AnomalyStore, AuditLogStore
from sef_sync.domain.protocols.invoices import DocumentSource, InvoiceRepository
from sef_sync.domain.protocols.submissions import SubmissionStore
from sef_sync.domain.protocols.webhook_log import WebhookLogStore
from sef_sync.infra.audit_store import InMemoryAnomalyStore, InMemoryAuditLogStore
from sef_sync.infra.idempotency import create_idempotency_cache
from sef_sync.infra.invoice_repository import InMemoryDocumentSource, InMemoryInvoiceRepository
from sef_sync.infra.nonce_store import create_nonce_store
from sef_sync.infra.submission_store import InMemorySubmissionStore
from sef_sync.infra.webhook_log_store import InMemoryWebhookLogStore
from sef_sync.observability.logging import configure_logging, get_logger
from sef_sync.observability.middleware import CorrelationIdMiddleware

logger = get_logger(__name__)

# Cliente Redis síncrono chamado dentro de handlers async: cada operação
# (GET/SET de um valor pequeno) bloqueia o loop por no máximo este tempo.
REDIS_SOCKET_TIMEOUT_SECONDS = 0.5


def _create_redis_client(redis_url: str | None):
    """Cria cliente Redis se URL disponível."""
    if not redis_url:
        return None
    try:
        return redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
            socket_connect_timeout=REDIS_SOCKET_TIMEOUT_SECONDS,
        )
    except (redis.RedisError, ValueError) as e:
        logger.warning("redis_connection_failed", extra={"error": str(e)})
        return None


def _needs_redis(settings: Settings) -> bool:
    return "redis" in {settings.nonce_backend.lower(), settings.idempotency_backend.lower()}


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    scheduler: ReconciliationScheduler | None = app.state.reconcile_scheduler
    if scheduler is not None:
        scheduler.start()
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.shutdown()
        await app.state.orchestrator.client.close()


def create_app(
    settings: Settings | None = None,
    *,
    invoices: InvoiceRepository | None = None,
    documents: DocumentSource | None = None,
    submissions: SubmissionStore | None = None,
    webhook_logs: WebhookLogStore | None = None,
    audit_log: AuditLogStore | None = None,
    anomalies: AnomalyStore | None = None,
    exchange_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Cria a aplicação FastAPI.

    `invoices` e `documents` são os colaboradores do sistema de negócio.
    `submissions`, `webhook_logs`, `audit_log` e `anomalies` são os
    registros duráveis do próprio core; em produção devem ser stores
    persistentes. Sem eles são usadas implementações em memória (dev/testes).
    """
    settings = settings or get_settings()
    configure_logging(
        settings.log_level,
        settings.service_name,
        environment=settings.environment,
        json_format=settings.log_json,
    )

    validation_errors = settings.validate_all()
    if validation_errors:
        error_msg = "; ".join(validation_errors)
        raise ValueError(f"Configuração inválida: {error_msg}")

    app = FastAPI(title=settings.service_name, version=settings.version, lifespan=_lifespan)
    app.add_middleware(IdempotencyMiddleware, exempt_paths=settings.idempotency_exempt_paths)
    app.add_middleware(CorrelationIdMiddleware)
    register_exception_handlers(app)
    app.include_router(router)

    app.state.settings = settings

    redis_client = None
    if _needs_redis(settings):
        redis_client = _create_redis_client(settings.redis_url)
        if redis_client is None and settings.nonce_backend.lower() == "redis":
            raise ValueError(
                "NONCE_BACKEND=redis mas REDIS_URL não configurado ou conexão falhou"
            )

    app.state.idempotency_cache = create_idempotency_cache(settings, redis_client=redis_client)
    nonce_store = create_nonce_store(settings, redis_client=redis_client)

    invoice_repository = invoices if invoices is not None else InMemoryInvoiceRepository()
    document_source = documents if documents is not None else InMemoryDocumentSource()
    submission_store = submissions if submissions is not None else InMemorySubmissionStore()
    anomaly_store = anomalies if anomalies is not None else InMemoryAnomalyStore()
    audit_store = audit_log if audit_log is not None else InMemoryAuditLogStore()
    webhook_log_store = webhook_logs if webhook_logs is not None else InMemoryWebhookLogStore()

    state_machine = StatusStateMachine(invoice_repository, audit_store, anomaly_store)
    app.state.invoice_repository = invoice_repository
    app.state.submission_store = submission_store
    app.state.anomaly_store = anomaly_store
    app.state.audit_log = audit_store
    app.state.webhook_log_store = webhook_log_store
    app.state.state_machine = state_machine

    app.state.webhook_verifier = WebhookVerifier(
        settings.sef_webhook_secret,
        nonce_store,
        tolerance_seconds=settings.webhook_timestamp_tolerance_seconds,
        require_timestamp=settings.webhook_require_timestamp,
    )
    app.state.webhook_dispatcher = WebhookDispatcher(
        webhook_log_store, invoice_repository, state_machine
    )

    client = create_exchange_client(
        credentials_from_settings(settings),
        settings,
        submission_store,
        transport=exchange_transport,
    )
    orchestrator = create_sync_orchestrator(
        settings,
        client=client,
        submissions=submission_store,
        invoices=invoice_repository,
        state_machine=state_machine,
        documents=document_source,
    )
    app.state.orchestrator = orchestrator
    app.state.reconcile_scheduler = (
        ReconciliationScheduler(orchestrator, settings.reconcile_interval_seconds)
        if settings.reconcile_enabled
        else None
    )

    if not settings.sef_webhook_secret:
        logger.warning("webhook_secret_missing_relaxed_mode")

    return app


app = create_app()
