"""Dependências injetadas nas rotas."""

from __future__ import annotations

import hmac

from fastapi import Request

from sef_sync.api.errors import ApiError
from sef_sync.application.orchestrator import SyncOrchestrator
from sef_sync.application.webhook_dispatcher import WebhookDispatcher
from sef_sync.application.webhook_security import WebhookVerifier
from sef_sync.config.settings import Settings
from sef_sync.domain.protocols.audit import AnomalyStore
from sef_sync.domain.protocols.invoices import InvoiceRepository
from sef_sync.domain.protocols.submissions import SubmissionStore
from sef_sync.infra.idempotency import IdempotencyCache


def get_settings(request: Request) -> Settings:
    """Retorna settings da aplicação."""

    return request.app.state.settings


def get_webhook_verifier(request: Request) -> WebhookVerifier:
    return request.app.state.webhook_verifier


def get_webhook_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.webhook_dispatcher


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """Retorna o orquestrador de sincronização."""

    return request.app.state.orchestrator


def get_submission_store(request: Request) -> SubmissionStore:
    return request.app.state.submission_store


def get_invoice_repository(request: Request) -> InvoiceRepository:
    return request.app.state.invoice_repository


def get_anomaly_store(request: Request) -> AnomalyStore:
    return request.app.state.anomaly_store


def get_idempotency_cache(request: Request) -> IdempotencyCache:
    return request.app.state.idempotency_cache


def require_internal_token(request: Request) -> None:
    """Valida token interno das rotas administrativas."""
    settings = get_settings(request)
    expected = settings.internal_task_token
    provided = request.headers.get(settings.internal_token_header)

    if expected and provided and hmac.compare_digest(provided.encode(), expected.encode()):
        return

    raise ApiError(401, "unauthorized_internal_call", "Unauthorized")
