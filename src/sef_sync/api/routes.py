"""Rotas HTTP: webhook do SEF e API interna de sincronização."""

from __future__ import annotations

import math
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from sef_sync.api.dependencies import (
    get_anomaly_store,
    get_invoice_repository,
    get_orchestrator,
    get_settings,
    get_submission_store,
    get_webhook_dispatcher,
    get_webhook_verifier,
    require_internal_token,
)
from sef_sync.api.errors import ApiError
from sef_sync.application.orchestrator import SyncOrchestrator
from sef_sync.application.webhook_dispatcher import (
    WebhookDispatcher,
    WebhookLogNotFoundError,
    WebhookRetryNotAllowedError,
)
from sef_sync.application.webhook_security import SIGNATURE_HEADER, WebhookVerifier
from sef_sync.config.settings import Settings
from sef_sync.domain.models import DocumentType, OutboundDocument
from sef_sync.domain.protocols.audit import AnomalyStore
from sef_sync.domain.protocols.invoices import InvoiceRepository
from sef_sync.domain.protocols.submissions import SubmissionStore
from sef_sync.domain.protocols.webhook_log import WebhookLogUnavailableError
from sef_sync.infra.nonce_store import NonceStoreError
from sef_sync.observability.logging import get_logger
from sef_sync.observability.middleware import get_correlation_id

logger = get_logger(__name__)

router = APIRouter()
internal = APIRouter(dependencies=[Depends(require_internal_token)])


class SubmitDocumentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(alias="documentId")
    document_type: DocumentType = Field(alias="documentType")
    payload: str
    company_pib: str | None = Field(default=None, alias="companyPib")


@router.get("/health")
def health(settings: Settings = Depends(get_settings)) -> dict[str, str]:
    """Healthcheck simples."""
    return {"status": "ok", "service": settings.service_name, "version": settings.version}


@router.post("/webhooks/sef")
async def sef_webhook(
    request: Request,
    verifier: WebhookVerifier = Depends(get_webhook_verifier),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> dict[str, Any]:
    """Recebe notificação do SEF: verifica, registra e processa.

    O remetente só vê 200/401/500, nunca detalhes de negócio.
    """
    raw_body = await request.body()

    try:
        result = verifier.verify(raw_body, request.headers)
    except NonceStoreError as exc:
        raise ApiError(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "nonce_store_unavailable", "Internal error"
        ) from exc

    if not result.valid:
        raise ApiError(
            status.HTTP_401_UNAUTHORIZED, result.reason or "unauthorized", "Unauthorized"
        )

    try:
        await dispatcher.dispatch(raw_body, request.headers.get(SIGNATURE_HEADER))
    except WebhookLogUnavailableError as exc:
        verifier.release(result)
        raise ApiError(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "webhook_log_unavailable", "Internal error"
        ) from exc

    return {"success": True}


@internal.get("/webhooks/sef/logs")
def list_webhook_logs(
    sef_id: str | None = Query(None, alias="sefId"),
    event_type: str | None = Query(None, alias="eventType"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> dict[str, Any]:
    logs, total = dispatcher.list_logs(
        exchange_id=sef_id, event_type=event_type, page=page, limit=limit
    )
    return {
        "success": True,
        "data": [log.to_dict() for log in logs],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit) if total else 0,
        },
    }


@internal.post("/webhooks/sef/logs/{log_id}/retry")
async def retry_webhook(
    log_id: str,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> dict[str, Any]:
    """Reprocessa um webhook que falhou."""
    try:
        result = await dispatcher.retry(log_id)
    except WebhookLogNotFoundError as exc:
        raise ApiError(404, "webhook_log_not_found", "Webhook log not found") from exc
    except WebhookRetryNotAllowedError as exc:
        raise ApiError(
            409, "webhook_already_processed", "Webhook already processed successfully"
        ) from exc

    return {
        "success": True,
        "data": {
            "webhookLogId": result.webhook_log_id,
            "status": result.status.value,
            "error": result.error,
        },
    }


@internal.post("/sef/documents", status_code=status.HTTP_202_ACCEPTED)
async def submit_document(
    body: SubmitDocumentRequest,
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Envia documento ao SEF (idempotente via Idempotency-Key).

    Erros do SEF viram 503 (manutenção), 422 (rejeição) ou 502 (retries
    esgotados) pelo handler de ExchangeError.
    """
    try:
        document = OutboundDocument(
            document_id=body.document_id,
            document_type=body.document_type,
            payload=body.payload,
            company_pib=body.company_pib,
        )
    except ValidationError as exc:
        raise ApiError(
            422, "invalid_document", "Document id and payload must not be empty"
        ) from exc

    outcome = await orchestrator.submit_document(document)
    logger.info(
        "document_submission_handled",
        extra={
            "document_id": document.document_id,
            "existing": outcome.existing,
            "correlation_id": get_correlation_id(),
        },
    )
    return {"success": True, "existing": outcome.existing, "data": outcome.submission.to_dict()}


@internal.get("/sef/submissions/{document_id}")
def get_submission(
    document_id: str,
    submissions: SubmissionStore = Depends(get_submission_store),
    invoices: InvoiceRepository = Depends(get_invoice_repository),
) -> dict[str, Any]:
    submission = submissions.get(document_id)
    if submission is None:
        raise ApiError(404, "submission_not_found", "Submission not found")

    data = submission.to_dict()
    invoice = invoices.get(document_id)
    data["invoiceState"] = invoice.state.value if invoice else None
    return {"success": True, "data": data}


@internal.get("/sef/anomalies")
def list_anomalies(
    document_id: str | None = Query(None, alias="documentId"),
    include_reviewed: bool = Query(False, alias="includeReviewed"),
    anomalies: AnomalyStore = Depends(get_anomaly_store),
) -> dict[str, Any]:
    items = anomalies.list(document_id=document_id, include_reviewed=include_reviewed)
    return {"success": True, "data": [a.to_dict() for a in items]}


@internal.post("/sef/anomalies/{anomaly_id}/review")
def review_anomaly(
    anomaly_id: str,
    anomalies: AnomalyStore = Depends(get_anomaly_store),
) -> dict[str, Any]:
    anomaly = anomalies.mark_reviewed(anomaly_id)
    if anomaly is None:
        raise ApiError(404, "anomaly_not_found", "Anomaly not found")
    return {"success": True, "data": anomaly.to_dict()}


@internal.post("/sef/reconcile")
async def reconcile(
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Dispara uma rodada de reconciliação manualmente."""
    report = await orchestrator.reconcile_once()
    return {"success": True, "data": report.to_dict()}


router.include_router(internal)
