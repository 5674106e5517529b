"""Testes de integração da API interna de envio/reconciliação."""

from __future__ import annotations

from collections.abc import Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from sef_sync.api.app import create_app
from sef_sync.config.settings import Settings
from sef_sync.domain.invoice_state import InvoiceState
from sef_sync.domain.models import InvoiceRecord
from sef_sync.infra.invoice_repository import InMemoryInvoiceRepository

TOKEN = "routes-internal-token"
HEADERS = {"X-Internal-Token": TOKEN}
DOCUMENT = {"documentId": "INV-1", "documentType": "INVOICE", "payload": "<Invoice/>"}


class FakeExchange:
    """Transport httpx que responde com a próxima resposta configurada."""

    def __init__(self) -> None:
        self.responses: list[httpx.Response] = []
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            return self.responses.pop(0)
        return httpx.Response(200, json={"sefId": "X1", "status": "PENDING"})


@pytest.fixture()
def exchange() -> FakeExchange:
    return FakeExchange()


@pytest.fixture()
def repository() -> InMemoryInvoiceRepository:
    return InMemoryInvoiceRepository([InvoiceRecord(document_id="INV-1")])


@pytest.fixture()
def api(exchange, repository) -> Iterator[TestClient]:
    settings = Settings(
        internal_task_token=TOKEN,
        sef_api_key="test-key",
        sef_retry_attempts=0,
        sef_maintenance_start_hour=0,
        sef_maintenance_end_hour=0,
    )
    app = create_app(
        settings, invoices=repository, exchange_transport=httpx.MockTransport(exchange)
    )
    with TestClient(app) as client:
        yield client


class TestSubmitDocument:
    def test_submit_sends_and_marks_invoice_sent(self, api, exchange, repository):
        response = api.post("/sef/documents", json=DOCUMENT, headers=HEADERS)

        assert response.status_code == 202
        body = response.json()
        assert body["success"] is True
        assert body["existing"] is False
        assert body["data"]["state"] == "SUBMITTED"
        assert body["data"]["exchangeId"] == "X1"
        assert repository.get("INV-1").state == InvoiceState.SENT
        assert exchange.requests[0].headers["Authorization"] == "Bearer test-key"

    def test_second_submit_reuses_lineage(self, api, exchange):
        api.post("/sef/documents", json=DOCUMENT, headers=HEADERS)
        response = api.post("/sef/documents", json=DOCUMENT, headers=HEADERS)

        assert response.status_code == 202
        assert response.json()["existing"] is True
        assert len(exchange.requests) == 1

    def test_requires_internal_token(self, api, exchange):
        response = api.post("/sef/documents", json=DOCUMENT)

        assert response.status_code == 401
        assert exchange.requests == []

    def test_wrong_internal_token_is_rejected(self, api, exchange):
        response = api.post(
            "/sef/documents", json=DOCUMENT, headers={"X-Internal-Token": TOKEN + "x"}
        )

        assert response.status_code == 401
        assert response.json()["code"] == "unauthorized_internal_call"
        assert exchange.requests == []

    def test_empty_payload_is_rejected(self, api, exchange):
        response = api.post(
            "/sef/documents", json={**DOCUMENT, "payload": "   "}, headers=HEADERS
        )

        assert response.status_code == 422
        assert response.json()["code"] == "invalid_document"
        assert exchange.requests == []

    def test_missing_fields_use_validation_error_shape(self, api):
        response = api.post("/sef/documents", json={"documentId": "INV-1"}, headers=HEADERS)

        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"

    def test_exchange_rejection_maps_to_422(self, api, exchange):
        exchange.responses.append(httpx.Response(400, json={"message": "Invalid UBL"}))

        response = api.post("/sef/documents", json=DOCUMENT, headers=HEADERS)

        assert response.status_code == 422
        assert response.json() == {
            "success": False,
            "error": "Invalid UBL",
            "code": "exchange_rejected",
        }

    def test_exchange_outage_maps_to_502(self, api, exchange):
        exchange.responses.append(httpx.Response(500))

        response = api.post("/sef/documents", json=DOCUMENT, headers=HEADERS)

        assert response.status_code == 502
        assert response.json()["code"] == "exchange_retries_exhausted"

    def test_exchange_maintenance_maps_to_503_with_retry_after(self, api, exchange):
        exchange.responses.append(
            httpx.Response(503, json={"message": "noćna pauza"}, headers={"Retry-After": "120"})
        )

        response = api.post("/sef/documents", json=DOCUMENT, headers=HEADERS)

        assert response.status_code == 503
        assert response.json()["code"] == "exchange_maintenance"
        assert 0 < int(response.headers["Retry-After"]) <= 120

    def test_idempotency_key_replays_submission(self, api, exchange):
        headers = {**HEADERS, "Idempotency-Key": "submit-INV-1-attempt-1"}

        first = api.post("/sef/documents", json=DOCUMENT, headers=headers)
        second = api.post("/sef/documents", json=DOCUMENT, headers=headers)

        assert first.json() == second.json()
        assert second.headers["X-Idempotent-Replay"] == "true"
        assert len(exchange.requests) == 1


class TestQueries:
    def test_get_submission(self, api):
        api.post("/sef/documents", json=DOCUMENT, headers=HEADERS)

        response = api.get("/sef/submissions/INV-1", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["state"] == "SUBMITTED"
        assert data["attemptCount"] == 1
        assert data["invoiceState"] == "SENT"

    def test_unknown_submission(self, api):
        response = api.get("/sef/submissions/INV-404", headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["code"] == "submission_not_found"

    def test_anomaly_review_flow(self, api, repository):
        repository.save(
            InvoiceRecord(document_id="INV-2", exchange_id="X2", state=InvoiceState.ACCEPTED)
        )
        # Sem secret configurado o webhook roda em modo relaxado
        api.post(
            "/webhooks/sef",
            json={"eventType": "STATUS_CHANGE", "sefId": "X2", "status": "SENT"},
        )

        listed = api.get("/sef/anomalies", headers=HEADERS).json()["data"]
        assert len(listed) == 1

        reviewed = api.post(f"/sef/anomalies/{listed[0]['id']}/review", headers=HEADERS)
        assert reviewed.status_code == 200
        assert reviewed.json()["data"]["reviewed"] is True
        assert api.get("/sef/anomalies", headers=HEADERS).json()["data"] == []
        with_reviewed = api.get(
            "/sef/anomalies", params={"includeReviewed": "true"}, headers=HEADERS
        )
        assert len(with_reviewed.json()["data"]) == 1

    def test_review_unknown_anomaly(self, api):
        response = api.post("/sef/anomalies/missing/review", headers=HEADERS)

        assert response.status_code == 404

    def test_manual_reconcile(self, api, exchange, repository):
        api.post("/sef/documents", json=DOCUMENT, headers=HEADERS)
        exchange.responses.append(httpx.Response(200, json={"status": "Seen"}))

        response = api.post("/sef/reconcile", headers=HEADERS)

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["polled"] == 1
        assert data["transitions"] == 1
        assert repository.get("INV-1").state == InvoiceState.DELIVERED


def test_health(api):
    response = api.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
