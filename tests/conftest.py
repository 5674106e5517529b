from __future__ import annotations

import hashlib
import hmac
import time
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from sef_sync.api.app import create_app
from sef_sync.config.settings import get_settings
from sef_sync.domain.invoice_state import InvoiceState
from sef_sync.domain.models import InvoiceRecord
from sef_sync.infra.invoice_repository import InMemoryInvoiceRepository

WEBHOOK_SECRET = "test-sef-webhook-secret"
INTERNAL_TOKEN = "test-internal-token"


class FakeClock:
    """Relógio controlável: `now()` em UTC e `monotonic()` em segundos."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
        self._offset = 0.0

    def now(self) -> datetime:
        return self.current

    def monotonic(self) -> float:
        return self._offset

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)
        self._offset += seconds


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def webhook_headers(
    body: bytes,
    *,
    nonce: str | None = None,
    timestamp_ms: int | None = None,
    secret: str = WEBHOOK_SECRET,
) -> dict[str, str]:
    """Headers que o SEF envia em uma notificação assinada."""
    headers = {
        "Content-Type": "application/json",
        "X-SEF-Signature": sign(body, secret),
        "X-SEF-Timestamp": str(timestamp_ms or int(time.time() * 1000)),
    }
    if nonce:
        headers["X-SEF-Nonce"] = nonce
    return headers


@pytest.fixture()
def signed_headers():
    return webhook_headers


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def invoices() -> InMemoryInvoiceRepository:
    return InMemoryInvoiceRepository(
        [InvoiceRecord(document_id="INV-1", exchange_id="X1", state=InvoiceState.SENT)]
    )


@pytest.fixture()
def client(
    monkeypatch: pytest.MonkeyPatch, invoices: InMemoryInvoiceRepository
) -> Iterator[TestClient]:
    monkeypatch.setenv("SEF_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("INTERNAL_TASK_TOKEN", INTERNAL_TOKEN)
    monkeypatch.setenv("SEF_MAINTENANCE_START_HOUR", "0")
    monkeypatch.setenv("SEF_MAINTENANCE_END_HOUR", "0")
    get_settings.cache_clear()
    app = create_app(invoices=invoices)
    with TestClient(app) as test_client:
        yield test_client
    get_settings.cache_clear()
