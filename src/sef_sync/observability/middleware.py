"""Middleware HTTP de correlação e log de acesso."""

from __future__ import annotations

import logging
import re
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

CORRELATION_HEADER = "x-correlation-id"
_ALT_HEADERS = ("x-request-id",)
_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")

access_logger = logging.getLogger("sef_sync.access")

_correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """Retorna o correlation_id da request corrente (ou vazio fora de request)."""

    return _correlation_id.get()


def _incoming_id(request: Request) -> str | None:
    for header in (CORRELATION_HEADER, *_ALT_HEADERS):
        value = request.headers.get(header)
        # IDs externos fora do formato são descartados (evita log injection)
        if value and _SAFE_ID.match(value):
            return value
    return None


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Propaga o correlation_id e registra uma linha de acesso por request."""

    def __init__(self, app, access_log: bool = True) -> None:
        super().__init__(app)
        self._access_log = access_log

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        correlation_id = _incoming_id(request) or uuid.uuid4().hex
        token = _correlation_id.set(correlation_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
            if self._access_log:
                access_logger.info(
                    "http_request",
                    extra={
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": response.status_code,
                        "elapsed_ms": round((time.perf_counter() - start) * 1000, 2),
                    },
                )
        finally:
            _correlation_id.reset(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
