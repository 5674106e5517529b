"""Formato estável de erro da API: {"success": false, "error", "code"}."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sef_sync.adapters.sef.errors import (
    ExchangeAuthenticationError,
    ExchangeError,
    MaintenanceWindowError,
    PermanentRejectionError,
    RetriesExhaustedError,
)
from sef_sync.observability.logging import get_logger
from sef_sync.utils.clock import utc_now

logger = get_logger(__name__)


class ApiError(Exception):
    """Erro de API com status e código estável."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message or code)
        self.status_code = status_code
        self.code = code
        self.message = message or code
        self.headers = headers


def error_body(message: str, code: str) -> dict[str, Any]:
    return {"success": False, "error": message, "code": code}


def error_response(
    status_code: int, message: str, code: str, headers: dict[str, str] | None = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content=error_body(message, code), headers=headers
    )


def _exchange_status_code(exc: ExchangeError) -> int:
    if isinstance(exc, MaintenanceWindowError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, ExchangeAuthenticationError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, PermanentRejectionError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, RetriesExhaustedError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_502_BAD_GATEWAY


async def _handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(exc.status_code, exc.message, exc.code, exc.headers)


async def _handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else "http_error"
    return error_response(exc.status_code, detail, detail, getattr(exc, "headers", None))


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted({".".join(str(p) for p in err["loc"][1:]) for err in exc.errors()})
    message = f"Invalid request: {', '.join(fields)}" if fields else "Invalid request"
    return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, message, "validation_error")


async def _handle_exchange_error(request: Request, exc: ExchangeError) -> JSONResponse:
    status_code = _exchange_status_code(exc)
    headers: dict[str, str] | None = None
    if isinstance(exc, MaintenanceWindowError) and exc.retry_after is not None:
        seconds = max(int((exc.retry_after - utc_now()).total_seconds()), 0)
        headers = {"Retry-After": str(seconds)}
    logger.warning(
        "exchange_error_response",
        extra={"code": exc.code, "status_code": status_code, "upstream_status": exc.status_code},
    )
    return error_response(status_code, exc.message, exc.code, headers)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ApiError, _handle_api_error)
    app.add_exception_handler(HTTPException, _handle_http_exception)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(ExchangeError, _handle_exchange_error)
