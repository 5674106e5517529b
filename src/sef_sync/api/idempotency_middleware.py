"""Middleware de idempotência para requests mutáveis (POST/PUT/PATCH/DELETE).

- Sem header Idempotency-Key: segue normalmente (ou 400 se obrigatório)
- Token inválido: 400 antes de qualquer handler
- Cache hit: resposta original + `X-Idempotent-Replay: true`, handler não roda
- Cache miss: executa handler; só respostas 2xx são guardadas

Requests concorrentes com a mesma chave são serializados por processo:
o primeiro executa, os demais recebem o replay.

Rotas em `exempt_paths` (padrão: o webhook do SEF, que nunca envia
Idempotency-Key e tem dedupe próprio via nonce) não passam pelo middleware.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from sef_sync.api.dependencies import get_idempotency_cache, get_settings
from sef_sync.api.errors import error_response
from sef_sync.infra.idempotency import (
    IdempotencyRecord,
    build_idempotency_key,
    is_valid_idempotency_token,
)
from sef_sync.observability.logging import get_logger, mask_secret

logger: logging.Logger = get_logger(__name__)

IDEMPOTENCY_HEADER = "idempotency-key"
REPLAY_HEADER = "X-Idempotent-Replay"

_MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
DEFAULT_EXEMPT_PATHS = frozenset({"/webhooks/sef"})


def _replay(record: IdempotencyRecord) -> Response:
    return Response(
        content=record.body,
        status_code=record.status_code,
        media_type=record.media_type,
        headers={REPLAY_HEADER: "true"},
    )


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """Torna endpoints mutáveis seguros para retry do cliente."""

    def __init__(self, app, exempt_paths: Iterable[str] = DEFAULT_EXEMPT_PATHS) -> None:
        super().__init__(app)
        self._exempt_paths = frozenset(path.rstrip("/") or "/" for path in exempt_paths)

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        if request.method not in _MUTATING_METHODS:
            return await call_next(request)
        if (request.url.path.rstrip("/") or "/") in self._exempt_paths:
            return await call_next(request)

        settings = get_settings(request)
        token = request.headers.get(IDEMPOTENCY_HEADER)
        if token is None:
            if settings.idempotency_required:
                return error_response(
                    400, "Idempotency-Key header is required", "idempotency_key_required"
                )
            return await call_next(request)

        if not is_valid_idempotency_token(token):
            logger.info("idempotency_key_invalid", extra={"path": request.url.path})
            return error_response(
                400,
                "Idempotency-Key must be a UUID or at least 16 alphanumeric characters",
                "invalid_idempotency_key",
            )

        cache = get_idempotency_cache(request)
        actor_id = request.headers.get(settings.actor_id_header)
        key = build_idempotency_key(actor_id, request.method, request.url.path, token)

        async with cache.lock(key):
            cached = cache.get(key)
            if cached is not None:
                logger.info(
                    "idempotent_replay",
                    extra={"path": request.url.path, "token_prefix": mask_secret(token)},
                )
                return _replay(cached)

            response = await call_next(request)
            if not 200 <= response.status_code < 300:
                return response

            body = b"".join([chunk async for chunk in response.body_iterator])
            cache.put(
                key,
                response.status_code,
                body.decode("utf-8", errors="replace"),
                media_type=response.headers.get("content-type"),
            )
            return Response(
                content=body,
                status_code=response.status_code,
                headers=dict(response.headers),
            )
