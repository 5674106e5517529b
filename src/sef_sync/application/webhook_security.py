"""Filtro de segurança do webhook do SEF.

Checagens (todas obrigatórias quando há secret configurado):
1. Assinatura presente (X-SEF-Signature)
2. Frescor: X-SEF-Timestamp (ou campo `timestamp` do body) dentro de ±5 min
3. Assinatura: HMAC SHA-256 sobre o corpo bruto, comparação em tempo constante;
   aceita `sha256=<hex>` ou hex puro
4. Replay: nonce (X-SEF-Nonce ou campo `nonce`) inédito na janela

O nonce só é marcado depois da assinatura validada: requests forjados não
ocupam o cache de nonces.

Sem secret configurado: warning + tudo passa (modo relaxado, apenas dev).
Nunca loga secret nem assinatura completa.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sef_sync.infra.nonce_store import NonceStore, NonceStoreError
from sef_sync.observability.logging import get_logger, mask_secret
from sef_sync.utils.clock import Clock, parse_timestamp, utc_now

logger: logging.Logger = get_logger(__name__)

SIGNATURE_HEADER = "x-sef-signature"
TIMESTAMP_HEADER = "x-sef-timestamp"
NONCE_HEADER = "x-sef-nonce"

REASON_MISSING_SIGNATURE = "missing_signature"
REASON_MISSING_TIMESTAMP = "missing_timestamp"
REASON_EXPIRED = "expired"
REASON_INVALID_SIGNATURE = "invalid_signature"
REASON_REPLAY = "replay"


@dataclass(slots=True)
class VerificationResult:
    """Resultado da verificação do webhook."""

    valid: bool
    skipped: bool = False
    reason: str | None = None
    nonce: str | None = None  # marcado no store; liberar se o registro falhar


def compute_signature(raw_body: bytes, secret: str) -> str:
    """HMAC SHA-256 (hex) do corpo bruto."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def _header(headers: Mapping[str, str], name: str) -> str | None:
    """Busca header sem diferenciar maiúsculas."""
    value = headers.get(name)
    if value is not None:
        return value
    for key, candidate in headers.items():
        if key.lower() == name:
            return candidate
    return None


def _body_fields(raw_body: bytes) -> dict[str, Any]:
    try:
        data = json.loads(raw_body or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


class WebhookVerifier:
    """Verifica autenticidade e frescor de notificações do SEF."""

    def __init__(
        self,
        secret: str | None,
        nonce_store: NonceStore,
        *,
        tolerance_seconds: int = 300,
        require_timestamp: bool = True,
        clock: Clock | None = None,
    ) -> None:
        self._secret = secret
        self._nonce_store = nonce_store
        self._tolerance_seconds = tolerance_seconds
        self._require_timestamp = require_timestamp
        self._clock = clock or utc_now

    @property
    def enabled(self) -> bool:
        return bool(self._secret)

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> VerificationResult:
        """Executa as checagens; nunca levanta exceção para input inválido.

        NonceStoreError (backend indisponível) é propagado: o chamador
        responde 500 e o SEF reenvia.
        """
        if not self._secret:
            logger.warning("webhook_signature_skipped", extra={"reason": "missing_secret"})
            return VerificationResult(valid=True, skipped=True)

        signature = _header(headers, SIGNATURE_HEADER)
        if not signature:
            return self._reject(REASON_MISSING_SIGNATURE)

        body_fields: dict[str, Any] | None = None

        raw_timestamp: Any = _header(headers, TIMESTAMP_HEADER)
        if raw_timestamp is None:
            body_fields = _body_fields(raw_body)
            raw_timestamp = body_fields.get("timestamp")

        if raw_timestamp is None:
            if self._require_timestamp:
                return self._reject(REASON_MISSING_TIMESTAMP)
        else:
            sent_at = parse_timestamp(raw_timestamp)
            if sent_at is None:
                return self._reject(REASON_EXPIRED, detail="unparseable_timestamp")
            skew = abs((self._clock() - sent_at).total_seconds())
            if skew > self._tolerance_seconds:
                return self._reject(REASON_EXPIRED, detail=f"skew_seconds={int(skew)}")

        provided = signature.strip()
        if provided.lower().startswith("sha256="):
            provided = provided.split("=", 1)[1]
        expected = compute_signature(raw_body, self._secret)
        if not hmac.compare_digest(expected.encode(), provided.lower().encode("utf-8")):
            return self._reject(REASON_INVALID_SIGNATURE, signature=signature)

        nonce = _header(headers, NONCE_HEADER)
        if nonce is None:
            if body_fields is None:
                body_fields = _body_fields(raw_body)
            body_nonce = body_fields.get("nonce")
            nonce = str(body_nonce) if body_nonce not in (None, "") else None

        if nonce and not self._nonce_store.mark_if_new(nonce):
            return self._reject(REASON_REPLAY, nonce=nonce)

        return VerificationResult(valid=True, nonce=nonce or None)

    def release(self, result: VerificationResult) -> None:
        """Libera o nonce de uma verificação cujo webhook não foi registrado.

        Chamado antes de responder 500: sem isso o reenvio do SEF seria
        recusado como replay e o evento se perderia.
        """
        if not result.nonce:
            return
        try:
            self._nonce_store.release(result.nonce)
        except NonceStoreError:
            logger.exception(
                "webhook_nonce_release_failed", extra={"nonce_prefix": mask_secret(result.nonce)}
            )

    def _reject(
        self,
        reason: str,
        *,
        detail: str | None = None,
        signature: str | None = None,
        nonce: str | None = None,
    ) -> VerificationResult:
        logger.warning(
            "webhook_verification_failed",
            extra={
                "reason": reason,
                "detail": detail,
                "signature_prefix": mask_secret(signature),
                "nonce_prefix": mask_secret(nonce),
            },
        )
        return VerificationResult(valid=False, reason=reason)
