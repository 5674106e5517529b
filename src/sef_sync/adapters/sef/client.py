"""Cliente outbound do SEF com retry, timeout e classificação de falhas.

Fluxo de envio:
1. `SubmissionStore.begin` garante no máximo um envio IN_FLIGHT por documento
2. Loop explícito de retry (429/5xx/timeout/conexão) com backoff exponencial
3. Resultado registrado na linhagem (SUBMITTED, DEFERRED, REJECTED,
   FAILED_PERMANENT) e devolvido ao chamador como valor ou erro tipado

Conforme regras do projeto:
- Nunca logar API key, payload XML ou corpo de resposta completo
- Sempre usar timeout
- sleep e clock injetáveis (testes sem atraso real)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

import httpx

from sef_sync.adapters.sef.errors import (
    ExchangeAuthenticationError,
    ExchangeError,
    MaintenanceWindowError,
    PermanentRejectionError,
    RetriesExhaustedError,
    TransientExchangeError,
)
from sef_sync.domain.models import (
    CompanyCredentials,
    ExchangeSubmission,
    OutboundDocument,
    SubmissionState,
)
from sef_sync.domain.protocols.submissions import SubmissionStore
from sef_sync.observability.logging import get_logger
from sef_sync.utils.clock import Clock, parse_timestamp, utc_now

if TYPE_CHECKING:
    from sef_sync.config.settings import Settings

logger: logging.Logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]

INVOICES_PATH = "/api/v1/invoices"
HEALTH_PATH = "/api/v1/health"

# Mensagens do SEF para a pausa noturna planejada
_MAINTENANCE_MARKERS = ("noćna pauza", "nocna pauza", "night pause", "maintenance")


@dataclass
class ExchangeClientConfig:
    """Configuração do cliente; padrões seguros e conservadores."""

    timeout_seconds: float = 30.0
    retry_attempts: int = 3  # Retries após a primeira tentativa
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    default_headers: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class SubmissionOutcome:
    """Resultado de `submit`.

    existing=True indica que nenhuma chamada foi feita: a linhagem já
    estava IN_FLIGHT ou SUBMITTED.
    """

    submission: ExchangeSubmission
    exchange_id: str | None
    status: str | None
    existing: bool = False


@dataclass(slots=True, frozen=True)
class ExchangeStatusReport:
    exchange_id: str
    status: str
    status_date: datetime | None
    raw: dict[str, Any]


def _is_retryable_status(status_code: int) -> bool:
    """Determina se status HTTP permite retry (429 ou 5xx)."""
    return status_code == 429 or 500 <= status_code < 600


def _calculate_backoff(retry_index: int, base_seconds: float, max_seconds: float) -> float:
    """Backoff exponencial: base * 2^n, limitado a max_seconds."""
    return min((2**retry_index) * base_seconds, max_seconds)


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _error_message(response: httpx.Response) -> str:
    """Mensagem curta do SEF (nunca o corpo inteiro)."""
    data = _json_body(response)
    for key in ("message", "error", "detail"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value[:200]
    return f"HTTP {response.status_code}"


def _is_maintenance(response: httpx.Response) -> bool:
    if response.status_code < 500:
        return False
    text = f"{response.text} {_error_message(response)}".lower()
    return any(marker in text for marker in _MAINTENANCE_MARKERS)


def _retry_after(response: httpx.Response, now: datetime) -> datetime | None:
    value = response.headers.get("retry-after")
    if not value:
        return None
    try:
        return now + timedelta(seconds=float(value))
    except ValueError:
        return None


class SefExchangeClient:
    """Cliente assíncrono da API pública do SEF.

    Uso típico:
        async with create_exchange_client(credentials, settings, store) as client:
            outcome = await client.submit(document)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        submissions: SubmissionStore,
        environment: str = "demo",
        company_pib: str | None = None,
        config: ExchangeClientConfig | None = None,
        sleep: Sleep | None = None,
        clock: Clock | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._submissions = submissions
        self._environment = environment
        self._company_pib = company_pib
        self._config = config or ExchangeClientConfig()
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or utc_now
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _get_client(self) -> httpx.AsyncClient:
        """Retorna cliente httpx (lazy loading)."""
        if self._client is None or self._client.is_closed:
            headers = {
                "Authorization": f"Bearer {self._api_key}",
                "Accept": "application/json",
                **self._config.default_headers,
            }
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._config.timeout_seconds),
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Fecha o cliente e libera recursos."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> SefExchangeClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Operações públicas
    # ------------------------------------------------------------------

    async def submit(self, document: OutboundDocument) -> SubmissionOutcome:
        """Envia documento ao SEF.

        Raises:
            MaintenanceWindowError: linhagem fica DEFERRED
            PermanentRejectionError: linhagem fica REJECTED
            RetriesExhaustedError: linhagem fica FAILED_PERMANENT
        """
        submission, started = self._submissions.begin(
            document.document_id, document.document_type, self._clock()
        )
        if not started:
            logger.info(
                "exchange_submission_reused",
                extra={"document_id": document.document_id, "state": submission.state.value},
            )
            return SubmissionOutcome(
                submission=submission,
                exchange_id=submission.exchange_id,
                status=submission.exchange_status,
                existing=True,
            )

        payload = {
            "xml": document.payload,
            "pib": document.company_pib or self._company_pib,
            "documentType": document.document_type.value,
            "environment": self._environment,
        }

        try:
            response = await self._send_with_retry(
                "POST", INVOICES_PATH, submission=submission, json=payload
            )
            data = _json_body(response)
            exchange_id = data.get("sefId") or data.get("exchangeId")
            if not exchange_id:
                raise ExchangeError("Resposta do SEF sem sefId", status_code=response.status_code)
        except MaintenanceWindowError as exc:
            submission.next_attempt_at = exc.retry_after
            self._finish(submission, SubmissionState.DEFERRED, error=exc.message)
            raise
        except PermanentRejectionError as exc:
            self._finish(submission, SubmissionState.REJECTED, error=exc.message)
            raise
        except ExchangeError as exc:
            self._finish(submission, SubmissionState.FAILED_PERMANENT, error=exc.message)
            raise
        except Exception as exc:
            self._finish(submission, SubmissionState.FAILED_PERMANENT, error=type(exc).__name__)
            logger.exception(
                "exchange_submit_unexpected_error", extra={"document_id": document.document_id}
            )
            raise ExchangeError(f"Erro inesperado: {type(exc).__name__}") from exc

        status = data.get("status")
        submission.exchange_id = str(exchange_id)
        submission.exchange_status = status
        submission.last_error = None
        self._finish(submission, SubmissionState.SUBMITTED)

        logger.info(
            "exchange_submission_accepted",
            extra={
                "document_id": document.document_id,
                "exchange_id": submission.exchange_id,
                "exchange_status": status,
                "attempt_count": submission.attempt_count,
            },
        )
        return SubmissionOutcome(
            submission=submission, exchange_id=submission.exchange_id, status=status
        )

    async def poll_status(self, exchange_id: str) -> ExchangeStatusReport:
        """Consulta status atual de uma fatura no SEF (mesma política de retry)."""
        response = await self._send_with_retry("GET", f"{INVOICES_PATH}/{exchange_id}/status")
        data = _json_body(response)
        status = data.get("status")
        if not isinstance(status, str) or not status:
            raise ExchangeError(
                "Resposta de status sem campo status", status_code=response.status_code
            )
        return ExchangeStatusReport(
            exchange_id=str(data.get("sefId") or exchange_id),
            status=status,
            status_date=parse_timestamp(data.get("statusDate")),
            raw=data,
        )

    async def cancel(self, exchange_id: str, reason: str) -> bool:
        """Solicita cancelamento (storno) de uma fatura já enviada."""
        await self._send_with_retry(
            "POST", f"{INVOICES_PATH}/{exchange_id}/cancel", json={"reason": reason}
        )
        logger.info("exchange_cancel_requested", extra={"exchange_id": exchange_id})
        return True

    async def health_check(self) -> bool:
        """Verifica disponibilidade da API do SEF (sem retry)."""
        try:
            await self._send_with_retry("GET", HEALTH_PATH, retry_attempts=0)
        except ExchangeError as exc:
            logger.warning(
                "exchange_health_check_failed",
                extra={"status_code": exc.status_code, "error_type": type(exc).__name__},
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Loop de retry
    # ------------------------------------------------------------------

    async def _send_with_retry(
        self,
        method: str,
        path: str,
        *,
        submission: ExchangeSubmission | None = None,
        retry_attempts: int | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Executa requisição com retry explícito.

        Retentável: 429, 5xx, timeout, erro de transporte. Manutenção e 4xx
        interrompem o loop imediatamente.

        Raises:
            MaintenanceWindowError, PermanentRejectionError, RetriesExhaustedError
        """
        client = await self._get_client()
        cfg = self._config
        max_retries = cfg.retry_attempts if retry_attempts is None else retry_attempts
        last_error: ExchangeError | None = None

        for attempt in range(max_retries + 1):
            self._record_attempt(submission)
            logger.debug(
                "exchange_request_attempt",
                extra={"method": method, "path": path, "attempt": attempt + 1},
            )

            try:
                response = await client.request(method, path, **kwargs)
                if response.is_success:
                    return response
                last_error = self._classify_response(response)
            except httpx.TimeoutException:
                last_error = TransientExchangeError("Timeout")
            except httpx.TransportError as exc:
                last_error = TransientExchangeError(f"Erro de conexão: {type(exc).__name__}")
            except ExchangeError as exc:
                self._record_error(submission, exc)
                raise
            except httpx.HTTPError as exc:
                error = ExchangeError(f"Erro inesperado: {type(exc).__name__}")
                self._record_error(submission, error)
                raise error from exc

            self._record_error(submission, last_error)
            logger.warning(
                "exchange_request_transient_failure",
                extra={
                    "method": method,
                    "path": path,
                    "attempt": attempt + 1,
                    "status_code": last_error.status_code,
                    "error": last_error.message,
                },
            )

            if attempt < max_retries:
                backoff = _calculate_backoff(
                    attempt, cfg.backoff_base_seconds, cfg.backoff_max_seconds
                )
                logger.info(
                    "exchange_backoff",
                    extra={"backoff_seconds": backoff, "next_attempt": attempt + 2},
                )
                await self._sleep(backoff)

        total = max_retries + 1
        logger.error(
            "exchange_retries_exhausted",
            extra={"method": method, "path": path, "total_attempts": total},
        )
        raise RetriesExhaustedError(
            f"SEF indisponível após {total} tentativas", attempts=total, last_error=last_error
        )

    def _classify_response(self, response: httpx.Response) -> ExchangeError:
        """Traduz resposta não-2xx; levanta quando o loop deve parar."""
        status_code = response.status_code
        message = _error_message(response)

        if _is_maintenance(response):
            logger.warning("exchange_maintenance_window", extra={"status_code": status_code})
            raise MaintenanceWindowError(
                message, status_code=status_code, retry_after=_retry_after(response, self._clock())
            )

        if _is_retryable_status(status_code):
            return TransientExchangeError(message, status_code=status_code)

        logger.warning(
            "exchange_request_rejected", extra={"status_code": status_code, "error": message}
        )
        if status_code in (401, 403):
            raise ExchangeAuthenticationError(message, status_code=status_code)
        raise PermanentRejectionError(message, status_code=status_code)

    def _record_attempt(self, submission: ExchangeSubmission | None) -> None:
        if submission is None:
            return
        submission.attempt_count += 1
        submission.last_attempt_at = self._clock()
        self._submissions.save(submission)

    def _record_error(self, submission: ExchangeSubmission | None, error: ExchangeError) -> None:
        if submission is None:
            return
        submission.last_error = error.message
        self._submissions.save(submission)

    def _finish(
        self, submission: ExchangeSubmission, state: SubmissionState, error: str | None = None
    ) -> None:
        submission.state = state
        if error is not None:
            submission.last_error = error
        self._submissions.save(submission)


def credentials_from_settings(settings: Settings) -> CompanyCredentials:
    """Credencial padrão (empresa única) a partir das env vars."""
    return CompanyCredentials(
        api_key=settings.sef_api_key or "",
        environment=settings.sef_environment,
        pib=settings.sef_company_pib,
    )


def create_exchange_client(
    credentials: CompanyCredentials,
    settings: Settings,
    submissions: SubmissionStore,
    *,
    sleep: Sleep | None = None,
    clock: Clock | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> SefExchangeClient:
    """Factory do cliente; URL base conforme flag de ambiente da empresa."""
    base_url = (
        settings.sef_production_base_url
        if credentials.is_production
        else settings.sef_demo_base_url
    )
    config = ExchangeClientConfig(
        timeout_seconds=float(settings.sef_request_timeout_seconds),
        retry_attempts=settings.sef_retry_attempts,
        backoff_base_seconds=float(settings.sef_retry_base_delay_seconds),
        backoff_max_seconds=float(settings.sef_retry_max_delay_seconds),
        default_headers={"User-Agent": f"{settings.service_name}/{settings.version}"},
    )

    logger.info(
        "Cliente SEF criado",
        extra={
            "environment": credentials.environment,
            "timeout_seconds": config.timeout_seconds,
            "retry_attempts": config.retry_attempts,
        },
    )
    return SefExchangeClient(
        base_url,
        credentials.api_key,
        submissions=submissions,
        environment=credentials.environment,
        company_pib=credentials.pib,
        config=config,
        sleep=sleep,
        clock=clock,
        transport=transport,
    )
