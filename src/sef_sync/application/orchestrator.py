"""Orquestrador da sincronização com o SEF.

Compõe os dois caminhos de atualização:
- push: webhook → WebhookDispatcher → StatusStateMachine (rotas)
- pull: `reconcile_once` reenvia linhagens adiadas e consulta status das
  faturas enviadas que ainda não chegaram a estado terminal

Conflitos entre os caminhos são resolvidos pela regra monotônica da máquina
de estados: o estado mais avançado vence, independentemente da origem.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from sef_sync.adapters.sef.client import SefExchangeClient, SubmissionOutcome
from sef_sync.adapters.sef.errors import ExchangeError, MaintenanceWindowError
from sef_sync.application.state_machine import (
    SOURCE_POLL,
    SOURCE_SUBMISSION,
    StatusStateMachine,
    TransitionResult,
)
from sef_sync.domain.invoice_state import InvoiceState, is_terminal, map_exchange_status
from sef_sync.domain.models import ExchangeSubmission, OutboundDocument, SubmissionState
from sef_sync.domain.protocols.invoices import DocumentSource, InvoiceRepository
from sef_sync.domain.protocols.submissions import SubmissionStore
from sef_sync.observability.logging import get_logger
from sef_sync.observability.timing import timed
from sef_sync.utils.clock import Clock, utc_now

if TYPE_CHECKING:
    from sef_sync.config.settings import Settings

logger: logging.Logger = get_logger(__name__)

SUBMISSION_EVENT_TYPE = "SUBMISSION"
POLL_EVENT_TYPE = "STATUS_POLL"

# Reagendamento quando o SEF reporta manutenção fora da janela conhecida
DEFAULT_MAINTENANCE_BACKOFF = timedelta(minutes=30)

_RESUBMIT_STATES = (SubmissionState.DEFERRED, SubmissionState.QUEUED)


@dataclass(slots=True)
class ReconcileReport:
    """Resumo de uma rodada de reconciliação."""

    resubmitted: int = 0
    deferred: int = 0
    failed: int = 0
    skipped: int = 0
    polled: int = 0
    transitions: int = 0
    errors: int = 0
    maintenance_window: bool = False

    def to_dict(self) -> dict[str, int | bool]:
        return asdict(self)


class SyncOrchestrator:
    """Coordena envio, reagendamento e polling de status."""

    def __init__(
        self,
        client: SefExchangeClient,
        submissions: SubmissionStore,
        invoices: InvoiceRepository,
        state_machine: StatusStateMachine,
        *,
        documents: DocumentSource | None = None,
        maintenance_start_hour: int = 1,
        maintenance_end_hour: int = 6,
        timezone: str = "Europe/Belgrade",
        batch_size: int = 50,
        clock: Clock | None = None,
    ) -> None:
        self._client = client
        self._submissions = submissions
        self._invoices = invoices
        self._state_machine = state_machine
        self._documents = documents
        self._start_hour = maintenance_start_hour
        self._end_hour = maintenance_end_hour
        self._tz = ZoneInfo(timezone)
        self._batch_size = batch_size
        self._clock = clock or utc_now

    @property
    def client(self) -> SefExchangeClient:
        return self._client

    # ------------------------------------------------------------------
    # Janela de manutenção (pausa noturna do SEF)
    # ------------------------------------------------------------------

    def is_maintenance_window(self, now: datetime | None = None) -> bool:
        local = (now or self._clock()).astimezone(self._tz)
        return self._start_hour <= local.hour < self._end_hour

    def maintenance_window_end(self, now: datetime | None = None) -> datetime:
        """Próximo fim da janela, em UTC."""
        local = (now or self._clock()).astimezone(self._tz)
        end = local.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(
            hours=self._end_hour
        )
        if end <= local:
            end += timedelta(days=1)
        return end.astimezone(UTC)

    # ------------------------------------------------------------------
    # Envio
    # ------------------------------------------------------------------

    async def submit_document(self, document: OutboundDocument) -> SubmissionOutcome:
        """Envia documento e registra DRAFT → SENT na máquina de estados.

        Raises:
            MaintenanceWindowError: linhagem DEFERRED com next_attempt_at
            PermanentRejectionError, RetriesExhaustedError: vindos do cliente
        """
        now = self._clock()
        if self.is_maintenance_window(now):
            return self._defer_locally(document, now)

        try:
            outcome = await self._client.submit(document)
        except MaintenanceWindowError as exc:
            exc.retry_after = self._reschedule(document.document_id, exc.retry_after, now)
            raise

        if outcome.existing:
            return outcome

        await self._record_submission(outcome)
        return outcome

    def _defer_locally(self, document: OutboundDocument, now: datetime) -> SubmissionOutcome:
        submission, started = self._submissions.begin(
            document.document_id, document.document_type, now
        )
        if not started:
            return SubmissionOutcome(
                submission=submission,
                exchange_id=submission.exchange_id,
                status=submission.exchange_status,
                existing=True,
            )

        retry_after = self.maintenance_window_end(now)
        submission.state = SubmissionState.DEFERRED
        submission.next_attempt_at = retry_after
        submission.last_error = "maintenance_window"
        self._submissions.save(submission)

        logger.info(
            "submission_deferred_maintenance_window",
            extra={"document_id": document.document_id, "retry_after": retry_after.isoformat()},
        )
        raise MaintenanceWindowError(
            "SEF em pausa noturna", status_code=None, retry_after=retry_after
        )

    def _reschedule(
        self, document_id: str, retry_after: datetime | None, now: datetime
    ) -> datetime:
        if retry_after is None:
            retry_after = (
                self.maintenance_window_end(now)
                if self.is_maintenance_window(now)
                else now + DEFAULT_MAINTENANCE_BACKOFF
            )
        submission = self._submissions.get(document_id)
        if submission is not None:
            submission.next_attempt_at = retry_after
            self._submissions.save(submission)
        logger.info(
            "submission_deferred_by_exchange",
            extra={"document_id": document_id, "retry_after": retry_after.isoformat()},
        )
        return retry_after

    async def _record_submission(self, outcome: SubmissionOutcome) -> TransitionResult:
        target = map_exchange_status(outcome.status) or InvoiceState.SENT
        return await self._state_machine.apply(
            outcome.submission.document_id,
            target,
            event_type=SUBMISSION_EVENT_TYPE,
            source=SOURCE_SUBMISSION,
            source_ref=outcome.exchange_id,
            occurred_at=outcome.submission.last_attempt_at,
            exchange_id=outcome.exchange_id,
            exchange_status=outcome.status,
            data={"attemptCount": outcome.submission.attempt_count},
        )

    # ------------------------------------------------------------------
    # Reconciliação (pull)
    # ------------------------------------------------------------------

    async def reconcile_once(self) -> ReconcileReport:
        """Uma rodada de reconciliação; falhas por item não param o lote."""
        report = ReconcileReport()
        now = self._clock()

        if self.is_maintenance_window(now):
            report.maintenance_window = True
            logger.info("reconcile_skipped_maintenance_window")
            return report

        with timed("reconcile", batch_size=self._batch_size) as metrics:
            for submission in self._due_submissions(now):
                await self._resubmit(submission, report)

            for submission in self._pollable_submissions():
                await self._poll(submission, report)
            metrics["polled"] = report.polled

        logger.info("reconcile_finished", extra=report.to_dict())
        return report

    def _due_submissions(self, now: datetime) -> list[ExchangeSubmission]:
        due = [
            s
            for s in self._submissions.list_by_state(_RESUBMIT_STATES)
            if s.next_attempt_at is None or s.next_attempt_at <= now
        ]
        return due[: self._batch_size]

    def _pollable_submissions(self) -> list[ExchangeSubmission]:
        pollable: list[ExchangeSubmission] = []
        for submission in self._submissions.list_by_state((SubmissionState.SUBMITTED,)):
            if not submission.exchange_id:
                continue
            invoice = self._invoices.get(submission.document_id)
            if invoice is None or is_terminal(invoice.state):
                continue
            pollable.append(submission)
            if len(pollable) >= self._batch_size:
                break
        return pollable

    async def _resubmit(self, submission: ExchangeSubmission, report: ReconcileReport) -> None:
        document_id = submission.document_id
        document = self._documents.get_document(document_id) if self._documents else None
        if document is None:
            report.skipped += 1
            logger.warning("reconcile_document_unavailable", extra={"document_id": document_id})
            return

        try:
            outcome = await self.submit_document(document)
        except MaintenanceWindowError:
            report.deferred += 1
        except ExchangeError as exc:
            report.failed += 1
            logger.warning(
                "reconcile_resubmit_failed",
                extra={"document_id": document_id, "error_type": type(exc).__name__},
            )
        except Exception:
            report.errors += 1
            logger.exception(
                "reconcile_resubmit_unexpected_error", extra={"document_id": document_id}
            )
        else:
            if not outcome.existing:
                report.resubmitted += 1

    async def _poll(self, submission: ExchangeSubmission, report: ReconcileReport) -> None:
        exchange_id = submission.exchange_id or ""
        try:
            status = await self._client.poll_status(exchange_id)
        except ExchangeError as exc:
            report.errors += 1
            logger.warning(
                "reconcile_poll_failed",
                extra={"exchange_id": exchange_id, "error_type": type(exc).__name__},
            )
            return
        except Exception:
            report.errors += 1
            logger.exception("reconcile_poll_unexpected_error", extra={"exchange_id": exchange_id})
            return

        report.polled += 1
        submission.exchange_status = status.status
        self._submissions.save(submission)

        target = map_exchange_status(status.status)
        if target is None:
            logger.info(
                "reconcile_status_unmapped",
                extra={"exchange_id": exchange_id, "exchange_status": status.status},
            )
            return

        result = await self._state_machine.apply(
            submission.document_id,
            target,
            event_type=POLL_EVENT_TYPE,
            source=SOURCE_POLL,
            source_ref=exchange_id,
            occurred_at=status.status_date,
            exchange_status=status.status,
            data={"sefId": exchange_id, "status": status.status},
        )
        if result.changed:
            report.transitions += 1


def create_sync_orchestrator(
    settings: Settings,
    *,
    client: SefExchangeClient,
    submissions: SubmissionStore,
    invoices: InvoiceRepository,
    state_machine: StatusStateMachine,
    documents: DocumentSource | None = None,
    clock: Clock | None = None,
) -> SyncOrchestrator:
    """Factory do orquestrador conforme settings."""
    return SyncOrchestrator(
        client,
        submissions,
        invoices,
        state_machine,
        documents=documents,
        maintenance_start_hour=settings.sef_maintenance_start_hour,
        maintenance_end_hour=settings.sef_maintenance_end_hour,
        timezone=settings.sef_timezone,
        batch_size=settings.reconcile_batch_size,
        clock=clock,
    )
