"""Agendamento do loop de reconciliação (timer, independente de requests)."""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from sef_sync.application.orchestrator import SyncOrchestrator
from sef_sync.observability.logging import get_logger

logger: logging.Logger = get_logger(__name__)

RECONCILE_JOB_ID = "sef_reconcile"


class ReconciliationScheduler:
    """Wrapper do AsyncIOScheduler com um único job de intervalo.

    max_instances=1 e coalesce=True: rodadas atrasadas não se acumulam e
    nunca há duas reconciliações simultâneas no mesmo processo.
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        interval_seconds: int,
        *,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._interval_seconds = interval_seconds
        self._scheduler = scheduler or AsyncIOScheduler(timezone="UTC")
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    def start(self) -> None:
        if self._started:
            return
        self._scheduler.add_job(
            self.run_once,
            "interval",
            seconds=self._interval_seconds,
            id=RECONCILE_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )
        self._scheduler.start()
        self._started = True
        logger.info(
            "reconcile_scheduler_started", extra={"interval_seconds": self._interval_seconds}
        )

    def shutdown(self) -> None:
        if not self._started:
            return
        self._scheduler.shutdown(wait=False)
        self._started = False
        logger.info("reconcile_scheduler_stopped")

    async def run_once(self) -> None:
        """Job agendado; erros são logados para não derrubar o scheduler."""
        try:
            await self._orchestrator.reconcile_once()
        except Exception:
            logger.exception("reconcile_job_failed")
