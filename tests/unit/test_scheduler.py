from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from sef_sync.application.scheduler import RECONCILE_JOB_ID, ReconciliationScheduler


def test_start_registers_single_interval_job():
    scheduler = MagicMock()
    wrapper = ReconciliationScheduler(MagicMock(), 120, scheduler=scheduler)

    wrapper.start()
    wrapper.start()

    scheduler.add_job.assert_called_once()
    args, kwargs = scheduler.add_job.call_args
    assert args[1] == "interval"
    assert kwargs["seconds"] == 120
    assert kwargs["id"] == RECONCILE_JOB_ID
    assert kwargs["max_instances"] == 1
    assert kwargs["coalesce"] is True
    scheduler.start.assert_called_once()
    assert wrapper.running is True


def test_shutdown_stops_scheduler():
    scheduler = MagicMock()
    wrapper = ReconciliationScheduler(MagicMock(), 120, scheduler=scheduler)
    wrapper.shutdown()
    scheduler.shutdown.assert_not_called()

    wrapper.start()
    wrapper.shutdown()

    scheduler.shutdown.assert_called_once_with(wait=False)
    assert wrapper.running is False


@pytest.mark.asyncio
async def test_run_once_logs_and_swallows_errors():
    orchestrator = MagicMock()
    orchestrator.reconcile_once = AsyncMock(side_effect=RuntimeError("boom"))
    wrapper = ReconciliationScheduler(orchestrator, 60, scheduler=MagicMock())

    await wrapper.run_once()

    orchestrator.reconcile_once.assert_awaited_once()
