"""Testes da máquina de estados (monotonicidade, auditoria, anomalias)."""

from __future__ import annotations

import asyncio
import itertools
import logging
from datetime import UTC, datetime

import pytest

from sef_sync.application.state_machine import (
    SOURCE_POLL,
    SOURCE_WEBHOOK,
    StatusStateMachine,
    TransitionOutcome,
)
from sef_sync.domain.invoice_state import InvoiceState
from sef_sync.domain.models import InvoiceRecord
from sef_sync.infra.audit_store import InMemoryAnomalyStore, InMemoryAuditLogStore
from sef_sync.infra.invoice_repository import InMemoryInvoiceRepository

EVENT_TIME = datetime(2026, 1, 14, 9, 30, tzinfo=UTC)


def _setup(state: InvoiceState = InvoiceState.SENT):
    invoices = InMemoryInvoiceRepository(
        [InvoiceRecord(document_id="INV-1", exchange_id="X1", state=state)]
    )
    audit = InMemoryAuditLogStore()
    anomalies = InMemoryAnomalyStore()
    return StatusStateMachine(invoices, audit, anomalies), invoices, audit, anomalies


async def _apply(machine: StatusStateMachine, target: InvoiceState, **kwargs):
    kwargs.setdefault("event_type", "STATUS_CHANGE")
    kwargs.setdefault("source", SOURCE_WEBHOOK)
    return await machine.apply("INV-1", target, **kwargs)


class TestApply:
    @pytest.mark.asyncio
    async def test_forward_transition_writes_one_audit_entry(self):
        machine, invoices, audit, _ = _setup()

        result = await _apply(
            machine, InvoiceState.ACCEPTED, occurred_at=EVENT_TIME, source_ref="log-1"
        )

        assert result.outcome == TransitionOutcome.APPLIED
        assert result.changed is True
        assert result.previous == InvoiceState.SENT
        record = invoices.get("INV-1")
        assert record.state == InvoiceState.ACCEPTED
        assert record.status_changed_at == EVENT_TIME
        entries = audit.list_for_document("INV-1")
        assert len(entries) == 1
        assert entries[0].old_state == InvoiceState.SENT
        assert entries[0].new_state == InvoiceState.ACCEPTED
        assert entries[0].occurred_at == EVENT_TIME
        assert entries[0].source_ref == "log-1"

    @pytest.mark.asyncio
    async def test_reapplying_same_event_is_noop(self):
        machine, invoices, audit, anomalies = _setup()

        await _apply(machine, InvoiceState.ACCEPTED)
        second = await _apply(machine, InvoiceState.ACCEPTED)

        assert second.outcome == TransitionOutcome.UNCHANGED
        assert invoices.get("INV-1").state == InvoiceState.ACCEPTED
        assert len(audit) == 1
        assert anomalies.list() == []

    @pytest.mark.asyncio
    async def test_backward_transition_records_anomaly(self, caplog):
        machine, invoices, audit, anomalies = _setup(InvoiceState.ACCEPTED)

        with caplog.at_level(logging.WARNING):
            result = await _apply(machine, InvoiceState.SENT, source=SOURCE_POLL)

        assert result.outcome == TransitionOutcome.CONFLICT
        assert invoices.get("INV-1").state == InvoiceState.ACCEPTED
        assert len(audit) == 0
        items = anomalies.list(document_id="INV-1")
        assert len(items) == 1
        assert items[0].current_state == InvoiceState.ACCEPTED
        assert items[0].attempted_state == InvoiceState.SENT
        assert items[0].source == SOURCE_POLL
        assert any(r.message == "invoice_transition_conflict" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_lateral_move_between_terminals_is_conflict(self):
        machine, invoices, _, anomalies = _setup(InvoiceState.ACCEPTED)

        result = await _apply(machine, InvoiceState.CANCELLED)

        assert result.outcome == TransitionOutcome.CONFLICT
        assert invoices.get("INV-1").state == InvoiceState.ACCEPTED
        assert len(anomalies.list()) == 1

    @pytest.mark.asyncio
    async def test_unknown_document(self):
        machine, _, audit, _ = _setup()

        result = await machine.apply(
            "INV-404", InvoiceState.ACCEPTED, event_type="ACCEPTANCE", source=SOURCE_WEBHOOK
        )

        assert result.outcome == TransitionOutcome.NOT_FOUND
        assert len(audit) == 0

    @pytest.mark.asyncio
    async def test_exchange_fields_are_written(self):
        machine, invoices, _, _ = _setup(InvoiceState.DRAFT)

        await _apply(
            machine,
            InvoiceState.SENT,
            exchange_id="X9",
            exchange_status="PENDING",
            note="first submission",
        )

        record = invoices.get("INV-1")
        assert record.exchange_id == "X9"
        assert record.exchange_status == "PENDING"
        assert record.note == "first submission"


class TestOrdering:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "sequence",
        list(
            itertools.permutations(
                [InvoiceState.SENT, InvoiceState.DELIVERED, InvoiceState.ACCEPTED]
            )
        ),
    )
    async def test_final_state_is_most_advanced(self, sequence):
        machine, invoices, _, _ = _setup(InvoiceState.DRAFT)

        for target in sequence:
            await _apply(machine, target)

        assert invoices.get("INV-1").state == InvoiceState.ACCEPTED

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_write_single_audit_entry(self):
        machine, invoices, audit, _ = _setup()

        results = await asyncio.gather(
            *[_apply(machine, InvoiceState.DELIVERED) for _ in range(10)]
        )

        outcomes = [r.outcome for r in results]
        assert outcomes.count(TransitionOutcome.APPLIED) == 1
        assert outcomes.count(TransitionOutcome.UNCHANGED) == 9
        assert len(audit) == 1
        assert invoices.get("INV-1").state == InvoiceState.DELIVERED
