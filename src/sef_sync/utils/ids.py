"""Geradores de identificadores."""

from __future__ import annotations

import uuid


def new_record_id() -> str:
    """Gera um id único para registros append-only (webhook log, auditoria)."""

    return str(uuid.uuid4())
