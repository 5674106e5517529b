"""Medição de latência por etapa (submit, poll, reconcile)."""

from __future__ import annotations

import contextlib
import time
from collections.abc import Generator
from typing import Any

from sef_sync.observability.logging import get_logger

logger = get_logger(__name__)


@contextlib.contextmanager
def timed(component: str, **fields: Any) -> Generator[dict[str, Any], None, None]:
    """Mede a duração do bloco e emite `component_latency`.

    O dict retornado pode ser enriquecido dentro do bloco; as chaves
    acabam no log junto com `elapsed_ms` e `outcome` ("ok" ou "error").

        with timed("reconcile") as metrics:
            metrics["polled"] = 3
    """
    metrics: dict[str, Any] = dict(fields)
    outcome = "error"
    start = time.perf_counter()
    try:
        yield metrics
        outcome = "ok"
    finally:
        logger.info(
            "component_latency",
            extra={
                **metrics,
                "component": component,
                "outcome": outcome,
                "elapsed_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )
