"""Relógio injetável e parsing de timestamps externos."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]

# Acima disso o valor numérico é tratado como epoch em milissegundos
_EPOCH_MS_THRESHOLD = 10**11


def utc_now() -> datetime:
    """Relógio padrão (UTC, timezone-aware)."""
    return datetime.now(tz=UTC)


def parse_timestamp(value: object) -> datetime | None:
    """Converte timestamp do SEF em datetime UTC.

    Aceita epoch em segundos, epoch em milissegundos (formato usado pelo
    remetente do webhook) ou string ISO-8601. Retorna None se inválido.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    if isinstance(value, int | float):
        seconds = value / 1000 if abs(value) >= _EPOCH_MS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None

    return None
