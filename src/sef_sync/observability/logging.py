"""Logging estruturado do serviço (JSON via python-json-logger)."""

from __future__ import annotations

import logging

from pythonjsonlogger.json import JsonFormatter

from sef_sync.observability.middleware import get_correlation_id

_JSON_FIELDS = "%(asctime)s %(levelname)s %(name)s %(message)s %(correlation_id)s %(service)s"
_TEXT_FORMAT = "%(asctime)s %(levelname)-7s [%(correlation_id)s] %(name)s: %(message)s"

# Chaves de `extra` que nunca podem ir por inteiro para o log
SENSITIVE_KEYS = frozenset({"api_key", "authorization", "secret", "signature", "token"})


def mask_secret(value: str | None, visible: int = 8) -> str:
    """Retorna apenas o prefixo de um valor sensível (assinatura, nonce).

    Exemplo:
        mask_secret("sha256=abcdef0123456789") -> "sha256=a..."
    """
    if not value:
        return ""
    if len(value) <= visible:
        return "***"
    return value[:visible] + "..."


class ServiceContextFilter(logging.Filter):
    """Anexa service, environment e correlation_id a cada record.

    Também mascara campos de `extra` listados em SENSITIVE_KEYS; payloads
    brutos de faturas não devem ser logados de forma alguma.
    """

    def __init__(self, service_name: str, environment: str) -> None:
        super().__init__()
        self._service_name = service_name
        self._environment = environment

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id() or "-"
        record.service = self._service_name
        record.environment = self._environment
        for key in SENSITIVE_KEYS:
            value = record.__dict__.get(key)
            if isinstance(value, str):
                record.__dict__[key] = mask_secret(value)
        return True


def configure_logging(
    level: str,
    service_name: str,
    *,
    environment: str = "development",
    json_format: bool = True,
) -> None:
    """Substitui os handlers do root logger por um handler de stdout.

    `json_format=False` produz linhas legíveis para desenvolvimento local.
    """
    if json_format:
        formatter: logging.Formatter = JsonFormatter(
            _JSON_FIELDS,
            rename_fields={"levelname": "level", "name": "logger"},
        )
    else:
        formatter = logging.Formatter(_TEXT_FORMAT)

    handler = logging.StreamHandler()
    handler.setLevel(level.upper())
    handler.setFormatter(formatter)
    handler.addFilter(ServiceContextFilter(service_name, environment))

    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers = [handler]

    # httpx loga cada request em INFO (inclui URLs com ids do SEF)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Retorna logger do módulo; o filtro do handler injeta o contexto."""

    return logging.getLogger(name)
