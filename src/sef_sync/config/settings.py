"""Configurações da aplicação via variáveis de ambiente.

Todas as configurações são carregadas de env vars.
Nunca hardcode secrets ou valores sensíveis (API key do SEF, secret do webhook).
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

# -----------------------------------------------------------------------------
# Endpoints públicos do SEF (Sistem Elektronskih Faktura)
# -----------------------------------------------------------------------------
SEF_DEMO_BASE_URL: str = "https://demoefaktura.mfin.gov.rs"
SEF_PRODUCTION_BASE_URL: str = "https://efaktura.mfin.gov.rs"

_VALID_BACKENDS = {"memory", "redis"}


class Settings(BaseSettings):
    """Configurações lidas do ambiente."""

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)

    # Aplicação
    service_name: str = "sef_sync"
    version: str = "0.1.0"
    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = True  # False: formato texto para uso local
    timezone: str = "Europe/Belgrade"

    # Exchange (SEF)
    sef_api_key: str | None = None  # Bearer token da empresa
    sef_environment: str = "demo"  # demo | production
    sef_company_pib: str | None = None  # PIB da empresa emissora
    sef_demo_base_url: str = SEF_DEMO_BASE_URL
    sef_production_base_url: str = SEF_PRODUCTION_BASE_URL
    sef_request_timeout_seconds: float = 30.0
    sef_retry_attempts: int = 3  # Retries após a primeira tentativa
    sef_retry_base_delay_seconds: float = 1.0
    sef_retry_max_delay_seconds: float = 30.0
    sef_maintenance_start_hour: int = 1  # Pausa noturna (hora local do SEF)
    sef_maintenance_end_hour: int = 6  # start == end desativa a janela
    sef_timezone: str = "Europe/Belgrade"

    # Webhook inbound
    sef_webhook_secret: str | None = None  # HMAC SHA-256 secret
    webhook_timestamp_tolerance_seconds: int = 300
    webhook_require_timestamp: bool = True
    webhook_nonce_ttl_seconds: int = 300
    webhook_nonce_max_entries: int = 10000
    nonce_backend: str = "memory"  # memory | redis

    # Idempotência de requests
    idempotency_backend: str = "memory"  # memory | redis
    redis_url: str | None = None
    idempotency_ttl_seconds: int = 3600
    idempotency_fallback_max_entries: int = 10000
    idempotency_required: bool = False
    actor_id_header: str = "X-Actor-Id"
    # Rotas fora do middleware (JSON no env: '["/webhooks/sef"]')
    idempotency_exempt_paths: list[str] = ["/webhooks/sef"]

    # Reconciliação periódica (pull)
    reconcile_enabled: bool = False
    reconcile_interval_seconds: int = 300
    reconcile_batch_size: int = 50

    # Endpoints internos/administrativos
    internal_task_token: str | None = None
    internal_token_header: str = "X-Internal-Token"

    @property
    def is_production(self) -> bool:
        """Retorna True se ambiente é produção."""
        return self.environment.lower() in ("production", "prod")

    @property
    def is_staging(self) -> bool:
        """Retorna True se ambiente é staging."""
        return self.environment.lower() in ("staging", "stage")

    @property
    def is_development(self) -> bool:
        """Retorna True se ambiente é desenvolvimento."""
        return self.environment.lower() in ("development", "dev", "local")

    @property
    def sef_base_url(self) -> str:
        """URL base do SEF conforme flag de ambiente (demo vs produção)."""
        if self.sef_environment.lower() == "production":
            return self.sef_production_base_url
        return self.sef_demo_base_url

    def validate_sef_config(self) -> list[str]:
        """Valida configuração do cliente outbound.

        Retorna lista de erros (vazia = OK).
        """
        errors: list[str] = []
        if self.sef_environment.lower() not in {"demo", "production"}:
            errors.append("SEF_ENVIRONMENT inválido: use demo | production")
        if self.sef_retry_attempts < 0:
            errors.append("SEF_RETRY_ATTEMPTS deve ser >= 0")
        if self.sef_request_timeout_seconds <= 0:
            errors.append("SEF_REQUEST_TIMEOUT_SECONDS deve ser > 0")
        if self.sef_retry_base_delay_seconds > self.sef_retry_max_delay_seconds:
            errors.append("SEF_RETRY_BASE_DELAY_SECONDS maior que SEF_RETRY_MAX_DELAY_SECONDS")
        start, end = self.sef_maintenance_start_hour, self.sef_maintenance_end_hour
        if not (0 <= start <= 23 and 0 <= end <= 24) or start > end:
            errors.append("Janela de manutenção inválida (start <= end, horas 0-24)")
        return errors

    def validate_webhook_config(self) -> list[str]:
        """Valida segurança do webhook.

        Sem secret o filtro fica em modo relaxado; isso só é aceito fora de
        staging/produção.
        """
        errors: list[str] = []
        if (self.is_staging or self.is_production) and not self.sef_webhook_secret:
            errors.append("SEF_WEBHOOK_SECRET obrigatório em staging/production")
        if self.webhook_timestamp_tolerance_seconds <= 0:
            errors.append("WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS deve ser > 0")
        if self.webhook_nonce_max_entries <= 0:
            errors.append("WEBHOOK_NONCE_MAX_ENTRIES deve ser > 0")
        errors.extend(self._validate_backend("NONCE_BACKEND", self.nonce_backend))
        return errors

    def validate_idempotency_config(self) -> list[str]:
        """Valida backend de idempotência de requests."""
        errors = self._validate_backend("IDEMPOTENCY_BACKEND", self.idempotency_backend)
        if self.idempotency_ttl_seconds <= 0:
            errors.append("IDEMPOTENCY_TTL_SECONDS deve ser > 0")
        return errors

    def validate_reconcile_config(self) -> list[str]:
        """Valida loop de reconciliação."""
        errors: list[str] = []
        if self.reconcile_enabled and self.reconcile_interval_seconds <= 0:
            errors.append("RECONCILE_INTERVAL_SECONDS deve ser > 0")
        if self.reconcile_batch_size <= 0:
            errors.append("RECONCILE_BATCH_SIZE deve ser > 0")
        return errors

    def _validate_backend(self, name: str, value: str) -> list[str]:
        errors: list[str] = []
        backend = value.lower()
        if backend not in _VALID_BACKENDS:
            errors.append(f"{name} '{backend}' inválido. Valores válidos: {_VALID_BACKENDS}")
        if backend == "memory" and (self.is_staging or self.is_production):
            errors.append(
                f"{name}=memory é proibido em staging/production. "
                "Configure Redis para consistência entre instâncias."
            )
        if backend == "redis" and not self.redis_url:
            errors.append(f"{name}=redis requer REDIS_URL configurado")
        return errors

    def validate_all(self) -> list[str]:
        """Agrega todas as validações."""
        errors: list[str] = []
        errors.extend(self.validate_sef_config())
        errors.extend(self.validate_webhook_config())
        errors.extend(self.validate_idempotency_config())
        errors.extend(self.validate_reconcile_config())
        return errors


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Retorna uma instância cacheada de Settings.

    A cache garante que mesmo múltiplas injeções não criam novos objetos.
    """
    return Settings()
