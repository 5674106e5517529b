"""Testes de validação das configurações."""

from __future__ import annotations

from sef_sync.config.settings import SEF_PRODUCTION_BASE_URL, Settings


class TestSettingsValidation:
    def test_development_defaults_are_valid(self):
        assert Settings(environment="development").validate_all() == []

    def test_production_requires_webhook_secret_and_redis(self):
        errors = Settings(environment="production").validate_all()

        assert any("SEF_WEBHOOK_SECRET" in e for e in errors)
        assert any("NONCE_BACKEND=memory" in e for e in errors)
        assert any("IDEMPOTENCY_BACKEND=memory" in e for e in errors)

    def test_production_with_redis_is_valid(self):
        settings = Settings(
            environment="production",
            sef_webhook_secret="secret",
            nonce_backend="redis",
            idempotency_backend="redis",
            redis_url="redis://localhost:6379",
        )
        assert settings.validate_all() == []

    def test_redis_backend_requires_url(self):
        errors = Settings(nonce_backend="redis").validate_webhook_config()
        assert errors == ["NONCE_BACKEND=redis requer REDIS_URL configurado"]

    def test_invalid_maintenance_window(self):
        errors = Settings(
            sef_maintenance_start_hour=6, sef_maintenance_end_hour=1
        ).validate_sef_config()
        assert len(errors) == 1

    def test_invalid_sef_environment(self):
        errors = Settings(sef_environment="sandbox").validate_sef_config()
        assert errors == ["SEF_ENVIRONMENT inválido: use demo | production"]

    def test_negative_retries(self):
        assert Settings(sef_retry_attempts=-1).validate_sef_config()


def test_base_url_follows_environment_flag():
    assert Settings(sef_environment="production").sef_base_url == SEF_PRODUCTION_BASE_URL
    assert Settings(sef_environment="demo").sef_base_url.startswith("https://demo")
