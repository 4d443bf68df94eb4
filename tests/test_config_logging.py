"""Tests for settings, structlog configuration and the service factory."""

from __future__ import annotations

import structlog

from src.chargecrm.config import Environment, Settings, StoreBackend
from src.chargecrm.core.storage import MemoryKeyValueStore
from src.chargecrm.customers.schemas import CustomerSource
from src.chargecrm.main import create_customer_service
from src.chargecrm.observability import configure_structlog


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("ENVIRONMENT", "CRM_STORE_BACKEND", "CRM_HTTP_TIMEOUT", "CRM_HTTP_MAX_ATTEMPTS"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.ENVIRONMENT is Environment.development
        assert settings.CRM_STORE_BACKEND is StoreBackend.file
        assert settings.HUBSPOT_API_BASE_URL == "https://api.hubapi.com"
        assert settings.PIPEDRIVE_API_BASE_URL == "https://api.pipedrive.com/v1"
        assert settings.CRM_HTTP_TIMEOUT is None
        assert settings.CRM_HTTP_MAX_ATTEMPTS == 1

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("CRM_HTTP_MAX_ATTEMPTS", "3")
        monkeypatch.setenv("CRM_STORE_BACKEND", "redis")
        monkeypatch.setenv("CRM_HTTP_TIMEOUT", "2.5")

        settings = Settings(_env_file=None)

        assert settings.CRM_HTTP_MAX_ATTEMPTS == 3
        assert settings.CRM_STORE_BACKEND is StoreBackend.redis
        assert settings.CRM_HTTP_TIMEOUT == 2.5


class TestConfigureStructlog:
    def test_production_renders_json(self):
        configure_structlog(Settings(_env_file=None, ENVIRONMENT=Environment.production))
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_development_renders_console(self):
        configure_structlog(Settings(_env_file=None, ENVIRONMENT=Environment.development))
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)

    def test_unknown_level_falls_back(self):
        configure_structlog(Settings(_env_file=None, LOG_LEVEL="chatty"))
        structlog.get_logger("test").info("config.smoke")


class TestCreateCustomerService:
    def test_builds_native_service(self, settings):
        store = MemoryKeyValueStore()

        service = create_customer_service(settings, store=store)

        assert service.get_active_provider().name is CustomerSource.NATIVE
        assert service.get_available_providers() == list(CustomerSource)

    def test_uses_configured_store(self, settings):
        service = create_customer_service(settings)
        assert service.get_config().provider is CustomerSource.NATIVE
