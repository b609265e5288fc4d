"""
Tests for configuration loading.
"""

import logging

import pytest
import structlog

from ledger.audit import configure_logging
from ledger.config import DatabaseSettings, LedgerSettings, Settings, get_settings
from ledger.config.settings import validate_all_settings
from ledger.orchestrator import create_ledger


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LEDGER_DEFAULT_CURRENCY", raising=False)
        monkeypatch.delenv("LEDGER_DB_URL", raising=False)

        ledger = LedgerSettings(_env_file=None)
        database = DatabaseSettings(_env_file=None)

        assert ledger.default_currency == "USD"
        assert ledger.goal_account_prefix == "💰 "
        assert ledger.upcoming_window_days == 7
        assert ledger.report_months == 6
        assert database.url == "sqlite:///ledger.db"
        assert database.is_sqlite is True

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("LEDGER_DEFAULT_CURRENCY", "EUR")
        monkeypatch.setenv("LEDGER_REPORT_MONTHS", "12")
        monkeypatch.setenv("LEDGER_DB_URL", "postgresql://ledger@localhost/ledger")

        settings = Settings()

        assert settings.ledger.default_currency == "EUR"
        assert settings.ledger.report_months == 12
        assert settings.database.url == "postgresql://ledger@localhost/ledger"
        assert settings.database.is_sqlite is False

    def test_database_url_needs_scheme(self):
        with pytest.raises(ValueError, match="scheme"):
            DatabaseSettings(url="ledger.db")

    def test_out_of_range_window_rejected(self):
        with pytest.raises(ValueError):
            LedgerSettings(upcoming_window_days=0)

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        assert get_settings() is get_settings()
        get_settings.cache_clear()

    def test_validate_all_settings(self, monkeypatch):
        monkeypatch.setenv("LEDGER_REPORT_MONTHS", "0")

        results = validate_all_settings(Settings())

        assert results["database"] is True
        assert results["ledger"] is False
        assert "report_months" in results["ledger_error"]


class TestLoggingSettings:
    """Tests for the logging setup driven by environment and debug_mode."""

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        yield
        configure_logging()

    def test_development_uses_console_renderer(self):
        configure_logging("development", debug=True)

        renderer = structlog.get_config()["processors"][-1]
        assert isinstance(renderer, structlog.dev.ConsoleRenderer)
        assert logging.getLogger("ledger").level == logging.DEBUG

    def test_other_environments_log_json(self):
        configure_logging("production")

        renderer = structlog.get_config()["processors"][-1]
        assert isinstance(renderer, structlog.processors.JSONRenderer)
        assert logging.getLogger("ledger").level == logging.INFO

    async def test_create_ledger_applies_settings(self, monkeypatch):
        monkeypatch.setenv("LEDGER_ENVIRONMENT", "staging")
        monkeypatch.setenv("LEDGER_DEBUG_MODE", "true")
        monkeypatch.setenv("LEDGER_DB_URL", "sqlite://")

        service = await create_ledger(Settings(), use_audit_storage=False)
        try:
            renderer = structlog.get_config()["processors"][-1]
            assert isinstance(renderer, structlog.processors.JSONRenderer)
            assert logging.getLogger("ledger").level == logging.DEBUG
        finally:
            await service.close()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
