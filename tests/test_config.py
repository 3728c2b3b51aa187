"""
Tests for settings and logging setup.

Validates:
- Environment overrides with the PENSION_ prefix
- Structured logging configuration for both renderers
"""

from __future__ import annotations

import pytest
import structlog

from pension_ledger.config import PensionSettings
from pension_ledger.logging_config import configure_logging


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("PENSION_ADMINISTRATOR_ID", raising=False)
        config = PensionSettings(_env_file=None)
        assert config.administrator_id == "fund-administrator"
        assert config.database_url.startswith("sqlite")

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("PENSION_ADMINISTRATOR_ID", "treasurer-7")
        monkeypatch.setenv("PENSION_DATABASE_URL", "sqlite://")
        config = PensionSettings(_env_file=None)
        assert config.administrator_id == "treasurer-7"
        assert config.database_url == "sqlite://"


class TestLogging:
    @pytest.mark.parametrize("log_format", ["json", "console"])
    def test_configure_logging(self, log_format, capfd):
        configure_logging(PensionSettings(_env_file=None, log_format=log_format, log_level="debug"))
        structlog.get_logger().info("pension_ledger.test.event", ledger="allocation")
        assert "pension_ledger.test.event" in capfd.readouterr().out

    def test_unknown_level_falls_back(self):
        configure_logging(PensionSettings(_env_file=None, log_level="chatty"))
