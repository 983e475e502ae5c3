"""
Tests for settings and logging configuration.
"""

import logging

import pytest
from pydantic import ValidationError

from apiharvest.config import HarvestSettings, configure_logging, get_settings, reset_settings


class TestSettings:
    """Tests for get_settings."""

    def test_defaults(self, monkeypatch):
        for name in ("APIHARVEST_LOG_LEVEL", "APIHARVEST_STORAGE_DIR", "APIHARVEST_FOREACH_CONCURRENCY"):
            monkeypatch.delenv(name, raising=False)

        settings = get_settings()

        assert settings.log_level == "INFO"
        assert settings.http_timeout == 30.0
        assert settings.foreach_concurrency == 1
        assert settings.retry_default_attempts == 3
        assert settings.storage_dir == "data"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("APIHARVEST_LOG_LEVEL", "debug")
        monkeypatch.setenv("APIHARVEST_HTTP_TIMEOUT", "5")
        monkeypatch.setenv("APIHARVEST_FOREACH_CONCURRENCY", "8")
        monkeypatch.setenv("APIHARVEST_DEBUG", "TRUE")

        settings = get_settings()

        assert settings.log_level == "DEBUG"
        assert settings.http_timeout == 5.0
        assert settings.foreach_concurrency == 8
        assert settings.debug is True

    def test_cached_until_reset(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("APIHARVEST_STORAGE_DIR", "/tmp/elsewhere")

        assert get_settings() is first

        reset_settings()
        assert get_settings().storage_dir == "/tmp/elsewhere"

    def test_invalid_values_rejected(self):
        with pytest.raises(ValidationError):
            HarvestSettings(foreach_concurrency=0)
        with pytest.raises(ValidationError):
            HarvestSettings(log_format="xml")


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.mark.usefixtures("restore_root_logger")
class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_sets_root_level(self):
        configure_logging(HarvestSettings(log_level="WARNING"))
        assert logging.getLogger().level == logging.WARNING

    def test_debug_wins(self):
        configure_logging(HarvestSettings(log_level="ERROR", debug=True))
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
