"""
Tests for environment-based configuration
"""

from backoffice import config as config_module
from backoffice.config import BackofficeConfig, get_config, reload_config


class TestBackofficeConfig:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("BACKOFFICE_STORAGE_BACKEND", raising=False)
        monkeypatch.delenv("BACKOFFICE_API_PORT", raising=False)
        settings = BackofficeConfig(_env_file=None)

        assert settings.storage_backend == "sqlite"
        assert settings.api_port == 3001
        assert settings.currency == "EUR"
        assert settings.bootstrap_admin_password == ""
        assert settings.webhook_url == ""
        assert settings.enable_audit_logging is True

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("BACKOFFICE_STORAGE_BACKEND", "memory")
        monkeypatch.setenv("BACKOFFICE_API_PORT", "8080")
        monkeypatch.setenv("BACKOFFICE_WEBHOOK_ASYNC", "false")

        settings = BackofficeConfig(_env_file=None)

        assert settings.storage_backend == "memory"
        assert settings.api_port == 8080
        assert settings.webhook_async is False

    def test_reload_replaces_global(self, monkeypatch):
        original = get_config()
        monkeypatch.setenv("BACKOFFICE_LOG_LEVEL", "DEBUG")
        try:
            reloaded = reload_config()
            assert reloaded.log_level == "DEBUG"
            assert get_config() is reloaded
        finally:
            monkeypatch.setattr(config_module, "config", original)
