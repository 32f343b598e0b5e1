"""
Tests for environment-driven configuration
"""

from lending_core.config import LendingConfig, get_config, reload_config


class TestConfig:
    """Test environment-driven settings"""

    def test_defaults(self):
        settings = LendingConfig(_env_file=None)
        assert settings.default_threshold_days == 60
        assert settings.score_no_history == 650
        assert settings.max_installments == 12
        assert settings.affordability_buffer_percent == "20"
        assert settings.affordability_target_dti_percent == "35"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("LENDING_STORAGE_BACKEND", "memory")
        monkeypatch.setenv("LENDING_LOCK_TIMEOUT_SECONDS", "0.5")

        settings = LendingConfig(_env_file=None)
        assert settings.storage_backend == "memory"
        assert settings.lock_timeout_seconds == 0.5

    def test_reload_replaces_global(self, monkeypatch):
        monkeypatch.setenv("LENDING_DEFAULT_THRESHOLD_DAYS", "45")
        try:
            reloaded = reload_config()
            assert reloaded.default_threshold_days == 45
            assert get_config() is reloaded
        finally:
            monkeypatch.delenv("LENDING_DEFAULT_THRESHOLD_DAYS")
            reload_config()
