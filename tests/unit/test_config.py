"""
Tests for configuration module.
"""

import os

import pytest
from pydantic import ValidationError

from clarifi_privacy.config import Settings, get_settings


@pytest.mark.unit
class TestSettings:
    """Test Settings configuration."""

    def test_settings_defaults(self, tmp_path):
        """Test default retention and token values."""
        settings = Settings(data_dir=str(tmp_path))

        assert settings.token_expiry_hours == 24
        assert settings.max_secure_file_age_hours == 48
        assert settings.temp_download_ttl_hours == 1
        assert settings.audit_max_local_events == 1000
        assert settings.audit_retention_days == 2555
        assert settings.purge_interval_days == 7
        assert settings.purge_history_limit == 10

    def test_derived_paths(self, tmp_path):
        """Test store and secure directory paths are rooted in data_dir."""
        settings = Settings(data_dir=str(tmp_path))

        assert settings.secure_exports_dir == os.path.join(str(tmp_path), "secure_exports")
        assert settings.key_value_store_path == os.path.join(str(tmp_path), "storage.json")
        assert settings.secure_store_path == os.path.join(str(tmp_path), "secure_store.json")

    def test_environment_flags(self):
        """Test environment helpers."""
        settings = Settings(environment="Development")

        assert settings.environment == "development"
        assert settings.is_development is True
        assert settings.is_production is False
        assert settings.is_testing is False

    def test_invalid_environment(self):
        """Test invalid environment is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            Settings(environment="qa")

        assert "Invalid environment" in str(exc_info.value)

    def test_log_level_normalized(self):
        """Test log level is upper-cased."""
        settings = Settings(log_level="debug")

        assert settings.log_level == "DEBUG"

    def test_invalid_log_level(self):
        """Test invalid log level is rejected."""
        with pytest.raises(ValidationError):
            Settings(log_level="VERBOSE")

    def test_token_expiry_bounds(self):
        """Test token expiry must stay within one week."""
        with pytest.raises(ValidationError):
            Settings(token_expiry_hours=0)
        with pytest.raises(ValidationError):
            Settings(token_expiry_hours=200)

    def test_settings_from_environment(self, tmp_path):
        """Test settings read from environment variables."""
        os.environ["DATA_DIR"] = str(tmp_path)
        os.environ["TOKEN_EXPIRY_HOURS"] = "12"
        os.environ["AUDIT_REMOTE_URL"] = "https://audit.example.com/rest/v1/privacy_audit_logs"

        settings = Settings()

        assert settings.data_dir == str(tmp_path)
        assert settings.token_expiry_hours == 12
        assert settings.audit_remote_url == "https://audit.example.com/rest/v1/privacy_audit_logs"

    def test_get_settings_returns_global_instance(self):
        """Test get_settings returns the module-level instance."""
        assert get_settings() is get_settings()
