"""
Configuration module using Pydantic Settings.
Handles environment variables and privacy subsystem configuration.
"""

import os
import tempfile
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Privacy subsystem settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # App settings
    app_name: str = Field(default="clarifi-privacy", description="Application name")
    version: str = Field(default="1.0.0", description="Application version recorded in audit metadata")
    environment: str = Field(default="production", description="Environment name")
    platform: str = Field(default="mobile", description="Client platform recorded in audit metadata")

    # Storage
    data_dir: str = Field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), "clarifi"),
        description="Application document directory"
    )
    secure_exports_dir_name: str = Field(
        default="secure_exports",
        description="Subdirectory of data_dir holding encrypted exports"
    )
    key_value_store_file: str = Field(default="storage.json", description="Local key-value store file name")
    secure_store_file: str = Field(default="secure_store.json", description="Secure store file name")
    secure_store_key: Optional[str] = Field(
        default=None,
        description="Fernet key protecting secure store values at rest"
    )

    # Secure files and download tokens
    token_expiry_hours: int = Field(default=24, ge=1, le=168, description="Download token lifetime in hours")
    max_secure_file_age_hours: int = Field(default=48, ge=1, description="Age after which encrypted files are removed")
    temp_download_ttl_hours: float = Field(default=1, gt=0, description="Lifetime of decrypted download files")
    legacy_export_max_age_hours: int = Field(default=24, ge=1, description="Age after which plaintext exports are removed")

    # Audit
    audit_max_local_events: int = Field(default=1000, ge=1, description="Maximum events kept in the local audit log")
    audit_retention_days: int = Field(default=2555, ge=1, description="Audit event retention in days")
    audit_remote_url: Optional[str] = Field(default=None, description="Remote audit mirror endpoint")
    audit_remote_api_key: Optional[str] = Field(default=None, description="API key for the remote audit mirror")
    audit_remote_timeout_seconds: float = Field(default=10.0, gt=0, description="Remote audit mirror timeout")
    audit_outbox_max_size: int = Field(default=500, ge=1, description="Maximum undelivered events kept for the mirror")

    # Financial data backend
    backend_url: Optional[str] = Field(default=None, description="Financial data backend base URL")
    backend_api_key: Optional[str] = Field(default=None, description="Financial data backend API key")
    backend_timeout_seconds: float = Field(default=30.0, gt=0, description="Backend request timeout")

    # Retention
    purge_interval_days: int = Field(default=7, ge=1, description="Days between scheduled purges")
    purge_history_limit: int = Field(default=10, ge=1, description="Number of purge reports kept")

    # Scheduler
    scheduler_enabled: bool = Field(default=True, description="Start the background scheduler on initialize")
    retention_check_interval_seconds: float = Field(default=3600, gt=0, description="Retention check interval")
    secure_cleanup_interval_seconds: float = Field(default=21600, gt=0, description="Secure cleanup interval")

    # Monitoring and logging
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment."""
        valid_envs = ["development", "testing", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"Invalid environment. Must be one of: {valid_envs}")
        return v.lower()

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_testing(self) -> bool:
        """Check if running in testing mode."""
        return self.environment == "testing"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"

    @property
    def secure_exports_dir(self) -> str:
        """Directory holding encrypted export files."""
        return os.path.join(self.data_dir, self.secure_exports_dir_name)

    @property
    def key_value_store_path(self) -> str:
        return os.path.join(self.data_dir, self.key_value_store_file)

    @property
    def secure_store_path(self) -> str:
        return os.path.join(self.data_dir, self.secure_store_file)


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
