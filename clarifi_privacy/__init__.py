"""
ClariFi privacy subsystem: secure data exports, privacy audit logging and data retention.
"""
from .config import Settings, get_settings
from .context import PrivacyContext
from .logging_config import configure_logging

__version__ = "1.0.0"

__all__ = [
    "PrivacyContext",
    "Settings",
    "configure_logging",
    "get_settings",
]
