"""
Pydantic models for the privacy subsystem.
"""
from .audit import AuditSummary, MirrorState, MirrorStatus, PrivacyAction, PrivacyAuditEvent
from .auth import AuthSession
from .export import DateRange, ExportFormat, ExportOptions, ExportPreview, ExportResult
from .retention import DataRetentionPolicy, DataRetentionSettings, PurgeReport, RetentionPeriod
from .secure_file import (
    CleanupResult,
    DecryptedFile,
    DownloadCredentials,
    FileIntegrity,
    SecureFileInfo,
    TokenState,
)

__all__ = [
    "AuditSummary",
    "AuthSession",
    "CleanupResult",
    "DataRetentionPolicy",
    "DataRetentionSettings",
    "DateRange",
    "DecryptedFile",
    "DownloadCredentials",
    "ExportFormat",
    "ExportOptions",
    "ExportPreview",
    "ExportResult",
    "FileIntegrity",
    "MirrorState",
    "MirrorStatus",
    "PrivacyAction",
    "PrivacyAuditEvent",
    "PurgeReport",
    "RetentionPeriod",
    "SecureFileInfo",
    "TokenState",
]
