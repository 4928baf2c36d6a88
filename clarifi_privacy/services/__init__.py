"""
Privacy services.
"""
from .audit_service import PrivacyAuditService, RemoteAuditMirror
from .export import DataExportService
from .retention import DataRetentionService
from .scheduler import PrivacyScheduler, ScheduledJob
from .secure_file import SecureFileService

__all__ = [
    "DataExportService",
    "DataRetentionService",
    "PrivacyAuditService",
    "PrivacyScheduler",
    "RemoteAuditMirror",
    "ScheduledJob",
    "SecureFileService",
]
