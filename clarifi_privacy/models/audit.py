"""
Privacy audit models.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..utils.formatting import utc_now


class PrivacyAction(str, Enum):
    """Privacy-relevant actions recorded in the audit log."""
    # Export
    EXPORT_REQUEST = "export_request"
    EXPORT_GENERATED = "export_generated"
    EXPORT_DOWNLOADED = "export_downloaded"
    EXPORT_FAILED = "export_failed"

    # Consent
    CONSENT_GRANTED = "consent_granted"
    CONSENT_WITHDRAWN = "consent_withdrawn"
    CONSENT_UPDATED = "consent_updated"
    CONSENT_VIEWED = "consent_viewed"

    # Data access
    DATA_ACCESSED = "data_accessed"
    PROFILE_VIEWED = "profile_viewed"
    SETTINGS_CHANGED = "settings_changed"

    # Privacy controls
    PRIVACY_SETTINGS_VIEWED = "privacy_settings_viewed"
    PRIVACY_SETTINGS_UPDATED = "privacy_settings_updated"
    DATA_DELETION_REQUEST = "data_deletion_request"
    DATA_PORTABILITY_REQUEST = "data_portability_request"

    # Authentication
    LOGIN_ATTEMPT = "login_attempt"
    LOGOUT = "logout"
    BIOMETRIC_ENABLED = "biometric_enabled"
    BIOMETRIC_DISABLED = "biometric_disabled"

    # File security
    FILE_ENCRYPTED = "file_encrypted"
    FILE_DECRYPTED = "file_decrypted"
    SECURE_DELETE = "secure_delete"
    TOKEN_GENERATED = "token_generated"
    TOKEN_REVOKED = "token_revoked"

    # System
    PRIVACY_POLICY_VIEWED = "privacy_policy_viewed"
    TERMS_VIEWED = "terms_viewed"
    COMPLIANCE_CHECK = "compliance_check"
    DATA_PURGED = "data_purged"


class PrivacyAuditEvent(BaseModel):
    """A single append-only audit record."""
    id: str = Field(..., description="Event identifier")
    user_id: str = Field(..., description="Acting user or 'anonymous'/'system'")
    action: PrivacyAction
    resource: str = Field(..., description="Resource the action applied to")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None
    compliance_note: Optional[str] = None


class AuditSummary(BaseModel):
    """Per-user digest of the audit log."""
    total_events: int = 0
    events_by_action: Dict[PrivacyAction, int] = Field(default_factory=dict)
    last_activity: Optional[datetime] = None
    compliance_score: float = Field(default=100.0, ge=0, le=100)
    risk_events: List[PrivacyAuditEvent] = Field(default_factory=list)


class MirrorState(str, Enum):
    """Health of the remote audit mirror."""
    DISABLED = "disabled"
    HEALTHY = "healthy"
    DEGRADED = "degraded"


class MirrorStatus(BaseModel):
    """Observable state of the remote audit mirror."""
    state: MirrorState
    pending_events: int = 0
    last_error: Optional[str] = None
    last_success_at: Optional[datetime] = None
