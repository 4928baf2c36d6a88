"""
Secure file and download token models.
"""
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .base import TimestampedModel
from ..utils.formatting import utc_now


class TokenState(str, Enum):
    """Lifecycle of a download token. Every state except ISSUED is terminal."""
    ISSUED = "issued"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    REVOKED = "revoked"


class SecureFileInfo(BaseModel):
    """Result of encrypting an export file."""
    encrypted_path: str = Field(..., description="Path of the ciphertext file")
    checksum: str = Field(..., description="SHA-256 hex digest of the plaintext")
    download_token: str = Field(..., description="Single-use download token")
    expires_at: datetime = Field(..., description="Token expiry")
    original_size: int = Field(..., ge=0, description="Plaintext size in bytes")
    encrypted_size: int = Field(..., ge=0, description="Ciphertext file size in bytes")


class DownloadCredentials(TimestampedModel):
    """Credential record stored under a download token."""
    token: str = Field(...)
    expires_at: datetime = Field(...)
    file_id: str = Field(..., description="Export identifier the token unlocks")
    checksum_verification: str = Field(..., description="Plaintext checksum recorded at encryption time")
    user_id: str = Field(..., description="Owner of the encrypted file")
    encrypted_file: str = Field(..., description="Ciphertext file name inside the secure directory")
    content_type: str = Field(default="application/octet-stream")

    def is_expired(self, now: datetime = None) -> bool:
        return (now or utc_now()) > self.expires_at


class FileIntegrity(BaseModel):
    """Checksum comparison performed on decryption."""
    original_checksum: str
    verified_checksum: str
    is_valid: bool
    timestamp: datetime = Field(default_factory=utc_now)


class DecryptedFile(BaseModel):
    """A decrypted, integrity-checked temporary file."""
    file_path: str
    file_id: str
    content_type: str = "application/octet-stream"
    integrity: FileIntegrity


class CleanupResult(BaseModel):
    """Outcome of a secure cleanup pass."""
    files_deleted: int = Field(default=0, ge=0)
    tokens_revoked: int = Field(default=0, ge=0)
    legacy_exports_deleted: int = Field(default=0, ge=0)
