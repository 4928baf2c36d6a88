"""
Custom exceptions for the privacy subsystem.
All business logic and technical exceptions are defined here.
"""

from typing import List, Optional


class AppException(Exception):
    """Base exception for all privacy subsystem exceptions."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        retryable: bool = False,
        details: Optional[List[str]] = None
    ):
        self.message = message
        self.code = code
        self.retryable = retryable
        self.details = details or []
        super().__init__(self.message)


class ValidationError(AppException):
    """Raised when input validation fails."""

    def __init__(
        self,
        message: str = "Validation error",
        details: Optional[List[str]] = None
    ):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details=details
        )


class AuthenticationError(AppException):
    """Raised when an operation requires an authenticated user."""

    def __init__(
        self,
        message: str = "Authentication required",
        details: Optional[List[str]] = None
    ):
        super().__init__(
            message=message,
            code="AUTHENTICATION_ERROR",
            details=details
        )


class EncryptionError(AppException):
    """Raised when a file cannot be encrypted and tokenized."""

    def __init__(
        self,
        message: str = "File encryption failed",
        details: Optional[List[str]] = None
    ):
        super().__init__(
            message=message,
            code="ENCRYPTION_ERROR",
            retryable=True,
            details=details
        )


class DecryptionError(AppException):
    """Raised when an encrypted file is missing or cannot be authenticated."""

    def __init__(
        self,
        message: str = "File decryption failed",
        details: Optional[List[str]] = None
    ):
        super().__init__(
            message=message,
            code="DECRYPTION_ERROR",
            details=details
        )


class TokenInvalidError(AppException):
    """Raised when a download token is unknown or cannot be redeemed."""

    def __init__(
        self,
        message: str = "Invalid download token",
        details: Optional[List[str]] = None
    ):
        super().__init__(
            message=message,
            code="TOKEN_INVALID",
            details=details
        )


class TokenExpiredError(AppException):
    """Raised when a download token is past its expiry."""

    def __init__(
        self,
        message: str = "Download token has expired",
        details: Optional[List[str]] = None
    ):
        super().__init__(
            message=message,
            code="TOKEN_EXPIRED",
            details=details
        )


class KeyNotFoundError(AppException):
    """Raised when a user's encryption key is gone. Files under it are unrecoverable."""

    def __init__(
        self,
        message: str = "Encryption key not found",
        user_id: Optional[str] = None
    ):
        super().__init__(
            message=message,
            code="ENCRYPTION_KEY_NOT_FOUND",
            retryable=False,
            details=[f"User: {user_id}"] if user_id else []
        )


class IntegrityViolationError(AppException):
    """Raised when decrypted content does not match the recorded checksum."""

    def __init__(
        self,
        message: str = "File integrity check failed",
        expected_checksum: Optional[str] = None,
        actual_checksum: Optional[str] = None
    ):
        details = []
        if expected_checksum:
            details.append(f"Expected: {expected_checksum[:16]}")
        if actual_checksum:
            details.append(f"Actual: {actual_checksum[:16]}")

        super().__init__(
            message=message,
            code="INTEGRITY_VIOLATION",
            details=details
        )


class BusinessLogicError(AppException):
    """Raised when business rules are violated."""

    def __init__(
        self,
        message: str = "Business logic error",
        code: str = "BUSINESS_LOGIC_ERROR",
        details: Optional[List[str]] = None
    ):
        super().__init__(
            message=message,
            code=code,
            details=details
        )


class PolicyViolationError(BusinessLogicError):
    """Raised when an operation conflicts with the retention policy or user settings."""

    def __init__(
        self,
        message: str = "Operation not permitted by retention policy",
        details: Optional[List[str]] = None
    ):
        super().__init__(
            message=message,
            code="POLICY_VIOLATION",
            details=details
        )


class StorageError(AppException):
    """Raised when local storage operations fail."""

    def __init__(
        self,
        message: str = "Storage operation failed",
        details: Optional[List[str]] = None
    ):
        super().__init__(
            message=message,
            code="STORAGE_ERROR",
            retryable=True,
            details=details
        )


class ExternalServiceError(AppException):
    """Raised when external service calls fail."""

    def __init__(
        self,
        message: str = "External service error",
        service_name: str = "unknown",
        details: Optional[List[str]] = None
    ):
        super().__init__(
            message=message,
            code="EXTERNAL_SERVICE_ERROR",
            retryable=True,
            details=details or [f"Service: {service_name}"]
        )
