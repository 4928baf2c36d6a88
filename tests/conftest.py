"""
Global pytest configuration and fixtures.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest
from cryptography.fernet import Fernet

from clarifi_privacy.config import Settings
from clarifi_privacy.infrastructure.backend import FinancialBackend
from clarifi_privacy.infrastructure.storage import KeyValueStore, SecureStore
from clarifi_privacy.models.auth import AuthSession
from clarifi_privacy.services.audit_service import PrivacyAuditService
from clarifi_privacy.services.export import DataExportService
from clarifi_privacy.services.retention import DataRetentionService
from clarifi_privacy.services.secure_file import SecureFileService
from clarifi_privacy.utils.exceptions import ExternalServiceError


class FakeFinancialBackend(FinancialBackend):
    """In-memory backend serving transaction rows."""

    def __init__(
        self,
        session: Optional[AuthSession] = None,
        transactions: Optional[List[Dict[str, Any]]] = None,
        category_rows: Optional[List[Dict[str, Any]]] = None
    ):
        self.session = session
        self.transactions = transactions or []
        self.category_rows = category_rows or []
        self.fail_transactions = False
        self.fail_categories = False
        self.closed = False

    async def get_session(self) -> Optional[AuthSession]:
        return self.session

    async def fetch_transactions(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        if self.fail_transactions:
            raise ExternalServiceError("Backend unavailable", service_name="fake-backend")
        rows = [t for t in self.transactions if start_date <= t["date"] <= end_date]
        return sorted(rows, key=lambda t: t["date"], reverse=True)

    async def fetch_category_transactions(self) -> List[Dict[str, Any]]:
        if self.fail_categories:
            raise ExternalServiceError("Backend unavailable", service_name="fake-backend")
        return list(self.category_rows)

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Test settings rooted in a per-test data directory."""
    return Settings(
        app_name="clarifi-privacy-test",
        version="1.0.0-test",
        environment="testing",
        platform="test",

        # Storage
        data_dir=str(tmp_path),
        secure_store_key=Fernet.generate_key().decode(),

        # External
        audit_remote_url=None,
        backend_url=None,

        # Scheduler off unless a test starts it
        scheduler_enabled=False,

        # Monitoring
        log_level="DEBUG",
    )


@pytest.fixture
def user_session() -> AuthSession:
    """Signed-in user."""
    return AuthSession(
        user_id="user_123",
        email="test@example.com",
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        last_sign_in_at=datetime(2024, 6, 1, 9, 30, tzinfo=timezone.utc),
        access_token="test-access-token",
    )


@pytest.fixture
def fake_backend(user_session) -> FakeFinancialBackend:
    """Backend with a signed-in user and no transactions."""
    return FakeFinancialBackend(session=user_session)


@pytest.fixture
def kv_store(test_settings) -> KeyValueStore:
    return KeyValueStore(test_settings.key_value_store_path)


@pytest.fixture
def secure_store(test_settings) -> SecureStore:
    return SecureStore(test_settings.secure_store_path, test_settings.secure_store_key)


@pytest.fixture
def audit_service(kv_store, test_settings) -> PrivacyAuditService:
    return PrivacyAuditService(kv_store, test_settings)


@pytest.fixture
def secure_file_service(secure_store, test_settings) -> SecureFileService:
    return SecureFileService(secure_store, test_settings)


@pytest.fixture
def shared_files() -> List[Dict[str, Any]]:
    """Files handed to the share handler, in order."""
    return []


@pytest.fixture
def share_handler(shared_files):
    """Share handler that records the decrypted content it receives."""
    async def handler(path: str, content_type: str) -> None:
        with open(path, encoding="utf-8") as f:
            shared_files.append({"path": path, "content": f.read(), "content_type": content_type})
    return handler


@pytest.fixture
def export_service(
    kv_store,
    fake_backend,
    secure_file_service,
    audit_service,
    test_settings,
    share_handler
) -> DataExportService:
    return DataExportService(
        kv_store,
        fake_backend,
        secure_file_service,
        audit_service,
        test_settings,
        share_handler=share_handler,
    )


@pytest.fixture
def retention_service(kv_store, audit_service, test_settings) -> DataRetentionService:
    return DataRetentionService(kv_store, audit_service, test_settings)


@pytest.fixture(autouse=True)
def reset_environment():
    """Reset environment variables after each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)


# Pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests (>1s)")
    config.addinivalue_line("markers", "external: Tests requiring external services")
    config.addinivalue_line("markers", "security: Security-focused tests")
