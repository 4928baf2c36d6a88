"""
Privacy context wiring the stores and services together.

One ``PrivacyContext`` owns every service instance for a process. Nothing
runs until ``initialize()``; ``shutdown()`` stops the scheduler, removes
pending decrypted downloads and closes network clients.
"""
import os
from typing import Optional

import structlog

from .config import Settings, get_settings
from .infrastructure.backend import FinancialBackend, HttpFinancialBackend
from .infrastructure.storage import KeyValueStore, SecureStore
from .services.audit_service import PrivacyAuditService
from .services.export import DataExportService, ShareHandler
from .services.retention import DataRetentionService
from .services.scheduler import PrivacyScheduler
from .services.secure_file import SecureFileService

logger = structlog.get_logger()


class PrivacyContext:
    """Explicit owner of the privacy subsystem's services and lifecycle."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        backend: Optional[FinancialBackend] = None,
        share_handler: Optional[ShareHandler] = None
    ):
        self.settings = settings or get_settings()

        if backend is None:
            if not self.settings.backend_url:
                raise ValueError("A financial backend or backend_url is required")
            backend = HttpFinancialBackend(self.settings)
        self.backend = backend

        if not self.settings.secure_store_key and not (self.settings.is_development or self.settings.is_testing):
            raise ValueError(f"secure_store_key is required in {self.settings.environment}")

        self.store = KeyValueStore(self.settings.key_value_store_path)
        self.secure_store = SecureStore(self.settings.secure_store_path, self.settings.secure_store_key)

        self.audit = PrivacyAuditService(self.store, self.settings)
        self.secure_files = SecureFileService(self.secure_store, self.settings)
        self.export = DataExportService(
            self.store,
            self.backend,
            self.secure_files,
            self.audit,
            self.settings,
            share_handler=share_handler,
        )
        self.retention = DataRetentionService(self.store, self.audit, self.settings)

        self.scheduler = PrivacyScheduler()
        self.scheduler.add_job(
            "retention_check",
            self.retention.check_scheduled_purge,
            self.settings.retention_check_interval_seconds,
        )
        self.scheduler.add_job(
            "secure_cleanup",
            self.export.run_secure_cleanup,
            self.settings.secure_cleanup_interval_seconds,
        )

        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Create storage directories, load retention state and start scheduled jobs."""
        if self._initialized:
            return

        os.makedirs(self.settings.data_dir, exist_ok=True)
        await self.secure_files.initialize()
        await self.retention.initialize()

        if self.settings.scheduler_enabled:
            await self.scheduler.start()

        self._initialized = True
        logger.info(
            "Privacy context initialized",
            app_name=self.settings.app_name,
            version=self.settings.version,
            environment=self.settings.environment,
            scheduler_enabled=self.settings.scheduler_enabled
        )

    async def shutdown(self) -> None:
        """Stop scheduled jobs and release resources."""
        await self.scheduler.stop()
        await self.secure_files.shutdown()
        await self.audit.shutdown()
        await self.backend.aclose()

        self._initialized = False
        logger.info("Privacy context shut down")

    async def __aenter__(self) -> "PrivacyContext":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.shutdown()
