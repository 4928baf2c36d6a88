"""
Integration tests for the privacy context: export, download, retention and scheduling.
"""
import asyncio
import os

import pytest

from clarifi_privacy.context import PrivacyContext
from clarifi_privacy.infrastructure.storage import KeyValueStore
from clarifi_privacy.models.audit import PrivacyAction
from clarifi_privacy.models.export import DateRange, ExportFormat, ExportOptions
from clarifi_privacy.models.secure_file import TokenState
from clarifi_privacy.utils.constants import StorageKeys
from clarifi_privacy.utils.exceptions import TokenInvalidError
from tests.factories.financial_factory import IncomeTransactionFactory, TransactionFactory


@pytest.mark.integration
class TestPrivacyFlow:
    """End-to-end flows through PrivacyContext."""

    @pytest.mark.asyncio
    async def test_export_download_and_audit(self, test_settings, fake_backend, share_handler, shared_files):
        """Test a JSON export round trip with a full audit trail."""
        # Setup
        fake_backend.transactions = TransactionFactory.build_batch(5) + [IncomeTransactionFactory()]

        async with PrivacyContext(test_settings, backend=fake_backend, share_handler=share_handler) as context:
            assert context.is_initialized

            # Execute
            result = await context.export.initiate_export(
                ExportOptions(format=ExportFormat.JSON, date_range=DateRange.LAST_3_MONTHS)
            )
            path = await context.export.secure_download(result.download_url)

            # Assert
            assert result.success is True
            assert os.path.exists(path)
            assert '"totalCount": 6' in shared_files[0]["content"]
            assert await context.secure_files.get_token_state(result.download_url) == TokenState.REDEEMED
            with pytest.raises(TokenInvalidError):
                await context.export.secure_download(result.download_url)

            summary = await context.audit.get_audit_summary("user_123")
            assert summary.events_by_action[PrivacyAction.EXPORT_GENERATED] == 1
            assert summary.events_by_action[PrivacyAction.TOKEN_REVOKED] == 1
            assert len(summary.risk_events) == 1

        # Shutdown removes the decrypted download and closes the backend
        assert not os.path.exists(path)
        assert fake_backend.closed is True
        assert context.is_initialized is False

    @pytest.mark.asyncio
    async def test_initialize_schedules_first_purge(self, test_settings, fake_backend):
        async with PrivacyContext(test_settings, backend=fake_backend) as context:
            retention_settings = await context.retention.get_retention_settings()

            assert retention_settings.next_scheduled_purge is not None
            assert os.path.isdir(test_settings.secure_exports_dir)
            assert context.scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_scheduler_runs_overdue_purge(self, test_settings, fake_backend):
        """Test an overdue purge fires as soon as the scheduler starts."""
        # Setup
        await KeyValueStore(test_settings.key_value_store_path).set_object(
            StorageKeys.DATA_RETENTION_SETTINGS,
            {
                "auto_delete_old_data": True,
                "retention_period": "legal_minimum",
                "next_scheduled_purge": "2024-01-01T00:00:00+00:00",
            },
        )
        settings = test_settings.model_copy(update={"scheduler_enabled": True})

        # Execute
        async with PrivacyContext(settings, backend=fake_backend) as context:
            for _ in range(100):
                if await context.retention.get_purge_history():
                    break
                await asyncio.sleep(0.02)

            history = await context.retention.get_purge_history()
            status = context.scheduler.get_status()

        # Assert
        assert len(history) == 1
        assert history[0].is_manual is False
        assert {job["name"] for job in status["jobs"]} == {"retention_check", "secure_cleanup"}
        assert context.scheduler.is_running is False

    @pytest.mark.unit
    def test_backend_required(self, test_settings):
        with pytest.raises(ValueError):
            PrivacyContext(test_settings)

    @pytest.mark.unit
    def test_secure_store_key_required_in_production(self, test_settings, fake_backend):
        settings = test_settings.model_copy(update={"environment": "production", "secure_store_key": None})

        with pytest.raises(ValueError, match="secure_store_key"):
            PrivacyContext(settings, backend=fake_backend)

    @pytest.mark.asyncio
    async def test_exports_work_after_restart_without_configured_key(self, test_settings, fake_backend):
        """Test a development context keeps its secure store readable across restarts."""
        # Setup
        settings = test_settings.model_copy(update={"environment": "development", "secure_store_key": None})
        fake_backend.transactions = TransactionFactory.build_batch(2)
        options = ExportOptions(format=ExportFormat.JSON, date_range=DateRange.LAST_3_MONTHS)

        async with PrivacyContext(settings, backend=fake_backend) as context:
            first = await context.export.initiate_export(options)

        # Execute
        async with PrivacyContext(settings, backend=fake_backend) as restarted:
            second = await restarted.export.initiate_export(options)
            path = await restarted.export.secure_download(second.download_url)

            # Assert
            assert first.success is True
            assert second.success is True
            assert os.path.exists(path)
