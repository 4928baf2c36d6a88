"""
Unit tests for data export service.
"""
import csv
import io
import json
import os
import time
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from clarifi_privacy.models.audit import PrivacyAction
from clarifi_privacy.models.export import DateRange, ExportFormat, ExportOptions
from clarifi_privacy.models.secure_file import TokenState
from clarifi_privacy.utils.constants import StorageKeys
from clarifi_privacy.utils.exceptions import AuthenticationError, EncryptionError, TokenInvalidError
from clarifi_privacy.utils.formatting import utc_now
from tests.factories.financial_factory import CategoryRowFactory, TransactionFactory


def _section_rows(content: str, title: str):
    for block in content.split("\n\n"):
        if block.startswith(title + "\n"):
            return list(csv.reader(io.StringIO(block)))
    return None


class TestDataExportService:
    """Test cases for DataExportService."""

    @pytest.fixture
    def last_month_transactions(self, fake_backend):
        """Twelve recent transactions plus one outside every relative range."""
        today = utc_now().date()
        rows = [TransactionFactory(date=(today - timedelta(days=i)).isoformat()) for i in range(12)]
        fake_backend.transactions = rows + [TransactionFactory(date=(today - timedelta(days=800)).isoformat())]
        return rows

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_export_preview(self, export_service):
        """Test preview estimates without touching data sources."""
        # Setup
        options = ExportOptions(format=ExportFormat.CSV, date_range=DateRange.LAST_3_MONTHS)

        # Execute
        preview = await export_service.get_export_preview(options)

        # Assert
        assert preview.transaction_count == 360
        assert preview.category_count == 24
        assert preview.personal_info_fields == 8
        assert preview.estimated_size == "189.4 KB"
        assert preview.date_range == "Last 3 months"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_export_preview_nothing_selected(self, export_service):
        options = ExportOptions(
            format=ExportFormat.JSON,
            include_personal_info=False,
            include_transactions=False,
            include_categories=False,
            include_settings=False,
        )

        preview = await export_service.get_export_preview(options)

        assert preview.transaction_count == 0
        assert preview.estimated_size == "0 Bytes"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_last_month_csv_without_categories(
        self, export_service, last_month_transactions, shared_files
    ):
        """Test a last-month CSV contains only the requested sections and rows."""
        # Setup
        options = ExportOptions(
            format=ExportFormat.CSV,
            date_range=DateRange.LAST_MONTH,
            include_categories=False,
        )

        # Execute
        result = await export_service.initiate_export(options)
        await export_service.secure_download(result.download_url)

        # Assert
        assert result.success is True
        assert result.export_id.startswith("CSV-")
        content = shared_files[0]["content"]
        assert shared_files[0]["content_type"] == "text/csv"
        assert "CATEGORIES" not in content

        rows = _section_rows(content, "TRANSACTIONS")
        assert rows[1][0] == "Date"
        assert len(rows) == 2 + 12
        assert {row[2] for row in rows[2:]} == {t["description"] for t in last_month_transactions}
        await export_service.secure_files.shutdown()

    @pytest.mark.unit
    @pytest.mark.security
    @pytest.mark.asyncio
    async def test_plaintext_not_left_on_disk(self, export_service, test_settings):
        """Test only ciphertext remains after an export."""
        # Execute
        result = await export_service.initiate_export(ExportOptions(format=ExportFormat.JSON))

        # Assert
        assert result.success is True
        assert [name for name in os.listdir(test_settings.data_dir) if name.startswith("clarifi_export_")] == []
        assert os.path.dirname(result.file_path) == test_settings.secure_exports_dir
        assert len(result.download_url) == 64
        assert result.estimated_completion == "Ready for download"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failed_section_does_not_fail_export(self, export_service, fake_backend, shared_files):
        """Test a backend failure yields an error marker for that section only."""
        # Setup
        fake_backend.fail_transactions = True
        fake_backend.category_rows = CategoryRowFactory.build_batch(4)

        # Execute
        result = await export_service.initiate_export(ExportOptions(format=ExportFormat.JSON))
        await export_service.secure_download(result.download_url)

        # Assert
        assert result.success is True
        document = json.loads(shared_files[0]["content"])
        assert document["data"]["transactions"]["error"] == "Failed to retrieve transaction data"
        assert document["data"]["categories"]["summary"]["totalTransactions"] == 4
        assert document["data"]["personalInfo"]["email"] == "test@example.com"
        assert document["metadata"]["includedData"] == ["personalInfo", "transactions", "categories", "settings"]
        await export_service.secure_files.shutdown()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_categories_aggregated(self, export_service, fake_backend, shared_files):
        # Setup
        fake_backend.category_rows = [
            {"category_id": 30, "category_name": "Groceries", "amount": -40.0},
            {"category_id": 30, "category_name": "Groceries", "amount": -60.0},
            {"category_id": 999, "category_name": "Custom", "amount": -5.0},
        ]
        options = ExportOptions(
            format=ExportFormat.JSON,
            include_personal_info=False,
            include_transactions=False,
            include_settings=False,
        )

        # Execute
        result = await export_service.initiate_export(options)
        await export_service.secure_download(result.download_url)

        # Assert
        categories = json.loads(shared_files[0]["content"])["data"]["categories"]["categories"]
        groceries = next(c for c in categories if c["id"] == 30)
        custom = next(c for c in categories if c["id"] == 999)
        assert groceries["statistics"] == {"totalSpent": -100.0, "transactionCount": 2, "averageTransaction": -50.0}
        assert groceries["color"] == "#8BC34A"
        assert custom["name"] == "Custom"
        assert custom["color"] == "#9E9E9E"
        await export_service.secure_files.shutdown()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_settings_read_from_versioned_store(self, export_service, kv_store, shared_files):
        await kv_store.set_object(StorageKeys.APP_SETTINGS, {
            "version": 2,
            "data": {"preferred_language": "fr", "theme": "dark", "is_biometric_enabled": True},
        })
        options = ExportOptions(format=ExportFormat.JSON, include_transactions=False, include_categories=False)

        result = await export_service.initiate_export(options)
        await export_service.secure_download(result.download_url)

        data = json.loads(shared_files[0]["content"])["data"]
        assert data["settings"]["application"]["language"] == "fr"
        assert data["personalInfo"]["preferences"]["biometricEnabled"] is True
        await export_service.secure_files.shutdown()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_pdf_export_is_printable_html(self, export_service, shared_files):
        result = await export_service.initiate_export(ExportOptions(format=ExportFormat.PDF))
        await export_service.secure_download(result.download_url)

        assert result.export_id.startswith("PDF-")
        assert shared_files[0]["content_type"] == "text/html"
        assert shared_files[0]["content"].startswith("<!DOCTYPE html>")
        await export_service.secure_files.shutdown()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_export_ids_unique(self, export_service):
        first = await export_service.initiate_export(ExportOptions(format=ExportFormat.CSV))
        second = await export_service.initiate_export(ExportOptions(format=ExportFormat.CSV))

        assert first.export_id != second.export_id

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_encryption_failure_reported(self, export_service, audit_service):
        """Test an encryption failure returns a failed result and is audited."""
        # Setup
        export_service.secure_files.encrypt_file = AsyncMock(side_effect=EncryptionError("key store locked"))

        # Execute
        result = await export_service.initiate_export(ExportOptions(format=ExportFormat.CSV))

        # Assert
        assert result.success is False
        assert result.estimated_completion == "Failed"
        assert "key store locked" in result.error
        assert result.download_url is None

        events = await audit_service.get_user_events("user_123")
        actions = [(e.action, e.success) for e in events]
        assert (PrivacyAction.EXPORT_REQUEST, True) in actions
        assert (PrivacyAction.FILE_ENCRYPTED, False) in actions
        assert (PrivacyAction.EXPORT_FAILED, False) in actions

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_successful_flow_fully_audited(self, export_service, audit_service):
        """Test every step of export and download leaves an audit event."""
        # Execute
        result = await export_service.initiate_export(ExportOptions(format=ExportFormat.CSV))
        await export_service.secure_download(result.download_url)

        # Assert
        actions = [e.action for e in await audit_service.get_user_events("user_123")]
        assert actions == [
            PrivacyAction.EXPORT_REQUEST,
            PrivacyAction.EXPORT_GENERATED,
            PrivacyAction.FILE_ENCRYPTED,
            PrivacyAction.DATA_ACCESSED,
            PrivacyAction.FILE_DECRYPTED,
            PrivacyAction.EXPORT_DOWNLOADED,
            PrivacyAction.TOKEN_REVOKED,
        ]
        await export_service.secure_files.shutdown()

    @pytest.mark.unit
    @pytest.mark.security
    @pytest.mark.asyncio
    async def test_download_is_single_use(self, export_service, audit_service, shared_files):
        """Test the second redemption fails and is audited."""
        # Setup
        result = await export_service.initiate_export(ExportOptions(format=ExportFormat.CSV))
        await export_service.secure_download(result.download_url)

        # Execute
        with pytest.raises(TokenInvalidError):
            await export_service.secure_download(result.download_url)

        # Assert
        assert len(shared_files) == 1
        assert await export_service.secure_files.get_token_state(result.download_url) == TokenState.REDEEMED
        assert await export_service.verify_download_token(result.download_url) is False
        failed = [
            e for e in await audit_service.get_user_events("user_123")
            if e.action == PrivacyAction.EXPORT_DOWNLOADED and not e.success
        ]
        assert len(failed) == 1
        await export_service.secure_files.shutdown()

    @pytest.mark.unit
    @pytest.mark.security
    @pytest.mark.asyncio
    async def test_download_requires_session(self, export_service, fake_backend, audit_service):
        # Setup
        result = await export_service.initiate_export(ExportOptions(format=ExportFormat.CSV))
        fake_backend.session = None

        # Execute
        with pytest.raises(AuthenticationError):
            await export_service.secure_download(result.download_url)

        # Assert
        events = await audit_service.get_user_events("anonymous")
        assert events[-1].action == PrivacyAction.EXPORT_DOWNLOADED
        assert events[-1].success is False
        assert await export_service.verify_download_token(result.download_url) is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_share_failure_keeps_token_and_removes_plaintext(
        self, export_service, test_settings
    ):
        """Test a failed hand-off does not consume the token."""
        # Setup
        result = await export_service.initiate_export(ExportOptions(format=ExportFormat.CSV))
        export_service.share_handler = AsyncMock(side_effect=RuntimeError("share sheet dismissed"))

        # Execute
        with pytest.raises(RuntimeError):
            await export_service.secure_download(result.download_url)

        # Assert
        assert await export_service.secure_files.get_token_state(result.download_url) == TokenState.ISSUED
        assert [name for name in os.listdir(test_settings.data_dir) if name.startswith("temp_")] == []
        await export_service.secure_files.shutdown()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cleanup_old_exports(self, export_service, test_settings):
        """Test only stale export and download files are removed."""
        # Setup
        data_dir = test_settings.data_dir
        old = time.time() - 48 * 3600
        names = {
            "stale_export": "clarifi_export_2024-01-01_CSV-1.csv",
            "stale_download": "temp_CSV-1_1700000000000.tmp",
            "fresh_export": "clarifi_export_2024-01-02_JSON-2.json",
            "unrelated": "notes.csv",
        }
        for key, name in names.items():
            path = os.path.join(data_dir, name)
            with open(path, "w", encoding="utf-8") as f:
                f.write("data")
            if key != "fresh_export":
                os.utime(path, (old, old))

        # Execute
        deleted = await export_service.cleanup_old_exports()

        # Assert
        assert deleted == 2
        remaining = set(os.listdir(data_dir))
        assert names["fresh_export"] in remaining
        assert names["unrelated"] in remaining
        assert names["stale_export"] not in remaining
        assert names["stale_download"] not in remaining

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_cleanup_old_exports_zero_age_removes_everything(self, export_service, test_settings):
        path = os.path.join(test_settings.data_dir, "clarifi_export_2024-01-02_JSON-2.json")
        with open(path, "w", encoding="utf-8") as f:
            f.write("data")
        recent = time.time() - 60
        os.utime(path, (recent, recent))

        deleted = await export_service.cleanup_old_exports(max_age_hours=0)

        assert deleted == 1
        assert not os.path.exists(path)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_run_secure_cleanup(self, export_service, audit_service, test_settings):
        stale = os.path.join(test_settings.data_dir, "clarifi_export_2024-01-01_CSV-1.csv")
        with open(stale, "w", encoding="utf-8") as f:
            f.write("data")
        old = time.time() - 48 * 3600
        os.utime(stale, (old, old))

        result = await export_service.run_secure_cleanup()

        assert result.legacy_exports_deleted == 1
        events = await audit_service.get_user_events("system")
        assert events[-1].action == PrivacyAction.SECURE_DELETE
