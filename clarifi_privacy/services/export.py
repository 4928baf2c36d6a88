"""
Data export service.

Builds CSV, JSON and printable HTML exports of a user's data, hands the
plaintext to the secure file service for encryption and records every step
in the privacy audit log.
"""
import os
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiofiles
import aiofiles.os
import structlog

from ..config import Settings, get_settings
from ..infrastructure.backend import FinancialBackend
from ..infrastructure.storage import KeyValueStore
from ..models.audit import PrivacyAction
from ..models.auth import AuthSession
from ..models.export import ExportFormat, ExportOptions, ExportPreview, ExportResult
from ..models.secure_file import CleanupResult, TokenState
from ..utils.constants import (
    ANONYMOUS_USER,
    CATEGORY_COUNT_ESTIMATE,
    COMPLIANCE_FRAMEWORK,
    EXPORT_FILE_EXTENSIONS,
    EXPORT_FILE_PREFIX,
    PERSONAL_INFO_FIELDS,
    SYSTEM_USER,
    TRANSACTIONS_PER_MONTH_ESTIMATE,
    UNKNOWN_CATEGORY_COLOR,
    StorageKeys,
    get_category_by_id,
)
from ..utils.exceptions import AuthenticationError, EncryptionError
from ..utils.formatting import (
    epoch_ms,
    format_date_range,
    format_file_size,
    months_in_range,
    parse_date_range,
    utc_now,
)
from .audit_service import PrivacyAuditService
from .export_renderers import RENDERERS
from .secure_file import SecureFileService

logger = structlog.get_logger()

ShareHandler = Callable[[str, str], Awaitable[None]]

PRIVACY_NOTICE = (
    "This export contains your personal financial information. It was encrypted "
    "on your device and can be downloaded once with a single-use token. Keep it "
    "in a secure location and delete it when it is no longer needed."
)


def _iso(value: Any) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _unwrap_versioned(stored: Any) -> Dict[str, Any]:
    """Settings may be stored bare or as ``{"version": n, "data": {...}}``."""
    if not isinstance(stored, dict):
        return {}
    if "version" in stored and isinstance(stored.get("data"), dict):
        return stored["data"]
    return stored


class DataExportService:
    """Service for generating and delivering privacy exports."""

    def __init__(
        self,
        store: KeyValueStore,
        backend: FinancialBackend,
        secure_files: SecureFileService,
        audit: PrivacyAuditService,
        settings: Optional[Settings] = None,
        share_handler: Optional[ShareHandler] = None
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.backend = backend
        self.secure_files = secure_files
        self.audit = audit
        self.share_handler = share_handler
        self._last_export_ms = 0

    # Preview

    async def get_export_preview(self, options: ExportOptions) -> ExportPreview:
        """Estimate export contents without touching any data source."""
        transaction_count = 0
        category_count = 0
        personal_info_fields = 0
        estimated_kb = 0.0

        if options.include_transactions:
            transaction_count = months_in_range(options.date_range) * TRANSACTIONS_PER_MONTH_ESTIMATE
            estimated_kb += transaction_count * 0.5

        if options.include_categories:
            category_count = CATEGORY_COUNT_ESTIMATE
            estimated_kb += category_count * 0.1

        if options.include_personal_info:
            personal_info_fields = PERSONAL_INFO_FIELDS
            estimated_kb += 2

        if options.include_settings:
            estimated_kb += 5

        if options.include_qa_history:
            estimated_kb += 10

        return ExportPreview(
            transaction_count=transaction_count,
            category_count=category_count,
            personal_info_fields=personal_info_fields,
            estimated_size=format_file_size(estimated_kb * 1024),
            date_range=format_date_range(options.date_range),
        )

    # Export

    def _new_export_id(self, export_format: ExportFormat) -> str:
        timestamp = epoch_ms()
        if timestamp <= self._last_export_ms:
            timestamp = self._last_export_ms + 1
        self._last_export_ms = timestamp
        return f"{export_format.value.upper()}-{timestamp}"

    async def _current_session(self) -> Optional[AuthSession]:
        try:
            return await self.backend.get_session()
        except Exception as e:
            logger.warning("Failed to read session", error=str(e))
            return None

    async def initiate_export(self, options: ExportOptions) -> ExportResult:
        """
        Generate, encrypt and tokenize an export.

        Always returns a result; failures are reported with ``success=False``
        after the failure has been audit-logged.
        """
        export_format = options.format.value
        export_id = self._new_export_id(options.format)
        session = await self._current_session()
        user_id = session.user_id if session else ANONYMOUS_USER

        await self.audit.log_event(
            user_id,
            PrivacyAction.EXPORT_REQUEST,
            f"{export_format}_export_{export_id}",
            {
                "format": export_format,
                "options": options.model_dump(mode="json"),
                "export_id": export_id,
            },
        )

        try:
            document = await self._build_document(options, export_id, session)
            payload = RENDERERS[export_format](document)
            file_path = await self._write_plaintext(export_id, options.format, payload)
            secure_info = await self.secure_files.encrypt_file(
                file_path,
                user_id,
                export_id,
                content_type=options.format.content_type,
            )

        except Exception as e:
            logger.error("Export failed", export_id=export_id, format=export_format, error=str(e))
            if isinstance(e, EncryptionError):
                await self.audit.log_file_operation(user_id, "encrypt", export_id, success=False, error=str(e))
            await self.audit.log_data_export(
                user_id, export_format, options, success=False, error=str(e), export_id=export_id
            )
            return ExportResult(
                export_id=export_id,
                estimated_completion="Failed",
                success=False,
                error=str(e),
            )

        file_size = format_file_size(secure_info.original_size)
        await self.audit.log_data_export(
            user_id, export_format, options, success=True, file_size=file_size, export_id=export_id
        )
        await self.audit.log_file_operation(user_id, "encrypt", export_id, success=True)

        logger.info(
            "Export generated",
            export_id=export_id,
            format=export_format,
            user_id=user_id,
            file_size=file_size
        )

        return ExportResult(
            export_id=export_id,
            success=True,
            file_path=secure_info.encrypted_path,
            file_size=file_size,
            download_url=secure_info.download_token,
        )

    async def _write_plaintext(self, export_id: str, export_format: ExportFormat, payload: str) -> str:
        date_stamp = utc_now().date().isoformat()
        file_name = f"{EXPORT_FILE_PREFIX}{date_stamp}_{export_id}.{export_format.file_extension}"
        file_path = os.path.join(self.settings.data_dir, file_name)

        await aiofiles.os.makedirs(self.settings.data_dir, exist_ok=True)
        try:
            async with aiofiles.open(file_path, "w", encoding="utf-8") as f:
                await f.write(payload)
        except OSError:
            if await aiofiles.os.path.exists(file_path):
                await aiofiles.os.remove(file_path)
            raise

        return file_path

    async def _build_document(
        self,
        options: ExportOptions,
        export_id: str,
        session: Optional[AuthSession]
    ) -> Dict[str, Any]:
        data: Dict[str, Any] = {}

        if options.include_personal_info:
            data["personalInfo"] = await self._collect(
                "personal_info", "Failed to retrieve personal information",
                self._collect_personal_info(session)
            )

        if options.include_transactions:
            data["transactions"] = await self._collect(
                "transactions", "Failed to retrieve transaction data",
                self._collect_transactions(options)
            )

        if options.include_categories:
            data["categories"] = await self._collect(
                "categories", "Failed to retrieve category data",
                self._collect_categories()
            )

        if options.include_settings:
            data["settings"] = await self._collect(
                "settings", "Failed to retrieve settings data",
                self._collect_settings()
            )

        if options.include_qa_history:
            data["qaHistory"] = await self._collect(
                "qa_history", "Failed to retrieve Q&A data",
                self._collect_qa_history()
            )

        return {
            "metadata": {
                "exportId": export_id,
                "exportDate": utc_now().isoformat(),
                "format": options.format.value,
                "version": "1.0",
                "appVersion": self.settings.version,
                "userId": session.user_id if session else None,
                "dateRange": {
                    "selector": options.date_range.value,
                    "description": format_date_range(options.date_range),
                },
                "includedData": list(data.keys()),
                "complianceFramework": COMPLIANCE_FRAMEWORK,
                "privacyNotice": PRIVACY_NOTICE,
            },
            "data": data,
        }

    async def _collect(self, section: str, error_message: str, collector: Awaitable[Dict[str, Any]]) -> Dict[str, Any]:
        try:
            return await collector
        except Exception as e:
            logger.warning("Export section unavailable", section=section, error=str(e))
            return {"error": error_message, "timestamp": utc_now().isoformat()}

    async def _collect_personal_info(self, session: Optional[AuthSession]) -> Dict[str, Any]:
        app_settings = _unwrap_versioned(await self.store.get_object(StorageKeys.APP_SETTINGS))
        return {
            "exportDate": utc_now().isoformat(),
            "userId": session.user_id if session else None,
            "email": session.email if session else None,
            "accountCreated": _iso(session.created_at) if session else None,
            "lastLogin": _iso(session.last_sign_in_at) if session else None,
            "preferences": {
                "language": app_settings.get("preferred_language") or "en",
                "theme": app_settings.get("theme") or "system",
                "biometricEnabled": bool(app_settings.get("is_biometric_enabled")),
                "onboardingCompleted": bool(app_settings.get("onboarding_completed")),
            },
        }

    async def _collect_transactions(self, options: ExportOptions) -> Dict[str, Any]:
        start_date, end_date = parse_date_range(options.date_range)
        rows = await self.backend.fetch_transactions(start_date, end_date)

        transactions: List[Dict[str, Any]] = []
        for row in rows:
            transactions.append({
                "id": row.get("id"),
                "date": row.get("date"),
                "amount": float(row.get("amount") or 0),
                "description": row.get("description") or "",
                "category": {
                    "id": row.get("category_id"),
                    "name": row.get("category_name"),
                },
                "merchant": row.get("merchant_name"),
                "isRecurring": bool(row.get("is_recurring")),
                "userVerified": bool(row.get("user_verified")),
                "statementImportId": row.get("statement_import_id"),
                "tags": row.get("tags") or [],
            })

        income = [t["amount"] for t in transactions if t["amount"] > 0]
        expenses = [t["amount"] for t in transactions if t["amount"] < 0]

        return {
            "dateRange": {
                "start": start_date,
                "end": end_date,
                "description": format_date_range(options.date_range),
            },
            "summary": {
                "totalCount": len(transactions),
                "totalAmount": sum(t["amount"] for t in transactions),
                "incomeCount": len(income),
                "expenseCount": len(expenses),
                "totalIncome": sum(income),
                "totalExpenses": sum(abs(amount) for amount in expenses),
            },
            "transactions": transactions,
        }

    async def _collect_categories(self) -> Dict[str, Any]:
        rows = await self.backend.fetch_category_transactions()

        aggregated: Dict[str, Dict[str, Any]] = {}
        for row in rows:
            category_id = row.get("category_id")
            if category_id is None:
                continue

            key = str(category_id)
            amount = float(row.get("amount") or 0)
            if key in aggregated:
                aggregated[key]["total"] += amount
                aggregated[key]["count"] += 1
                continue

            known = get_category_by_id(category_id)
            aggregated[key] = {
                "name": known["name"] if known else (row.get("category_name") or "Unknown"),
                "color": known["color"] if known else UNKNOWN_CATEGORY_COLOR,
                "total": amount,
                "count": 1,
            }

        categories = [
            {
                "id": int(key) if key.isdigit() else key,
                "name": entry["name"],
                "color": entry["color"],
                "statistics": {
                    "totalSpent": entry["total"],
                    "transactionCount": entry["count"],
                    "averageTransaction": entry["total"] / entry["count"],
                },
            }
            for key, entry in aggregated.items()
        ]

        return {
            "summary": {
                "totalCategories": len(categories),
                "totalTransactions": len(rows),
                "totalAmount": sum(c["statistics"]["totalSpent"] for c in categories),
            },
            "categories": categories,
        }

    async def _collect_settings(self) -> Dict[str, Any]:
        app_settings = _unwrap_versioned(await self.store.get_object(StorageKeys.APP_SETTINGS))
        notifications = _unwrap_versioned(await self.store.get_object(StorageKeys.NOTIFICATION_PREFERENCES))
        utilization = _unwrap_versioned(await self.store.get_object(StorageKeys.UTILIZATION_SETTINGS))
        quiet_hours = notifications.get("quiet_hours") or {}

        return {
            "application": {
                "language": app_settings.get("preferred_language") or "en",
                "theme": app_settings.get("theme") or "system",
                "biometricAuthentication": bool(app_settings.get("is_biometric_enabled")),
                "onboardingCompleted": bool(app_settings.get("onboarding_completed")),
            },
            "notifications": {
                "enabled": notifications.get("enabled", True),
                "quietHours": {
                    "enabled": bool(quiet_hours),
                    "startHour": quiet_hours.get("start_hour"),
                    "endHour": quiet_hours.get("end_hour"),
                },
                "paymentReminders": notifications.get("days_before_statement_alert"),
                "utilizationAlerts": notifications.get("min_utilization_for_alert"),
            },
            "creditCardSettings": {
                "utilizationAlertThreshold": utilization.get("alert_individual_card_threshold", 70),
                "targetOverallUtilization": utilization.get("target_overall_utilization", 30),
                "optimizationStrategy": utilization.get("optimization_strategy", "minimize_interest"),
                "notificationDaysBeforeStatement": utilization.get("notification_days_before_statement", 3),
            },
        }

    async def _collect_qa_history(self) -> Dict[str, Any]:
        usage = _unwrap_versioned(await self.store.get_object(StorageKeys.AI_USAGE))
        return {
            "generatedAt": utc_now().isoformat(),
            "summary": {
                "currentMonthQueries": usage.get("current_month_queries", 0),
                "queryLimitPerMonth": usage.get("query_limit_per_month", 50),
                "lastQueryTimestamp": usage.get("last_query_timestamp"),
            },
            "note": "Individual questions are not retained; only monthly usage is stored on the device.",
        }

    # Download

    async def verify_download_token(self, token: str) -> bool:
        return await self.secure_files.verify_file_integrity(token)

    async def secure_download(self, token: str) -> str:
        """
        Redeem a download token for the signed-in user.

        Decrypts and verifies the export, hands it to the share handler, then
        revokes the token. Returns the path of the short-lived plaintext file.
        Every failure is audit-logged before it is raised.
        """
        session = await self._current_session()
        if session is None:
            message = "Authentication required for secure download"
            await self.audit.log_event(
                ANONYMOUS_USER,
                PrivacyAction.EXPORT_DOWNLOADED,
                "secure_download",
                {"token_prefix": token[:8]},
                success=False,
                error_message=message,
            )
            raise AuthenticationError(message)

        user_id = session.user_id
        await self.audit.log_event(
            user_id,
            PrivacyAction.DATA_ACCESSED,
            "secure_download",
            {"action": "download_attempt", "token_prefix": token[:8]},
        )

        file_id = "unknown"
        temp_path: Optional[str] = None
        try:
            async with self.secure_files.claim_token(token):
                decrypted = await self.secure_files.decrypt_file_for_download(token, user_id)
                file_id = decrypted.file_id
                temp_path = decrypted.file_path
                await self.audit.log_file_operation(user_id, "decrypt", file_id, success=True)

                if self.share_handler is not None:
                    await self.share_handler(decrypted.file_path, decrypted.content_type)

                await self.secure_files.revoke_download_token(token, TokenState.REDEEMED)

        except Exception as e:
            logger.error("Secure download failed", user_id=user_id, file_id=file_id, error=str(e))
            await self.audit.log_file_operation(user_id, "download", file_id, success=False, error=str(e))
            if temp_path is not None:
                await self.secure_files.secure_delete(temp_path)
            raise

        await self.audit.log_file_operation(user_id, "download", file_id, success=True)
        await self.audit.log_event(
            user_id,
            PrivacyAction.TOKEN_REVOKED,
            f"token_{token[:8]}",
            {"reason": "single_use_completed", "file_id": file_id},
        )

        logger.info("Secure download completed", user_id=user_id, file_id=file_id)
        return decrypted.file_path

    # Cleanup

    async def cleanup_old_exports(self, max_age_hours: Optional[float] = None) -> int:
        """Delete stray plaintext exports and decrypted downloads older than the limit."""
        if max_age_hours is None:
            max_age_hours = self.settings.legacy_export_max_age_hours
        cutoff = time.time() - max_age_hours * 3600
        data_dir = self.settings.data_dir

        if not await aiofiles.os.path.isdir(data_dir):
            return 0

        deleted = 0
        for name in await aiofiles.os.listdir(data_dir):
            is_export = name.startswith(EXPORT_FILE_PREFIX) and name.endswith(EXPORT_FILE_EXTENSIONS)
            is_download = name.startswith("temp_") and name.endswith(".tmp")
            if not (is_export or is_download):
                continue

            path = os.path.join(data_dir, name)
            try:
                stat = await aiofiles.os.stat(path)
                if stat.st_mtime < cutoff and await self.secure_files.secure_delete(path):
                    deleted += 1
            except Exception as e:
                logger.warning("Failed to delete old export", file=name, error=str(e))

        if deleted:
            logger.info("Old exports cleaned up", deleted=deleted, max_age_hours=max_age_hours)
        return deleted

    async def run_secure_cleanup(self) -> CleanupResult:
        """Periodic cleanup of expired encrypted files, tokens and stray plaintext."""
        result = await self.secure_files.cleanup_expired_files()
        result.legacy_exports_deleted = await self.cleanup_old_exports()

        if result.files_deleted or result.tokens_revoked or result.legacy_exports_deleted:
            await self.audit.log_event(
                SYSTEM_USER,
                PrivacyAction.SECURE_DELETE,
                "secure_exports",
                result.model_dump(),
            )
        return result
