"""
Data retention service.

Purges expired, non-financial data from local storage according to the
user's retention settings. Financial records, transaction history and
tax-related data are held for the legal minimum and are never purged here.
"""
import json
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, List, Optional, Tuple

import structlog

from ..config import Settings, get_settings
from ..infrastructure.storage import KeyValueStore
from ..models.audit import PrivacyAction
from ..models.retention import DataRetentionPolicy, DataRetentionSettings, PurgeReport
from ..utils.constants import (
    ANALYTICS_MAX_DAYS,
    APP_USAGE_MAX_DAYS,
    CACHE_DATA_DAYS,
    COMMUNICATION_MAX_DAYS,
    DEFAULT_RETENTION_DAYS,
    LEGAL_RETENTION_DAYS,
    RETENTION_PERIOD_DAYS,
    SESSION_DATA_DAYS,
    SYSTEM_USER,
    TEMP_FILES_DAYS,
    StorageKeys,
)
from ..utils.exceptions import PolicyViolationError, StorageError, ValidationError as AppValidationError
from ..utils.formatting import parse_timestamp, utc_now
from .audit_service import PrivacyAuditService

logger = structlog.get_logger()


PROTECTED_CATEGORIES = frozenset({"Financial Records", "Transaction History", "Tax Related Data"})


class PurgeStrategy(str, Enum):
    """How a stored value is aged out."""
    EXPIRE_RECORD = "expire_record"  # remove the whole value when its timestamp is old
    FILTER_ENTRIES = "filter_entries"  # drop old entries from a stored list


@dataclass(frozen=True)
class PurgeCategory:
    name: str
    policy_field: str
    storage_keys: Tuple[str, ...]
    strategy: PurgeStrategy


PURGE_CATEGORIES: Tuple[PurgeCategory, ...] = (
    PurgeCategory(
        "Analytics Data", "analytics_data",
        (StorageKeys.AI_USAGE_STATS, "app_analytics", "performance_metrics", "usage_statistics"),
        PurgeStrategy.EXPIRE_RECORD,
    ),
    PurgeCategory(
        "Communication Logs", "communication_logs",
        ("notification_history", "email_logs", "push_notification_logs"),
        PurgeStrategy.FILTER_ENTRIES,
    ),
    PurgeCategory(
        "App Usage Data", "app_usage_data",
        ("feature_usage_stats", "screen_visit_logs", "user_interaction_logs"),
        PurgeStrategy.FILTER_ENTRIES,
    ),
    PurgeCategory(
        "Session Data", "session_data",
        ("user_sessions", "login_history", "app_state_history"),
        PurgeStrategy.FILTER_ENTRIES,
    ),
    PurgeCategory(
        "Temporary Files", "temp_files",
        ("temp_uploads", "temp_exports", "temp_processing_data"),
        PurgeStrategy.EXPIRE_RECORD,
    ),
    PurgeCategory(
        "Cache Data", "cache_data",
        ("api_cache", "image_cache_metadata", "computation_cache"),
        PurgeStrategy.EXPIRE_RECORD,
    ),
)


def _is_older(entry: Any, cutoff: datetime) -> bool:
    """Entries without a readable timestamp are kept."""
    if not isinstance(entry, dict):
        return False
    timestamp = parse_timestamp(entry.get("timestamp"))
    return timestamp is not None and timestamp < cutoff


class DataRetentionService:
    """Service owning retention settings, policy and purge history."""

    def __init__(
        self,
        store: KeyValueStore,
        audit: Optional[PrivacyAuditService] = None,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.audit = audit
        self.purge_categories = PURGE_CATEGORIES

    def _next_purge_date(self, now: Optional[datetime] = None) -> datetime:
        return (now or utc_now()) + timedelta(days=self.settings.purge_interval_days)

    async def initialize(self) -> DataRetentionSettings:
        """Persist default settings and schedule the first purge if none is pending."""
        retention_settings = await self.get_retention_settings()
        if retention_settings.auto_delete_old_data and retention_settings.next_scheduled_purge is None:
            retention_settings.next_scheduled_purge = self._next_purge_date()
            await self._save_settings(retention_settings)
            logger.info(
                "Scheduled first data purge",
                next_scheduled_purge=retention_settings.next_scheduled_purge.isoformat()
            )
        return retention_settings

    # Settings

    async def get_retention_settings(self) -> DataRetentionSettings:
        try:
            stored = await self.store.get_object(StorageKeys.DATA_RETENTION_SETTINGS)
        except StorageError as e:
            logger.error("Failed to read retention settings, using defaults", error=e.message)
            return DataRetentionSettings()

        if not isinstance(stored, dict):
            return DataRetentionSettings()

        try:
            return DataRetentionSettings.model_validate(stored)
        except ValueError as e:
            logger.error("Stored retention settings invalid, using defaults", error=str(e))
            return DataRetentionSettings()

    async def _save_settings(self, retention_settings: DataRetentionSettings) -> None:
        await self.store.set_object(
            StorageKeys.DATA_RETENTION_SETTINGS,
            retention_settings.model_dump(mode="json")
        )

    async def update_retention_settings(self, **changes: Any) -> DataRetentionSettings:
        """Merge changes into the stored settings and reschedule the next purge."""
        unknown = set(changes) - set(DataRetentionSettings.model_fields)
        if unknown:
            raise AppValidationError(
                message="Unknown retention settings",
                details=sorted(unknown)
            )

        current = await self.get_retention_settings()
        try:
            updated = DataRetentionSettings.model_validate({**current.model_dump(), **changes})
        except ValueError as e:
            logger.error("Invalid retention settings update", error=str(e))
            raise AppValidationError(
                message="Invalid retention settings",
                details=[str(e)]
            )

        if updated.auto_delete_old_data:
            updated.next_scheduled_purge = self._next_purge_date()

        await self._save_settings(updated)
        logger.info(
            "Retention settings updated",
            auto_delete_old_data=updated.auto_delete_old_data,
            retention_period=updated.retention_period.value
        )

        if self.audit is not None:
            await self.audit.log_event(
                SYSTEM_USER,
                PrivacyAction.PRIVACY_SETTINGS_UPDATED,
                "data_retention_settings",
                {key: getattr(value, "value", value) for key, value in changes.items()},
            )
        return updated

    # Policy

    async def get_retention_policy(self) -> DataRetentionPolicy:
        retention_settings = await self.get_retention_settings()
        user_days = RETENTION_PERIOD_DAYS.get(retention_settings.retention_period.value, DEFAULT_RETENTION_DAYS)

        return DataRetentionPolicy(
            financial_records=LEGAL_RETENTION_DAYS,
            transaction_history=LEGAL_RETENTION_DAYS,
            tax_related_data=LEGAL_RETENTION_DAYS,
            personal_preferences=user_days,
            analytics_data=min(user_days, ANALYTICS_MAX_DAYS),
            communication_logs=min(user_days, COMMUNICATION_MAX_DAYS),
            app_usage_data=min(user_days, APP_USAGE_MAX_DAYS),
            session_data=SESSION_DATA_DAYS,
            temp_files=TEMP_FILES_DAYS,
            cache_data=CACHE_DATA_DAYS,
        )

    # Purging

    async def perform_manual_purge(self) -> PurgeReport:
        retention_settings = await self.get_retention_settings()
        if not retention_settings.auto_delete_old_data:
            message = "Automatic data deletion is disabled in retention settings"
            if self.audit is not None:
                await self.audit.log_event(
                    SYSTEM_USER,
                    PrivacyAction.DATA_PURGED,
                    "local_storage",
                    {"is_manual": True},
                    success=False,
                    error_message=message,
                )
            raise PolicyViolationError(message)
        return await self.execute_purge(is_manual=True)

    async def check_scheduled_purge(self) -> Optional[PurgeReport]:
        """Run a purge if one is due. Overdue purges run immediately."""
        retention_settings = await self.get_retention_settings()
        if not retention_settings.auto_delete_old_data:
            return None

        next_purge = retention_settings.next_scheduled_purge
        if next_purge is not None and utc_now() < next_purge:
            return None

        logger.info(
            "Scheduled data purge due",
            next_scheduled_purge=next_purge.isoformat() if next_purge else None
        )
        return await self.execute_purge(is_manual=False)

    async def execute_purge(self, is_manual: bool = False) -> PurgeReport:
        """Purge every non-financial category. One category failing does not stop the others."""
        now = utc_now()
        policy = await self.get_retention_policy()
        report = PurgeReport(purge_date=now, is_manual=is_manual)

        logger.info("Starting data purge", is_manual=is_manual)

        for category in self.purge_categories:
            try:
                deleted, freed = await self._purge_category(category, policy, now)
                report.total_items_deleted += deleted
                report.space_freed += freed
                report.categories_processed.append(category.name)
            except Exception as e:
                logger.error("Category purge failed", category=category.name, error=str(e))
                report.errors.append(f"{category.name} purge failed: {e}")

        report.next_scheduled_purge = self._next_purge_date(now)
        await self._record_purge(report)

        logger.info(
            "Data purge completed",
            is_manual=is_manual,
            items_deleted=report.total_items_deleted,
            space_freed=report.space_freed,
            errors=len(report.errors)
        )

        if self.audit is not None:
            await self.audit.log_event(
                SYSTEM_USER,
                PrivacyAction.DATA_PURGED,
                "local_storage",
                {
                    "is_manual": is_manual,
                    "items_deleted": report.total_items_deleted,
                    "space_freed": report.space_freed,
                    "categories_processed": report.categories_processed,
                },
                success=not report.errors,
                error_message="; ".join(report.errors) or None,
            )

        return report

    async def _purge_category(
        self,
        category: PurgeCategory,
        policy: DataRetentionPolicy,
        now: datetime
    ) -> Tuple[int, int]:
        if category.name in PROTECTED_CATEGORIES:
            raise PolicyViolationError(f"{category.name} is held for the legal retention period")

        cutoff = now - timedelta(days=getattr(policy, category.policy_field))
        deleted = 0
        freed = 0

        for key in category.storage_keys:
            try:
                raw = await self.store.get_item(key)
                if raw is None:
                    continue
                value = json.loads(raw)

                if category.strategy is PurgeStrategy.EXPIRE_RECORD:
                    if _is_older(value, cutoff):
                        await self.store.remove_item(key)
                        deleted += 1
                        freed += len(raw.encode())

                elif isinstance(value, list):
                    kept = [entry for entry in value if not _is_older(entry, cutoff)]
                    if len(kept) != len(value):
                        serialized = json.dumps(kept)
                        await self.store.set_item(key, serialized)
                        deleted += len(value) - len(kept)
                        freed += len(raw.encode()) - len(serialized.encode())

            except (ValueError, StorageError) as e:
                logger.warning("Skipping unreadable stored value", category=category.name, key=key, error=str(e))

        return deleted, max(freed, 0)

    async def _record_purge(self, report: PurgeReport) -> None:
        retention_settings = await self.get_retention_settings()
        retention_settings.last_purge_date = report.purge_date
        retention_settings.next_scheduled_purge = report.next_scheduled_purge
        await self._save_settings(retention_settings)

        history = await self.get_purge_history()
        history.insert(0, report)
        await self.store.set_object(
            StorageKeys.DATA_PURGE_HISTORY,
            [entry.model_dump(mode="json") for entry in history[:self.settings.purge_history_limit]]
        )

    async def get_purge_history(self) -> List[PurgeReport]:
        """Most recent purge reports, newest first."""
        try:
            stored = await self.store.get_object(StorageKeys.DATA_PURGE_HISTORY)
        except StorageError as e:
            logger.error("Failed to read purge history", error=e.message)
            return []

        if not isinstance(stored, list):
            return []

        history = []
        for entry in stored:
            try:
                history.append(PurgeReport.model_validate(entry))
            except ValueError as e:
                logger.warning("Skipping malformed purge report", error=str(e))
        return history
