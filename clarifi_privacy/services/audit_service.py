"""
Privacy audit service.

Keeps a bounded, append-only local log of privacy-relevant actions, mirrors
events to a remote endpoint when one is configured, and derives compliance
summaries and exports from the local log.
"""
import asyncio
import json
import secrets
from collections import Counter, deque
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional

import httpx
import structlog

from ..config import Settings, get_settings
from ..infrastructure.storage import KeyValueStore
from ..models.audit import (
    AuditSummary,
    MirrorState,
    MirrorStatus,
    PrivacyAction,
    PrivacyAuditEvent,
)
from ..models.export import ExportOptions
from ..utils.constants import ANONYMOUS_USER, COMPLIANCE_FRAMEWORK, SYSTEM_USER, StorageKeys
from ..utils.formatting import epoch_ms, utc_now

logger = structlog.get_logger()


RISK_ACTIONS = frozenset({
    PrivacyAction.EXPORT_FAILED,
    PrivacyAction.DATA_DELETION_REQUEST,
    PrivacyAction.CONSENT_WITHDRAWN,
})

CONSENT_POSITIVE_ACTIONS = frozenset({
    PrivacyAction.CONSENT_GRANTED,
    PrivacyAction.PRIVACY_SETTINGS_UPDATED,
})

COMPLIANCE_NOTES: Dict[PrivacyAction, str] = {
    PrivacyAction.EXPORT_REQUEST: "PIPEDA Article 8.5 - Right to access personal information",
    PrivacyAction.EXPORT_GENERATED: "Data portability compliance - user requested export",
    PrivacyAction.CONSENT_GRANTED: "PIPEDA Principle 3 - Consent obtained",
    PrivacyAction.CONSENT_WITHDRAWN: "PIPEDA Principle 3 - Consent withdrawn by user",
    PrivacyAction.DATA_DELETION_REQUEST: "PIPEDA Principle 4.5 - Data retention limits",
    PrivacyAction.PRIVACY_SETTINGS_UPDATED: "User exercised privacy control rights",
    PrivacyAction.FILE_ENCRYPTED: "PIPEDA Principle 7 - Safeguards implemented",
    PrivacyAction.DATA_PURGED: "PIPEDA Principle 4.5 - Data retention limits",
}
DEFAULT_COMPLIANCE_NOTE = "Privacy-related action logged for compliance"

LEGAL_BASIS: Dict[str, str] = {
    "essential_services": "contract",
    "analytics_tracking": "consent",
    "marketing_communications": "consent",
    "crash_reporting": "legitimate_interest",
    "security_monitoring": "legal_obligation",
}

FILE_OPERATION_ACTIONS: Dict[str, PrivacyAction] = {
    "encrypt": PrivacyAction.FILE_ENCRYPTED,
    "decrypt": PrivacyAction.FILE_DECRYPTED,
    "delete": PrivacyAction.SECURE_DELETE,
    "download": PrivacyAction.EXPORT_DOWNLOADED,
}

CONSENT_CHANGE_ACTIONS: Dict[str, PrivacyAction] = {
    "granted": PrivacyAction.CONSENT_GRANTED,
    "withdrawn": PrivacyAction.CONSENT_WITHDRAWN,
    "updated": PrivacyAction.CONSENT_UPDATED,
}

UNMIRRORED_USERS = frozenset({ANONYMOUS_USER, SYSTEM_USER})


def estimate_record_count(options: ExportOptions) -> int:
    """Rough number of records an export with these options contains."""
    count = 0
    if options.include_personal_info:
        count += 10
    if options.include_transactions:
        count += 500
    if options.include_categories:
        count += 24
    if options.include_settings:
        count += 50
    if options.include_qa_history:
        count += 100
    return count


class RemoteAuditMirror:
    """
    Best-effort delivery of audit events to a remote endpoint.

    Undeliverable events wait in a bounded outbox and the mirror reports
    DEGRADED until a delivery succeeds again.
    """

    def __init__(
        self,
        endpoint_url: Optional[str],
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        max_outbox: int = 500,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.endpoint_url = endpoint_url
        self.api_key = api_key
        self.outbox: Deque[Dict[str, Any]] = deque(maxlen=max_outbox)
        self.state = MirrorState.HEALTHY if endpoint_url else MirrorState.DISABLED
        self.last_error: Optional[str] = None
        self.last_success_at: Optional[datetime] = None
        self._client = client
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return self.state != MirrorState.DISABLED

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def to_row(event: PrivacyAuditEvent) -> Dict[str, Any]:
        return {
            "user_id": event.user_id,
            "action": event.action.value,
            "resource": event.resource,
            "metadata": event.metadata,
            "timestamp": event.timestamp.isoformat(),
            "success": event.success,
            "error_message": event.error_message,
            "compliance_note": event.compliance_note,
        }

    async def _post(self, rows: List[Dict[str, Any]]) -> bool:
        try:
            response = await self.client.post(self.endpoint_url, json=rows, headers=self._headers())
            response.raise_for_status()
        except httpx.TimeoutException:
            self._mark_degraded("Request timed out")
            return False
        except httpx.HTTPError as e:
            self._mark_degraded(str(e))
            return False

        self.state = MirrorState.HEALTHY
        self.last_error = None
        self.last_success_at = utc_now()
        return True

    def _mark_degraded(self, error: str) -> None:
        if self.state != MirrorState.DEGRADED:
            logger.warning("Remote audit mirror degraded", error=error)
        self.state = MirrorState.DEGRADED
        self.last_error = error

    async def send(self, event: PrivacyAuditEvent) -> bool:
        """Deliver one event, queueing it on failure."""
        if not self.enabled:
            return False

        row = self.to_row(event)
        if await self._post([row]):
            if self.outbox:
                await self.flush()
            return True

        if len(self.outbox) == self.outbox.maxlen:
            logger.warning("Audit outbox full, dropping oldest event")
        self.outbox.append(row)
        return False

    async def flush(self) -> int:
        """Deliver queued events in one batch. Returns the number delivered."""
        if not self.enabled or not self.outbox:
            return 0

        rows = list(self.outbox)
        if not await self._post(rows):
            return 0

        for _ in rows:
            self.outbox.popleft()
        logger.info("Audit outbox flushed", delivered=len(rows))
        return len(rows)

    def status(self) -> MirrorStatus:
        return MirrorStatus(
            state=self.state,
            pending_events=len(self.outbox),
            last_error=self.last_error,
            last_success_at=self.last_success_at,
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


class PrivacyAuditService:
    """Service for the privacy audit log."""

    def __init__(
        self,
        store: KeyValueStore,
        settings: Optional[Settings] = None,
        mirror: Optional[RemoteAuditMirror] = None
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.max_events = self.settings.audit_max_local_events
        self.mirror = mirror or RemoteAuditMirror(
            endpoint_url=self.settings.audit_remote_url,
            api_key=self.settings.audit_remote_api_key,
            timeout=self.settings.audit_remote_timeout_seconds,
            max_outbox=self.settings.audit_outbox_max_size,
        )
        self._lock = asyncio.Lock()

    @staticmethod
    def _generate_event_id() -> str:
        return f"audit_{epoch_ms()}_{secrets.token_hex(5)[:9]}"

    async def log_event(
        self,
        user_id: str,
        action: PrivacyAction,
        resource: str,
        metadata: Optional[Dict[str, Any]] = None,
        success: bool = True,
        error_message: Optional[str] = None
    ) -> Optional[PrivacyAuditEvent]:
        """
        Record a privacy event locally, then mirror it remotely.

        Never raises. Returns the stored event, or None if it could not be
        built or stored.
        """
        try:
            event = PrivacyAuditEvent(
                id=self._generate_event_id(),
                user_id=user_id,
                action=action,
                resource=resource,
                metadata={
                    **(metadata or {}),
                    "app_version": self.settings.version,
                    "platform": self.settings.platform,
                },
                success=success,
                error_message=error_message,
                compliance_note=COMPLIANCE_NOTES.get(action, DEFAULT_COMPLIANCE_NOTE),
            )
            await self._store_event_locally(event)
        except Exception as e:
            logger.error("Failed to log privacy event", action=str(action), user_id=user_id, error=str(e))
            return None

        if user_id not in UNMIRRORED_USERS:
            try:
                await self.mirror.send(event)
            except Exception as e:
                logger.warning("Remote audit mirror error", event_id=event.id, error=str(e))

        return event

    async def _store_event_locally(self, event: PrivacyAuditEvent) -> None:
        async with self._lock:
            events = await self._load_raw_events()
            events.append(event.model_dump(mode="json"))
            if len(events) > self.max_events:
                events = events[-self.max_events:]
            await self.store.set_object(StorageKeys.PRIVACY_AUDIT_LOG, events)

    async def _load_raw_events(self) -> List[Dict[str, Any]]:
        stored = await self.store.get_object(StorageKeys.PRIVACY_AUDIT_LOG)
        return stored if isinstance(stored, list) else []

    async def get_all_events(self) -> List[PrivacyAuditEvent]:
        try:
            raw_events = await self._load_raw_events()
        except Exception as e:
            logger.error("Failed to read audit log", error=str(e))
            return []

        events = []
        for raw in raw_events:
            try:
                events.append(PrivacyAuditEvent.model_validate(raw))
            except ValueError as e:
                logger.warning("Skipping malformed audit event", error=str(e))
        return events

    async def get_user_events(self, user_id: str) -> List[PrivacyAuditEvent]:
        return [event for event in await self.get_all_events() if event.user_id == user_id]

    async def log_data_export(
        self,
        user_id: str,
        export_format: str,
        options: ExportOptions,
        success: bool,
        file_size: Optional[str] = None,
        error: Optional[str] = None,
        export_id: Optional[str] = None
    ) -> Optional[PrivacyAuditEvent]:
        resource = f"{export_format}_export_{export_id}" if export_id else f"{export_format}_export"
        return await self.log_event(
            user_id,
            PrivacyAction.EXPORT_GENERATED if success else PrivacyAction.EXPORT_FAILED,
            resource,
            {
                "format": export_format,
                "options": options.model_dump(mode="json"),
                "file_size": file_size,
                "estimated_records": estimate_record_count(options),
                "export_id": export_id,
            },
            success=success,
            error_message=error,
        )

    async def log_consent_change(
        self,
        user_id: str,
        consent_type: str,
        change: str,
        previous_value: Optional[bool] = None,
        new_value: Optional[bool] = None
    ) -> Optional[PrivacyAuditEvent]:
        """Record a consent grant, withdrawal or update with its legal basis."""
        return await self.log_event(
            user_id,
            CONSENT_CHANGE_ACTIONS.get(change, PrivacyAction.CONSENT_UPDATED),
            f"consent_{consent_type}",
            {
                "consent_type": consent_type,
                "previous_value": previous_value,
                "new_value": new_value,
                "change_type": change,
                "legal_basis": LEGAL_BASIS.get(consent_type, "consent"),
            },
        )

    async def log_file_operation(
        self,
        user_id: str,
        operation: str,
        file_id: str,
        success: bool,
        error: Optional[str] = None
    ) -> Optional[PrivacyAuditEvent]:
        """Record an encrypt, decrypt, delete or download of an export file."""
        action = FILE_OPERATION_ACTIONS.get(operation)
        if action is None:
            logger.error("Unknown file operation", operation=operation)
            return None

        return await self.log_event(
            user_id,
            action,
            f"file_{file_id}",
            {
                "operation": operation,
                "file_id": file_id,
                "security_level": "high",
            },
            success=success,
            error_message=error,
        )

    @staticmethod
    def calculate_compliance_score(events: List[PrivacyAuditEvent]) -> float:
        """Success ratio as a percentage plus up to 20 points for consent-positive actions."""
        if not events:
            return 100.0

        base_score = sum(1 for event in events if event.success) / len(events) * 100
        consent_events = sum(1 for event in events if event.action in CONSENT_POSITIVE_ACTIONS)
        return min(base_score + min(consent_events * 2, 20), 100.0)

    async def get_audit_summary(self, user_id: str) -> AuditSummary:
        events = await self.get_user_events(user_id)

        counts = Counter(event.action for event in events)
        risk_events = [
            event for event in events
            if not event.success or event.action in RISK_ACTIONS
        ]
        risk_events.sort(key=lambda event: event.timestamp, reverse=True)

        return AuditSummary(
            total_events=len(events),
            events_by_action={action: counts.get(action, 0) for action in PrivacyAction},
            last_activity=max((event.timestamp for event in events), default=None),
            compliance_score=self.calculate_compliance_score(events),
            risk_events=risk_events[:10],
        )

    async def export_audit_log(self, user_id: str) -> str:
        events = await self.get_user_events(user_id)
        return json.dumps(
            {
                "user": user_id,
                "exportDate": utc_now().isoformat(),
                "totalEvents": len(events),
                "complianceFramework": COMPLIANCE_FRAMEWORK,
                "events": [event.model_dump(mode="json") for event in events],
            },
            indent=2,
        )

    async def cleanup_old_events(self, retention_days: Optional[int] = None) -> int:
        """Drop local events older than the retention window. Returns the number removed."""
        if retention_days is None:
            retention_days = self.settings.audit_retention_days
        cutoff = utc_now() - timedelta(days=retention_days)

        async with self._lock:
            events = await self.get_all_events()
            kept = [event for event in events if event.timestamp >= cutoff]
            removed = len(events) - len(kept)
            if removed:
                await self.store.set_object(
                    StorageKeys.PRIVACY_AUDIT_LOG,
                    [event.model_dump(mode="json") for event in kept]
                )

        logger.info("Audit log cleanup completed", removed=removed, retention_days=retention_days)
        return removed

    def get_mirror_status(self) -> MirrorStatus:
        return self.mirror.status()

    async def flush_remote_outbox(self) -> int:
        return await self.mirror.flush()

    async def shutdown(self) -> None:
        if self.mirror.outbox:
            logger.warning("Shutting down with undelivered audit events", pending=len(self.mirror.outbox))
        await self.mirror.aclose()
