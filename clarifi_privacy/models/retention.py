"""
Data retention models.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from ..utils.constants import LEGAL_RETENTION_DAYS
from ..utils.formatting import utc_now


class RetentionPeriod(str, Enum):
    """User-selectable retention for non-financial data."""
    LEGAL_MINIMUM = "legal_minimum"
    ONE_YEAR = "1year"
    TWO_YEARS = "2years"
    FIVE_YEARS = "5years"


class DataRetentionSettings(BaseModel):
    """User retention preferences and purge schedule."""
    auto_delete_old_data: bool = Field(default=True, description="Enable automatic purging")
    retention_period: RetentionPeriod = Field(default=RetentionPeriod.LEGAL_MINIMUM)
    last_purge_date: Optional[datetime] = None
    next_scheduled_purge: Optional[datetime] = None


class DataRetentionPolicy(BaseModel):
    """Retention window per data category, in days."""
    financial_records: int = Field(default=LEGAL_RETENTION_DAYS, ge=LEGAL_RETENTION_DAYS)
    transaction_history: int = Field(default=LEGAL_RETENTION_DAYS, ge=LEGAL_RETENTION_DAYS)
    tax_related_data: int = Field(default=LEGAL_RETENTION_DAYS, ge=LEGAL_RETENTION_DAYS)
    personal_preferences: int = Field(..., ge=1)
    analytics_data: int = Field(..., ge=1)
    communication_logs: int = Field(..., ge=1)
    app_usage_data: int = Field(..., ge=1)
    session_data: int = Field(..., ge=1)
    temp_files: int = Field(..., ge=1)
    cache_data: int = Field(..., ge=1)


class PurgeReport(BaseModel):
    """Outcome of one purge pass."""
    purge_date: datetime = Field(default_factory=utc_now)
    total_items_deleted: int = 0
    categories_processed: List[str] = Field(default_factory=list)
    space_freed: int = Field(default=0, description="Bytes removed from local storage")
    errors: List[str] = Field(default_factory=list)
    next_scheduled_purge: Optional[datetime] = None
    is_manual: bool = False
