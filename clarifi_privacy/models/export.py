"""
Data export models.
"""
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .base import FrozenModel


class ExportFormat(str, Enum):
    """Export formats. PDF is delivered as a printable HTML document."""
    CSV = "csv"
    JSON = "json"
    PDF = "pdf"

    @property
    def file_extension(self) -> str:
        return "html" if self is ExportFormat.PDF else self.value

    @property
    def content_type(self) -> str:
        return {
            ExportFormat.CSV: "text/csv",
            ExportFormat.JSON: "application/json",
            ExportFormat.PDF: "text/html",
        }[self]


class DateRange(str, Enum):
    """Date range selectors for exported transactions."""
    ALL = "all"
    LAST_YEAR = "last-year"
    LAST_6_MONTHS = "last-6-months"
    LAST_3_MONTHS = "last-3-months"
    LAST_MONTH = "last-month"


class ExportOptions(FrozenModel):
    """Options for one export run."""
    format: ExportFormat = Field(..., description="Output format")
    date_range: DateRange = Field(default=DateRange.ALL, description="Transaction date range")
    include_personal_info: bool = Field(default=True, description="Include account and profile details")
    include_transactions: bool = Field(default=True, description="Include transactions")
    include_categories: bool = Field(default=True, description="Include category statistics")
    include_settings: bool = Field(default=True, description="Include app settings")
    include_qa_history: bool = Field(default=False, description="Include Q&A history")


class ExportPreview(BaseModel):
    """Estimated contents of an export."""
    transaction_count: int = Field(default=0, ge=0)
    category_count: int = Field(default=0, ge=0)
    personal_info_fields: int = Field(default=0, ge=0)
    estimated_size: str = Field(..., description="Human readable size estimate")
    date_range: str = Field(..., description="Human readable date range")


class ExportResult(FrozenModel):
    """Outcome of one export attempt."""
    export_id: str = Field(..., description="Format-prefixed, timestamp-suffixed identifier")
    estimated_completion: str = Field(default="Ready for download")
    success: bool = Field(...)
    file_path: Optional[str] = Field(default=None, description="Path of the encrypted file")
    file_size: Optional[str] = Field(default=None, description="Human readable plaintext size")
    download_url: Optional[str] = Field(default=None, description="Opaque single-use download token")
    error: Optional[str] = Field(default=None)
