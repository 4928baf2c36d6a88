"""
Formatting helpers for sizes, dates and export date ranges.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional, Tuple

from .constants import ALL_DATA_START_DATE


_SIZE_UNITS = ["Bytes", "KB", "MB", "GB"]

_DATE_RANGE_LABELS = {
    "all": "All available data",
    "last-year": "Last 12 months",
    "last-6-months": "Last 6 months",
    "last-3-months": "Last 3 months",
    "last-month": "Last month",
}

_MONTHS_IN_RANGE = {
    "all": 12,
    "last-year": 12,
    "last-6-months": 6,
    "last-3-months": 3,
    "last-month": 1,
}


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def epoch_ms(moment: Optional[datetime] = None) -> int:
    """Milliseconds since the epoch."""
    return int((moment or utc_now()).timestamp() * 1000)


def format_file_size(size_bytes: float) -> str:
    """Human readable size using 1024 steps, e.g. ``1.5 KB``."""
    if not size_bytes or size_bytes <= 0:
        return "0 Bytes"
    value = float(size_bytes)
    index = 0
    while value >= 1024 and index < len(_SIZE_UNITS) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {_SIZE_UNITS[index]}"


def _value(date_range: Any) -> str:
    return getattr(date_range, "value", date_range)


def format_date_range(date_range: Any) -> str:
    return _DATE_RANGE_LABELS.get(_value(date_range), "Selected period")


def months_in_range(date_range: Any) -> int:
    return _MONTHS_IN_RANGE.get(_value(date_range), 6)


def _first_of_month_back(today: date, months_back: int) -> date:
    month_index = today.year * 12 + (today.month - 1) - months_back
    return date(month_index // 12, month_index % 12 + 1, 1)


def parse_date_range(date_range: Any, today: Optional[date] = None) -> Tuple[str, str]:
    """
    Resolve a date range selector to inclusive ISO start/end dates.

    Relative ranges start on the first day of a past month and end today.
    """
    today = today or utc_now().date()
    selector = _value(date_range)

    if selector == "last-month":
        start = _first_of_month_back(today, 1)
    elif selector == "last-3-months":
        start = _first_of_month_back(today, 3)
    elif selector == "last-6-months":
        start = _first_of_month_back(today, 6)
    elif selector == "last-year":
        start = date(today.year - 1, 1, 1)
    else:
        return ALL_DATA_START_DATE, today.isoformat()

    return start.isoformat(), today.isoformat()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (with or without ``Z``), datetimes and epoch
    numbers in seconds or milliseconds. Returns None for anything else.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
