"""
Timezone-aware datetime utilities.

Timestamps are stored and compared in UTC; the configured timezone is only used for
calendar dates on invoices and for human-facing output.
"""

from datetime import date, datetime, timezone as dt_timezone
from typing import Optional

import pytz
from babel.dates import format_datetime as babel_format_datetime

from marketplace_sync.core.config import settings


# Get configured timezone
TIMEZONE = pytz.timezone(settings.timezone)


def utcnow() -> datetime:
    """
    Get current UTC datetime.

    Returns:
        Timezone-aware datetime in UTC
    """
    return datetime.now(dt_timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """
    Normalize a stored timestamp to aware UTC.

    Naive values are assumed to already be UTC (some database drivers drop tzinfo).
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=dt_timezone.utc)
    return dt.astimezone(dt_timezone.utc)


def to_timezone(dt: datetime, tz: Optional[pytz.BaseTzInfo] = None) -> datetime:
    """
    Convert datetime to specified timezone (or default configured timezone).

    Args:
        dt: Input datetime (naive values are treated as UTC)
        tz: Target timezone (defaults to configured timezone)

    Returns:
        Timezone-aware datetime in target timezone
    """
    target_tz = tz or TIMEZONE
    return as_utc(dt).astimezone(target_tz)


def local_date(dt: datetime) -> date:
    """Calendar date of ``dt`` in the configured timezone."""
    return to_timezone(dt).date()


def parse_iso(dt_str: str) -> datetime:
    """
    Parse ISO 8601 datetime string to timezone-aware UTC datetime.

    Examples:
        >>> parse_iso("2025-01-15T10:30:00Z")
        >>> parse_iso("2025-01-15T10:30:00.123+01:00")
    """
    dt = datetime.fromisoformat(dt_str.replace("Z", "+00:00"))
    return as_utc(dt)


def format_datetime(
    dt: Optional[datetime],
    format: str = "medium",
    locale: Optional[str] = None,
) -> str:
    """
    Format datetime for CLI and status output.

    Args:
        dt: Datetime to format; ``None`` renders as an empty string
        format: Format type (short, medium, long, full)
        locale: Locale string (defaults to configured locale)
    """
    if dt is None:
        return ""
    return babel_format_datetime(to_timezone(dt), format=format, locale=locale or settings.locale)
