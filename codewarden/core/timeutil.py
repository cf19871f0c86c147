"""
Time utilities for Codewarden.

All internal timestamps use UTC; the configured timezone is only used
for display.
"""

from datetime import datetime, timezone, tzinfo
from typing import Callable, Optional

import pytz

from codewarden.core.config import get_settings

# Injectable source of "now"; must return an aware datetime.
Clock = Callable[[], datetime]


def get_timezone() -> tzinfo:
    """Get configured display timezone."""
    settings = get_settings()
    return pytz.timezone(settings.timezone)


def now_utc() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Return dt as an aware UTC datetime. Naive values are taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_local(dt: datetime) -> datetime:
    """Convert datetime to configured timezone."""
    return ensure_utc(dt).astimezone(get_timezone())


def month_start(dt: datetime) -> datetime:
    """First instant of dt's UTC calendar month."""
    dt = ensure_utc(dt)
    return dt.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def format_timestamp(dt: Optional[datetime] = None, fmt: str = "iso") -> str:
    """
    Format datetime to string.

    Args:
        dt: Datetime to format. Uses current UTC time if not provided.
        fmt: Format type - 'iso', 'display', 'date', or a strftime format
    """
    if dt is None:
        dt = now_utc()

    formats = {
        "iso": "%Y-%m-%dT%H:%M:%SZ",
        "display": "%Y-%m-%d %H:%M:%S",
        "date": "%Y-%m-%d",
    }

    return dt.strftime(formats.get(fmt, fmt))
