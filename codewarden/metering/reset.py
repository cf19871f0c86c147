"""
Monthly reset policy.

Windows are calendar months in UTC, not rolling 30-day durations.
"""

from datetime import datetime

from codewarden.core.timeutil import ensure_utc, month_start


def should_reset(window_start: datetime, now: datetime) -> bool:
    """True iff now falls in a later calendar month than window_start."""
    window_start = ensure_utc(window_start)
    now = ensure_utc(now)
    return (now.year, now.month) > (window_start.year, window_start.month)


def next_window_start(now: datetime) -> datetime:
    """First instant of now's month."""
    return month_start(now)
