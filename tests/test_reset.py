"""Tests for the monthly reset policy."""

from datetime import datetime, timedelta, timezone

from codewarden.metering.reset import next_window_start, should_reset


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestShouldReset:
    """Tests for should_reset."""

    def test_same_month_does_not_reset(self):
        """Last instant of the window's month is still inside the window."""
        assert should_reset(utc(2024, 1, 1), utc(2024, 1, 31, 23, 59, 59)) is False

    def test_next_month_resets(self):
        """Crossing into February triggers a reset."""
        assert should_reset(utc(2024, 1, 1), utc(2024, 2, 1)) is True

    def test_calendar_month_not_rolling_duration(self):
        """A window started late in a month resets on the 1st, not after 30 days."""
        assert should_reset(utc(2024, 1, 31), utc(2024, 2, 1, 0, 0, 1)) is True
        assert should_reset(utc(2024, 3, 1), utc(2024, 3, 31)) is False

    def test_year_boundary(self):
        """December to January of the next year resets."""
        assert should_reset(utc(2023, 12, 1), utc(2024, 1, 1)) is True

    def test_earlier_now_does_not_reset(self):
        """A clock behind the window never resets."""
        assert should_reset(utc(2024, 5, 1), utc(2024, 4, 15)) is False

    def test_naive_datetimes_are_utc(self):
        """Naive timestamps from storage are treated as UTC."""
        assert should_reset(datetime(2024, 1, 1), utc(2024, 2, 1)) is True


class TestNextWindowStart:
    """Tests for next_window_start."""

    def test_first_instant_of_month(self):
        assert next_window_start(utc(2024, 2, 17, 13, 45, 12, 500)) == utc(2024, 2, 1)

    def test_converts_to_utc_first(self):
        """Month is taken in UTC, not the caller's offset."""
        tz = timezone(timedelta(hours=-5))
        # 2024-02-29 22:00 at UTC-5 is 2024-03-01 03:00 UTC
        now = datetime(2024, 2, 29, 22, 0, tzinfo=tz)
        assert next_window_start(now) == utc(2024, 3, 1)
