"""Helpers for time zones and database datetime handling."""

from __future__ import annotations

from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

from pos_shifts.config import settings

LOCAL_TZ = ZoneInfo(settings.timezone)


def adapt_datetime_for_db(value: datetime, bind) -> datetime:
    """Convert a datetime to a form the current DB dialect understands.

    SQLite does not handle tz-aware values, so the value is moved to UTC and
    tzinfo is dropped. Other dialects receive it unchanged.
    """
    if value is None:
        return value
    dialect_name = None
    if bind is not None:
        dialect = getattr(bind, "dialect", None)
        if dialect:
            dialect_name = getattr(dialect, "name", None)
    if dialect_name == "sqlite":
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.replace(tzinfo=None)
    return value


def local_now() -> datetime:
    return datetime.now(LOCAL_TZ)


def local_day_bounds(now: datetime | None = None) -> tuple[datetime, datetime]:
    """Return the UTC bounds of the local calendar day containing ``now``.

    :param now: moment inside the day (naive values are taken as UTC)
    :return: (start, end) both tz-aware in UTC, end inclusive
    """
    current = now or local_now()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    today = current.astimezone(LOCAL_TZ).date()
    start = datetime.combine(today, time.min, tzinfo=LOCAL_TZ).astimezone(timezone.utc)
    end = datetime.combine(today, time.max, tzinfo=LOCAL_TZ).astimezone(timezone.utc)
    return start, end


__all__ = ["LOCAL_TZ", "adapt_datetime_for_db", "local_day_bounds", "local_now"]
