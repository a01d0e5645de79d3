"""UTC date helpers shared by import, analytics and reputation."""

from __future__ import annotations

import calendar
from datetime import UTC, datetime

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def utc_now() -> datetime:
    return datetime.now(UTC)


def months_ago(months: int, now: datetime | None = None) -> datetime:
    """*now* shifted back by whole calendar months, clamping the day."""
    now = now or utc_now()
    total = now.year * 12 + (now.month - 1) - months
    year, month = divmod(total, 12)
    month += 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def since_date(months: int, now: datetime | None = None) -> str:
    """``YYYY-MM-DD`` lower bound of an analytics window."""
    return months_ago(months, now).strftime("%Y-%m-%d")


def format_timestamp(value: datetime) -> str:
    return value.astimezone(UTC).strftime(TIMESTAMP_FORMAT)


def parse_stored_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        return None
