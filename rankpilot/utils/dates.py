"""Datetime helpers."""

from __future__ import annotations

import math
import os
from datetime import date, datetime, timedelta, timezone

import pendulum

DEFAULT_TZ = "Asia/Seoul"


def timezone_name() -> str:
    return os.environ.get("TIMEZONE", DEFAULT_TZ)


def now_in_tz() -> pendulum.DateTime:
    tz = pendulum.timezone(timezone_name())
    return pendulum.now(tz)


def today_in_tz() -> date:
    now = now_in_tz()
    return date(now.year, now.month, now.day)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def local_date(value: datetime) -> date:
    """Calendar day of ``value`` in the configured timezone."""
    local = pendulum.instance(value).in_timezone(timezone_name())
    return date(local.year, local.month, local.day)


def parse_iso_date(value: str) -> date:
    parsed = pendulum.parse(value)
    return date(parsed.year, parsed.month, parsed.day)


def format_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def coerce_datetime(value: datetime | str | None) -> datetime | None:
    """Normalise a driver value to an aware stdlib datetime.

    SQLite hands back ISO strings where Postgres returns datetimes.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def coerce_date(value: date | str | None) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    return value


def elapsed_days(start: datetime, end: datetime) -> int:
    seconds = abs((end - start).total_seconds())
    return math.ceil(seconds / timedelta(days=1).total_seconds())
