from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo


DEFAULT_TZ = "Europe/Oslo"


def now_local(tz_name: str = DEFAULT_TZ) -> datetime:
    return datetime.now(tz=ZoneInfo(tz_name))


def utc_midnight(day: date) -> datetime:
    """Start of a local calendar day, stored as UTC midnight of that date."""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def as_utc_wallclock(dt: datetime) -> datetime:
    """Re-express a local instant in the UTC-midnight frame used for due dates.

    The wall clock is kept and the offset dropped, so 23:30 local stays on the
    same calendar day instead of drifting across midnight.
    """
    return dt.replace(tzinfo=timezone.utc)


def sunday_weekday(day: date) -> int:
    # 0=Sunday..6=Saturday
    return (day.weekday() + 1) % 7


def parse_instant(raw: str | None) -> datetime | None:
    if not raw:
        return None
    value = datetime.fromisoformat(raw)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def format_instant(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def yesterday_midnight(day: date) -> datetime:
    return utc_midnight(day) - timedelta(days=1)
