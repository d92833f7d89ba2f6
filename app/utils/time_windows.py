"""
Wall-clock helpers shared by the schedule and quiet-hours checks.

All "HH:MM" values are 24-hour wall-clock strings. A day is treated as a
circle of 1440 minutes.
"""
import re
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

MINUTES_PER_DAY = 24 * 60

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


class InvalidTimeError(ValueError):
    pass


def parse_hhmm(value: str) -> int:
    """
    Parse "HH:MM" into minutes since midnight.

    Raises:
        InvalidTimeError: malformed string or out-of-range hour/minute

    Example:
        >>> parse_hhmm("19:00")
        1140
    """
    if not isinstance(value, str):
        raise InvalidTimeError(f"Time must be a string, got {type(value).__name__}")
    m = _HHMM_RE.match(value.strip())
    if not m:
        raise InvalidTimeError(f"Malformed time: {value!r}")
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        raise InvalidTimeError(f"Time out of range: {value!r}")
    return hour * 60 + minute


def circular_distance(a: int, b: int) -> int:
    """Distance in minutes between two minutes-of-day, wrapping at midnight."""
    diff = abs(a - b) % MINUTES_PER_DAY
    return min(diff, MINUTES_PER_DAY - diff)


def resolve_zone(name: str | None) -> ZoneInfo:
    """
    IANA zone for a preference value. Empty means UTC.

    Raises:
        InvalidTimeError: unknown zone name
    """
    if not name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(name)
    # a directory name such as "America" raises IsADirectoryError (an OSError)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise InvalidTimeError(f"Unknown timezone: {name!r}") from exc


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_minutes(now: datetime, tz_name: str | None) -> int:
    """Minutes since local midnight of `now` in the given zone."""
    local = as_utc(now).astimezone(resolve_zone(tz_name))
    return local.hour * 60 + local.minute


def utc_today(now: datetime) -> date:
    return as_utc(now).date()


def utc_day_start(now: datetime) -> datetime:
    d = utc_today(now)
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)


def utc_month_start(now: datetime) -> datetime:
    d = utc_today(now)
    return datetime(d.year, d.month, 1, tzinfo=timezone.utc)


def occurrence_date(now: datetime, tz_name: str | None, scheduled_minutes: int) -> date:
    """
    Local date of the daily occurrence of `scheduled_minutes` nearest to `now`.

    A 23:58 reminder matched at 00:01 belongs to the previous local day; a
    00:01 reminder matched at 23:58 belongs to the next one.
    """
    local = as_utc(now).astimezone(resolve_zone(tz_name))
    delta = local.hour * 60 + local.minute - scheduled_minutes
    if delta > MINUTES_PER_DAY // 2:
        return local.date() + timedelta(days=1)
    if delta < -(MINUTES_PER_DAY // 2):
        return local.date() - timedelta(days=1)
    return local.date()
