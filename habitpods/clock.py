"""
Timezone arithmetic for goals.

Every goal carries its own IANA zone. Logical dates and fire instants are
derived through that zone only; the server's local time never leaks in.
Instants are stored as naive UTC datetimes.
"""
from __future__ import annotations

import re
import zoneinfo
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional

from .errors import InvalidTimezone

HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def utcnow() -> datetime:
    """Current instant as naive UTC (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def zone(tz_name: Optional[str]) -> zoneinfo.ZoneInfo:
    """Resolve an IANA zone id. Raises InvalidTimezone, never falls back."""
    if not tz_name:
        raise InvalidTimezone(tz_name)
    try:
        return zoneinfo.ZoneInfo(str(tz_name))
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        raise InvalidTimezone(tz_name)


def is_valid_timezone(tz_name: Optional[str]) -> bool:
    try:
        zone(tz_name)
        return True
    except InvalidTimezone:
        return False


def parse_hhmm(value: str) -> time:
    m = HHMM.match(str(value or "").strip())
    if not m:
        raise ValueError(f"invalid time of day (expected HH:MM): {value!r}")
    return time(int(m.group(1)), int(m.group(2)))


def _as_utc_aware(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant


def to_naive_utc(instant: datetime) -> datetime:
    return _as_utc_aware(instant).astimezone(timezone.utc).replace(tzinfo=None)


def local_now(tz_name: str, now: Optional[datetime] = None) -> datetime:
    return _as_utc_aware(now or utcnow()).astimezone(zone(tz_name))


def local_today(tz_name: str, now: Optional[datetime] = None) -> date:
    """Logical date of `now` (naive UTC) in the given zone."""
    return local_now(tz_name, now).date()


def logical_date(instant: datetime, tz_name: str) -> date:
    """Calendar date of an instant as seen in the goal's zone."""
    return local_today(tz_name, instant)


def fire_instant(day: date, local_time: str, tz_name: str) -> datetime:
    """
    Absolute instant (naive UTC) for `local_time` on `day` in the zone.

    Wall times inside a spring-forward gap resolve with the pre-transition
    offset, so they land just after the gap. Wall times inside a fall-back
    overlap resolve to the first occurrence (fold=0).
    """
    t = parse_hhmm(local_time)
    local = datetime(day.year, day.month, day.day, t.hour, t.minute, tzinfo=zone(tz_name))
    return local.astimezone(timezone.utc).replace(tzinfo=None)


def sunday_weekday(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def week_start(day: date) -> date:
    """Monday of the ISO week containing `day`."""
    return day - timedelta(days=day.weekday())
