"""
Canonical day boundaries.

Rate limits, streak checks and MVP keys all derive their day from here so the
same instant always lands in the same day. Intervals are half-open [start, end).
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from orbit.models.social import RateLimitWindow

logger = logging.getLogger("orbit.timewindow")

DEFAULT_TIMEZONE = "UTC"


def as_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    aware = moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)
    return aware.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_day_start(moment: datetime) -> datetime:
    """UTC midnight of the calendar day containing `moment`."""
    return datetime.combine(as_utc(moment).date(), time.min, tzinfo=timezone.utc)


def utc_day_end(moment: datetime) -> datetime:
    """Next UTC midnight (exclusive upper bound)."""
    return utc_day_start(moment) + timedelta(days=1)


def date_string(moment: datetime) -> str:
    return as_utc(moment).date().isoformat()


def today_string(now: Optional[datetime] = None) -> str:
    return date_string(now or utc_now())


def yesterday_string(now: Optional[datetime] = None) -> str:
    return date_string((now or utc_now()) - timedelta(days=1))


def day_window(moment: datetime) -> RateLimitWindow:
    return RateLimitWindow(start=utc_day_start(moment), end=utc_day_end(moment))


def in_window(moment: datetime, window: RateLimitWindow) -> bool:
    return window.contains(as_utc(moment))


def utc_day_bounds(day: date) -> Tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


# Zone-aware helpers for room time zones ---------------------------------

@lru_cache(maxsize=128)
def resolve_timezone(name: Optional[str]) -> ZoneInfo:
    """IANA zone by name; unset or unknown names resolve to UTC."""
    if not name:
        return ZoneInfo(DEFAULT_TIMEZONE)
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("unknown timezone %r, falling back to UTC", name)
        return ZoneInfo(DEFAULT_TIMEZONE)


def local_date(moment: datetime, tz_name: Optional[str] = None) -> date:
    return as_utc(moment).astimezone(resolve_timezone(tz_name)).date()


def local_day_start(moment: datetime, tz_name: Optional[str] = None) -> datetime:
    """Start of the local calendar day containing `moment`, as a UTC instant."""
    tz = resolve_timezone(tz_name)
    local_midnight = datetime.combine(local_date(moment, tz_name), time.min, tzinfo=tz)
    return local_midnight.astimezone(timezone.utc)


def local_day_bounds_for(day: date, tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    """[start, end) of a local calendar day, as UTC instants (DST-safe)."""
    tz = resolve_timezone(tz_name)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def local_day_bounds(moment: datetime, tz_name: Optional[str] = None) -> Tuple[datetime, datetime]:
    return local_day_bounds_for(local_date(moment, tz_name), tz_name)


def local_yesterday(now: Optional[datetime] = None, tz_name: Optional[str] = None) -> date:
    """The most recent local calendar day that has fully ended."""
    return local_date(now or utc_now(), tz_name) - timedelta(days=1)
