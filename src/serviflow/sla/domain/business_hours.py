"""
Business-Hours Calendar
=======================

Pure functions converting wall-clock spans into working time.

A profile describes a timezone, a set of ISO weekdays (1 = Monday ... 7 =
Sunday) and a daily ``[start_time, end_time)`` window. Each day's window is
built in the profile's local time and compared in UTC, so a window always
covers its real length on DST transition days.

A ``None`` profile, a 24x7 profile and a degenerate profile (no days, or an
end time not after the start time) all fall back to wall-clock time.
"""

import json
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, Optional, Tuple

from serviflow.core.clock import ensure_utc
from serviflow.shared.infrastructure.logging import get_logger
from serviflow.sla.domain.entities import BusinessHoursProfile

logger = get_logger(__name__)

ALL_DAYS: Tuple[int, ...] = (1, 2, 3, 4, 5, 6, 7)

# Upper bound on days walked when searching forward for working time
MAX_SEARCH_DAYS = 3660


def parse_days_of_week(value) -> Tuple[int, ...]:
    """
    Parse a weekday set from storage.

    Accepts a list/tuple or a JSON string such as ``"[1,2,3,4,5]"``. Anything
    missing, empty or unreadable means every day.
    """
    if not value:
        return ALL_DAYS
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return ALL_DAYS
    if not isinstance(value, (list, tuple)):
        return ALL_DAYS
    days = tuple(sorted({int(d) for d in value if str(d).isdigit() and 1 <= int(d) <= 7}))
    return days or ALL_DAYS


def parse_time(value) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` (or pass a ``time`` through). Bad input is midnight."""
    if isinstance(value, time):
        return value
    if not value:
        return time(0, 0)
    parts = str(value).split(":")
    try:
        hours = int(parts[0])
        minutes = int(parts[1]) if len(parts) > 1 else 0
        return time(hours, minutes)
    except ValueError:
        return time(0, 0)


def _uses_wall_clock(profile: Optional[BusinessHoursProfile]) -> bool:
    return profile is None or profile.is_24x7 or profile.is_degenerate


def _windows(profile: BusinessHoursProfile, first_day: date) -> Iterator[Tuple[datetime, datetime]]:
    """Yield UTC ``(open, close)`` pairs for each active day from ``first_day`` on."""
    tz = profile.tzinfo
    for offset in range(MAX_SEARCH_DAYS):
        day = first_day + timedelta(days=offset)
        if day.isoweekday() not in profile.days_of_week:
            continue
        opens = datetime.combine(day, profile.start_time, tzinfo=tz).astimezone(timezone.utc)
        closes = datetime.combine(day, profile.end_time, tzinfo=tz).astimezone(timezone.utc)
        yield opens, closes
    logger.warning(
        "Business-hours search limit reached, result is approximate",
        extra={"first_day": first_day.isoformat(), "max_search_days": MAX_SEARCH_DAYS}
    )


def _local_date(instant: datetime, profile: BusinessHoursProfile) -> date:
    return instant.astimezone(profile.tzinfo).date()


def elapsed_business_minutes(
    start: datetime,
    end: datetime,
    profile: Optional[BusinessHoursProfile]
) -> float:
    """
    Working minutes between two instants.

    With no profile or a 24x7 profile this is the signed wall-clock
    difference, so ``end < start`` gives a negative number. With a calendar
    the result is never negative.
    """
    start, end = ensure_utc(start), ensure_utc(end)
    wall = (end - start).total_seconds() / 60

    if profile is None or profile.is_24x7:
        return wall
    if profile.is_degenerate:
        return max(0.0, wall)
    if end <= start:
        return 0.0

    last_day = _local_date(end, profile)
    total_seconds = 0.0
    for opens, closes in _windows(profile, _local_date(start, profile)):
        if opens.astimezone(profile.tzinfo).date() > last_day:
            break
        overlap_start = max(start, opens)
        overlap_end = min(end, closes)
        if overlap_end > overlap_start:
            total_seconds += (overlap_end - overlap_start).total_seconds()
    return total_seconds / 60


def is_within_business_hours(at: datetime, profile: Optional[BusinessHoursProfile]) -> bool:
    if _uses_wall_clock(profile):
        return True
    at = ensure_utc(at)
    local = at.astimezone(profile.tzinfo)
    if local.isoweekday() not in profile.days_of_week:
        return False
    return profile.start_time <= local.time() < profile.end_time


def next_business_start(at: datetime, profile: Optional[BusinessHoursProfile]) -> datetime:
    """First instant at or after ``at`` that falls inside business hours."""
    at = ensure_utc(at)
    if _uses_wall_clock(profile):
        return at
    for opens, closes in _windows(profile, _local_date(at, profile)):
        if closes > at:
            return max(opens, at)
    return at


def add_business_minutes(
    start: datetime,
    minutes: float,
    profile: Optional[BusinessHoursProfile]
) -> datetime:
    """
    Instant reached after ``minutes`` of working time from ``start``.

    Used to compute response and resolution due dates.
    """
    start = ensure_utc(start)
    if _uses_wall_clock(profile) or minutes <= 0:
        return start + timedelta(minutes=minutes)

    remaining = timedelta(minutes=minutes)
    for opens, closes in _windows(profile, _local_date(start, profile)):
        segment_start = max(opens, start)
        if segment_start >= closes:
            continue
        available = closes - segment_start
        if remaining <= available:
            return segment_start + remaining
        remaining -= available
    # Calendar exhausted; treat what is left as wall-clock time
    return start + timedelta(minutes=minutes)


def business_minutes_remaining(
    now: datetime,
    due: Optional[datetime],
    profile: Optional[BusinessHoursProfile]
) -> Optional[float]:
    """Working minutes until ``due``; negative once overdue. ``None`` without a due date."""
    if due is None:
        return None
    if ensure_utc(due) >= ensure_utc(now):
        return elapsed_business_minutes(now, due, profile)
    return -elapsed_business_minutes(due, now, profile)
