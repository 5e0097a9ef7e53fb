"""
Time-of-day and UTC offset helpers.

Offsets are expressed in minutes east of UTC, the way the settings document
stores them (e.g. -420 for UTC-07:00).
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

TIME_OF_DAY_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

# Offsets observed in the wild range from UTC-12:00 to UTC+14:00
MIN_OFFSET_MINUTES = -12 * 60
MAX_OFFSET_MINUTES = 14 * 60


def parse_time_of_day(value: str) -> Tuple[int, int]:
    """Parse an "HH:MM" string into (hour, minute).

    Raises:
        ValueError: If the string is not a valid 24h time of day
    """
    match = TIME_OF_DAY_PATTERN.match(value.strip())
    if not match:
        raise ValueError(f"Invalid time of day {value!r}, expected HH:MM")
    return int(match.group(1)), int(match.group(2))


def fixed_offset(offset_minutes: int) -> timezone:
    """Build a fixed-offset tzinfo for the given offset in minutes."""
    return timezone(timedelta(minutes=offset_minutes))


def local_utc_offset(at: Optional[datetime] = None) -> int:
    """Return the process-local UTC offset in minutes at the given instant (default now)."""
    moment = (at or datetime.now(timezone.utc)).astimezone()
    return int(moment.utcoffset().total_seconds() // 60)


def offset_of(timestamp: datetime) -> Optional[int]:
    """Return the UTC offset in minutes a timestamp was recorded with, or None if naive."""
    if timestamp.tzinfo is None or timestamp.utcoffset() is None:
        return None
    return int(timestamp.utcoffset().total_seconds() // 60)


def to_local_time_of_day(
    time_of_day: str,
    user_offset_minutes: int,
    local_offset_minutes: int,
) -> Tuple[int, int]:
    """
    Re-express a user's wall-clock time of day in the process-local offset.

    The time is first anchored in the user's offset, then converted into the
    local offset. The calendar date is irrelevant for fixed offsets, so any
    anchor date yields the same hour and minute.

    Example:
        >>> to_local_time_of_day("09:00", -420, 120)
        (18, 0)
    """
    hour, minute = parse_time_of_day(time_of_day)
    anchored = datetime.combine(
        date(2000, 1, 1), time(hour, minute), tzinfo=fixed_offset(user_offset_minutes)
    )
    local = anchored.astimezone(fixed_offset(local_offset_minutes))
    return local.hour, local.minute
