"""
Date and Time utilities

This module handles wall-clock parsing, year inference, the DST rule, UTC offset
resolution and XMLTV time formatting. Centralizes all time arithmetic so the
listing scanner, detail scraper and output writer agree on every conversion.
"""
from datetime import datetime, timedelta, timezone
import logging
import re

logger = logging.getLogger(__name__)

# Month gap beyond which a year-less date is taken to belong to next year
YEAR_ROLLOVER_MONTHS = 6

_LOCAL_FORMATS_WITH_YEAR = (
    "%m/%d/%Y %I:%M %p",
    "%m/%d/%Y %H:%M",
    "%Y-%m-%d %H:%M",
    "%Y%m%d%H%M",
)
_LOCAL_FORMATS_WITHOUT_YEAR = (
    "%m/%d %I:%M %p",
    "%m/%d %H:%M",
)

_DURATION_PATTERNS = (
    re.compile(r"^(?P<minutes>\d+)\s*(?:m|min|mins|minutes)?$", re.I),
    re.compile(
        r"^(?P<hours>\d+)\s*(?:h|hr|hrs|hour|hours)\s*(?:(?P<minutes>\d+)\s*(?:m|min|mins|minutes)?)?$",
        re.I,
    ),
    re.compile(r"^(?P<hours>\d+):(?P<minutes>\d{2})$"),
)


class TimeFormatError(ValueError):
    """Raised when a time or duration string cannot be parsed"""
    pass


def _nth_sunday(year: int, month: int, n: int) -> int:
    """Day of month of the n-th Sunday"""
    first_weekday = datetime(year, month, 1).weekday()
    first_sunday = 1 + (6 - first_weekday) % 7
    return first_sunday + 7 * (n - 1)


def dst_bounds(year: int) -> tuple[datetime, datetime]:
    """
    Local wall-clock DST transitions for a year

    DST starts at 02:00 on the second Sunday of March and ends at 02:00 on the
    first Sunday of November.

    Returns:
        Tuple of (dst_start, dst_end) as naive local datetimes
    """
    start = datetime(year, 3, _nth_sunday(year, 3, 2), 2, 0)
    end = datetime(year, 11, _nth_sunday(year, 11, 1), 2, 0)
    return start, end


def is_dst(local: datetime) -> bool:
    """
    Check whether a naive local time falls strictly inside the DST period

    The repeated 01:00-01:59 hour on the November transition day is ambiguous
    without an offset and always resolves to its first (DST) occurrence.
    """
    start, end = dst_bounds(local.year)
    return start < local < end


def resolve_utc_offset(local: datetime, base_offset_hours: int, observes_dst: bool = True) -> timedelta:
    """
    Resolve the UTC offset in effect at a local wall-clock time

    Args:
        local: Naive local datetime
        base_offset_hours: Standard-time offset of the zone (e.g. -8)
        observes_dst: False for fixed-offset zones

    Returns:
        Offset from UTC
    """
    offset = timedelta(hours=base_offset_hours)
    if observes_dst and is_dst(local):
        offset += timedelta(hours=1)
    return offset


def localize(local: datetime, base_offset_hours: int, observes_dst: bool = True) -> datetime:
    """Attach the resolved fixed offset to a naive local datetime"""
    offset = resolve_utc_offset(local, base_offset_hours, observes_dst)
    return local.replace(tzinfo=timezone(offset))


def local_now(base_offset_hours: int, observes_dst: bool = True) -> datetime:
    """Current naive wall-clock time in the listing's zone"""
    now_utc = datetime.now(timezone.utc).replace(tzinfo=None)
    local = now_utc + timedelta(hours=base_offset_hours)
    if observes_dst and is_dst(local):
        local += timedelta(hours=1)
    return local


def infer_year(month: int, now: datetime) -> int:
    """
    Infer the year of a year-less date

    Listings run ahead of the current date, so a month far behind the current
    one means the date has rolled over into next year.
    """
    if month + YEAR_ROLLOVER_MONTHS < now.month:
        return now.year + 1
    return now.year


def parse_local_time(text: str, now: datetime) -> datetime:
    """
    Parse a site-reported wall-clock time into a naive local datetime

    Args:
        text: Time string like '01/15/2005 9:00 AM', '01/15 9:00 AM' or '200501150900'
        now: Current local time, used to infer a missing year

    Returns:
        Naive local datetime

    Raises:
        TimeFormatError: If the text matches no known format
    """
    cleaned = " ".join(text.split())
    for fmt in _LOCAL_FORMATS_WITH_YEAR:
        try:
            return datetime.strptime(cleaned, fmt)
        except ValueError:
            continue

    for fmt in _LOCAL_FORMATS_WITHOUT_YEAR:
        # Parse with an explicit year so February 29 survives strptime
        try:
            parsed = datetime.strptime(f"{cleaned} {now.year}", f"{fmt} %Y")
        except ValueError:
            continue
        year = infer_year(parsed.month, now)
        if year == parsed.year:
            return parsed
        try:
            return parsed.replace(year=year)
        except ValueError as e:
            raise TimeFormatError(f"Invalid date for year {year}: '{text}'") from e

    raise TimeFormatError(f"Unrecognized local time format: '{text}'")


def parse_duration_minutes(text: str) -> int:
    """
    Parse a programme duration

    Args:
        text: Duration like '90', '90 min', '1 hr 30 min', '1h30m' or '1:30'

    Returns:
        Duration in minutes

    Raises:
        TimeFormatError: If the duration cannot be parsed
    """
    cleaned = text.strip()
    for pattern in _DURATION_PATTERNS:
        match = pattern.match(cleaned)
        if match:
            parts = match.groupdict()
            hours = int(parts.get("hours") or 0)
            minutes = int(parts.get("minutes") or 0)
            return hours * 60 + minutes
    raise TimeFormatError(f"Unrecognized duration: '{text}'")


def compute_stop_time(start_time: datetime, duration_minutes: int | None) -> datetime | None:
    """Stop time is start plus duration, and absent without a duration"""
    if duration_minutes is None:
        return None
    return start_time + timedelta(minutes=duration_minutes)


def format_xmltv_time(value: datetime) -> str:
    """
    Convert an aware datetime to XMLTV time format

    Args:
        value: Timezone-aware datetime

    Returns:
        XMLTV time like '20050115090000 -0800'
    """
    if value.tzinfo is None:
        raise TimeFormatError(f"XMLTV times need an offset: {value.isoformat()}")
    return value.strftime("%Y%m%d%H%M%S %z")
