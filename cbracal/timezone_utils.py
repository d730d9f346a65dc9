"""
Timezone utilities for cbracal.

All event times are kept in UTC; "today" and "yesterday" are judged in the
configured local timezone.
"""

from datetime import datetime, date
import time as _time
import pytz


# Empty means: use the system timezone
_local_timezone_name: str = ""


def set_timezone(timezone_name: str):
    """Set the local timezone for the application."""
    global _local_timezone_name
    _local_timezone_name = timezone_name


def get_local_timezone():
    """
    Get the local timezone as a pytz timezone object.

    Returns:
        pytz timezone object for the configured local timezone.
    """
    if _local_timezone_name:
        try:
            return pytz.timezone(_local_timezone_name)
        except pytz.UnknownTimeZoneError:
            pass
    try:
        return pytz.timezone(_time.tzname[0])
    except pytz.UnknownTimeZoneError:
        # Last resort: calculate offset and use fixed offset timezone
        is_dst = _time.localtime().tm_isdst
        if is_dst:
            offset_seconds = -_time.altzone
        else:
            offset_seconds = -_time.timezone
        return pytz.FixedOffset(offset_seconds // 60)


def local_now() -> datetime:
    """Current time as a timezone-aware datetime in the local timezone."""
    return datetime.now(get_local_timezone())


def to_utc_datetime(value) -> datetime:
    """
    Normalize an iCalendar date or datetime value to an aware UTC datetime.

    Date-only values become midnight; naive (floating) values are taken as UTC.
    """
    if isinstance(value, date) and not isinstance(value, datetime):
        value = datetime.combine(value, datetime.min.time())
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def calendar_day(dt: datetime, reference: datetime) -> date:
    """Calendar date of dt as seen in the timezone of reference."""
    if dt.tzinfo is not None and reference.tzinfo is not None:
        dt = dt.astimezone(reference.tzinfo)
    return dt.date()
