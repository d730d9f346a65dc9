"""
cbracal core module

This module provides the calendar loading and synchronization functionality:
- Configuration parsing (config.py)
- Recurrence rule expansion (recurrence.py)
- iCalendar decoding/encoding (ics_codec.py)
- CalDAV client for Radicale: discovery, fetch, upload (caldav_client.py)
- Single-file ICS feeds and local files (ics_subscription.py)
- Loading all calendars into one set (calendar_loader.py)
"""

from .config import Config, RadicaleConfig, CalendarConfig, CALENDAR_COLORS, color_for_index
from .errors import (
    CalendarError,
    ConfigurationError,
    DiscoveryError,
    FetchError,
    DecodeError,
    UploadError,
    NoCalendarsError,
)
from .events import Event, Occurrence, CalendarCollection, MergedCalendarSet
from .recurrence import Frequency, RecurrenceRule, expand
from .ics_codec import decode_calendar, encode_event
from .caldav_client import CalDAVClient
from .ics_subscription import ICSSubscription
from .calendar_loader import (
    load_all_calendars,
    load_calendars_or_sample,
    sample_calendar,
    next_event,
    repeat_event,
    create_event,
)

__all__ = [
    'Config',
    'RadicaleConfig',
    'CalendarConfig',
    'CALENDAR_COLORS',
    'color_for_index',
    'CalendarError',
    'ConfigurationError',
    'DiscoveryError',
    'FetchError',
    'DecodeError',
    'UploadError',
    'NoCalendarsError',
    'Event',
    'Occurrence',
    'CalendarCollection',
    'MergedCalendarSet',
    'Frequency',
    'RecurrenceRule',
    'expand',
    'decode_calendar',
    'encode_event',
    'CalDAVClient',
    'ICSSubscription',
    'load_all_calendars',
    'load_calendars_or_sample',
    'sample_calendar',
    'next_event',
    'repeat_event',
    'create_event',
]
