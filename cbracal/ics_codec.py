"""
iCalendar encoding and decoding for cbracal.

Decoding turns VCALENDAR text into Event objects, expanding recurring
events (see recurrence.py) so callers only get concrete occurrences.
Encoding renders one Event as the minimal VCALENDAR object that is PUT
to the server.
"""

from datetime import datetime, date, timedelta
from typing import Optional

import pytz
from dateutil.relativedelta import relativedelta
from icalendar import Calendar as ICalendar, Event as ICalEvent
from icalendar.parser import Contentlines

from .diagnostics import debug_print
from .errors import DecodeError
from .events import Event, NO_TITLE
from .recurrence import RecurrenceRule, expand
from .timezone_utils import local_now, to_utc_datetime


PRODID = '-//cbracal//EN'
UID_DOMAIN = 'cbracal'

# Recurring events are expanded this far past "now"
EXPANSION_HORIZON = relativedelta(years=1)
DEFAULT_DURATION = timedelta(hours=1)


def parse_icalendar(ical_text) -> ICalendar:
    """
    Parse iCalendar text into an icalendar.Calendar object.

    Raises:
        DecodeError: if the text is not structurally valid iCalendar data
    """
    try:
        return ICalendar.from_ical(ical_text)
    except Exception as e:
        raise DecodeError(f"Invalid calendar data: {e}") from e


def raw_recurrence_rules(ical_text) -> list[Optional[str]]:
    """
    Get the RRULE value of every VEVENT, in document order, as written.

    icalendar drops or mangles RRULE values it cannot parse completely
    (INTERVAL=abc, UNTIL=tomorrow), while RecurrenceRule.parse keeps the
    parts it understands. The list lines up with calendar.walk('VEVENT').
    """
    if isinstance(ical_text, bytes):
        ical_text = ical_text.decode('utf-8', errors='replace')

    rules: list[Optional[str]] = []
    stack: list[str] = []
    for line in Contentlines.from_ical(ical_text):
        if not line:
            continue
        try:
            name, _params, value = line.parts()
        except ValueError:
            continue
        name = name.upper()

        if name == 'BEGIN':
            stack.append(value.upper())
            if stack[-1] == 'VEVENT':
                rules.append(None)
        elif name == 'END':
            if stack:
                stack.pop()
        elif name == 'RRULE' and stack and stack[-1] == 'VEVENT' and rules[-1] is None:
            rules[-1] = value
    return rules


def _series_time(value) -> datetime:
    """Turn a DTSTART/DTEND value into an aware datetime, keeping its zone."""
    if isinstance(value, date) and not isinstance(value, datetime):
        value = datetime.combine(value, datetime.min.time())
    if value.tzinfo is None:
        value = pytz.UTC.localize(value)
    return value


def _first(value):
    """icalendar returns a list when a property occurs more than once."""
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _time_property(component, name: str) -> Optional[datetime]:
    """DTSTART/DTEND as an aware datetime; None when missing or unparsable."""
    prop = _first(component.get(name))
    if prop is None:
        return None
    try:
        return _series_time(prop.dt)
    except (ValueError, AttributeError):
        # Newer icalendar keeps unparsable values as broken properties
        return None


def _text(component, name: str) -> str:
    value = _first(component.get(name))
    return str(value) if value else ''


def _decode_vevent(
    component,
    rrule_text: Optional[str],
    calendar_name: str,
    color: str,
    horizon: datetime,
    now: datetime
) -> list[Event]:
    start = _time_property(component, 'DTSTART')
    if start is None:
        return []
    end = _time_property(component, 'DTEND') or start + DEFAULT_DURATION

    summary = _text(component, 'SUMMARY') or NO_TITLE
    description = _text(component, 'DESCRIPTION')
    uid = _text(component, 'UID')

    if not rrule_text:
        # Single events are kept regardless of how old they are
        return [Event(
            summary=summary,
            start=to_utc_datetime(start),
            end=to_utc_datetime(end),
            description=description,
            calendar_name=calendar_name,
            calendar_color=color,
            uid=uid,
        )]

    return [
        Event(
            summary=summary,
            start=to_utc_datetime(occurrence.start),
            end=to_utc_datetime(occurrence.end),
            description=description,
            calendar_name=calendar_name,
            calendar_color=color,
            uid=uid,
        )
        for occurrence in expand(start, end, RecurrenceRule.parse(rrule_text), horizon, now)
    ]


def decode_calendar(
    ical_text,
    calendar_name: str = "",
    color: str = "",
    now: Optional[datetime] = None
) -> list[Event]:
    """
    Decode VCALENDAR text into events tagged with their source calendar.

    Events without a usable DTSTART are skipped, as is any other record
    that cannot be read; recurring events are expanded up to one year
    after `now`.

    Raises:
        DecodeError: if the payload itself cannot be parsed
    """
    calendar = parse_icalendar(ical_text)
    rrules = raw_recurrence_rules(ical_text)
    if now is None:
        now = local_now()
    horizon = now + EXPANSION_HORIZON

    events = []
    for index, component in enumerate(calendar.walk('VEVENT')):
        rrule_text = rrules[index] if index < len(rrules) else None
        try:
            events.extend(_decode_vevent(component, rrule_text, calendar_name, color, horizon, now))
        except ValueError as e:
            debug_print(f"Skipping malformed event in '{calendar_name}': {e}", tag="ICS")
    return events


def combine_calendar_blocks(blocks: list[str]) -> str:
    """Wrap several VCALENDAR/VEVENT text blocks in one synthetic VCALENDAR."""
    lines = ['BEGIN:VCALENDAR', 'VERSION:2.0', f'PRODID:{PRODID}']
    for block in blocks:
        block = block.strip()
        if block:
            lines.append(block)
    lines.append('END:VCALENDAR')
    return '\r\n'.join(lines) + '\r\n'


def generate_uid(now: Optional[datetime] = None) -> str:
    """Generate a UID for a new event from the current time."""
    if now is None:
        now = datetime.now(pytz.UTC)
    return f"{to_utc_datetime(now).strftime('%Y%m%dT%H%M%S%fZ')}@{UID_DOMAIN}"


def encode_event(event: Event, now: Optional[datetime] = None) -> str:
    """
    Render a single event as VCALENDAR text for upload.

    Assigns event.uid first if the event does not have one yet. SUMMARY and
    DESCRIPTION are escaped by icalendar (backslash, comma, semicolon, newline).
    """
    if not event.uid:
        event.uid = generate_uid(now)

    vevent = ICalEvent()
    vevent.add('uid', event.uid)
    vevent.add('dtstart', to_utc_datetime(event.start).replace(microsecond=0))
    vevent.add('dtend', to_utc_datetime(event.end).replace(microsecond=0))
    vevent.add('summary', event.summary)
    vevent.add('description', event.description)

    ical = ICalendar()
    ical.add('prodid', PRODID)
    ical.add('version', '2.0')
    ical.add_component(vevent)
    return ical.to_ical().decode('utf-8')
