"""
Calendar loading for cbracal.

Combines every configured source (calendars discovered on the Radicale
server, single-file feeds, local ICS files) into one MergedCalendarSet,
and creates new events on the server.

Sources are loaded one after the other. A source that fails is reported
as a warning and skipped; only a load that produced no events at all is
an error.
"""

from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Optional

from dateutil.relativedelta import relativedelta

from .caldav_client import CalDAVClient
from .config import Config, color_for_index
from .diagnostics import warn, debug_print, set_debug
from .errors import CalendarError, NoCalendarsError
from .events import Event, MergedCalendarSet
from .ics_subscription import ICSSubscription
from .timezone_utils import local_now, set_timezone


# Safety limits when turning a "repeat" choice into separate events
MAX_REPEATS = 365
MAX_OPEN_ENDED_REPEATS = 53

_REPEAT_STEPS = {
    'daily': relativedelta(days=1),
    'weekly': relativedelta(weeks=1),
    'monthly': relativedelta(months=1),
}


def _add_source(merged: MergedCalendarSet, name: str, color: str, events: list[Event]) -> None:
    merged.colors[name] = color
    merged.events.extend(events)
    debug_print(f"Loaded {len(events)} events from '{name}'", tag="LOADER")


def resolve_local_calendar(name: str, base_dir: Path) -> Path:
    """Get the path of a local calendar file; the .ics suffix is optional."""
    if not name.endswith('.ics'):
        name += '.ics'
    return Path(base_dir) / Path(name).expanduser()


def _load_server_calendars(
    config: Config,
    merged: MergedCalendarSet,
    color_index: int,
    now: datetime
) -> int:
    """Load all calendars of the Radicale account. Returns the next color index."""
    try:
        client = CalDAVClient.from_config(config.radicale, config.password_program, config.timeout)
        collections = client.discover_calendars()
    except CalendarError as e:
        warn(f"Failed to connect to Radicale server: {e}")
        return color_index

    for collection in collections:
        color = color_for_index(color_index)
        try:
            events = client.fetch_events(collection.url, collection.display_name, color, now)
        except CalendarError as e:
            warn(f"Failed to load Radicale calendar {collection.display_name}: {e}")
            continue
        _add_source(merged, collection.display_name, color, events)
        merged.urls[collection.display_name] = collection.url
        color_index += 1

    return color_index


def load_all_calendars(config: Config, now: Optional[datetime] = None) -> MergedCalendarSet:
    """
    Load every configured calendar.

    Order: Radicale server calendars, then [[calendars]] feeds, then
    local_calendars files. Each source that loads gets the next palette color.

    Raises:
        NoCalendarsError: if no source produced any event
    """
    if config.debug:
        set_debug(True)
    if config.timezone:
        set_timezone(config.timezone)
    if now is None:
        now = local_now()

    merged = MergedCalendarSet()
    color_index = 0

    if config.radicale is not None and config.radicale.server_url:
        color_index = _load_server_calendars(config, merged, color_index, now)

    for calendar in config.calendars:
        # Server calendars are discovered, not configured one by one
        if calendar.type == 'radicale':
            continue

        color = color_for_index(color_index)
        subscription = ICSSubscription.from_config(calendar, config.base_dir, config.timeout)
        try:
            events = subscription.load(color, now)
        except (CalendarError, OSError) as e:
            warn(f"Failed to load calendar {calendar.name}: {e}")
            continue
        _add_source(merged, calendar.name, color, events)
        color_index += 1

    for local_name in config.local_calendars:
        path = resolve_local_calendar(local_name, config.base_dir)
        if not path.exists():
            warn(f"Local calendar file not found: {path}")
            continue

        name = path.stem
        color = color_for_index(color_index)
        try:
            events = ICSSubscription(name=name, file=str(path)).load(color, now)
        except (CalendarError, OSError) as e:
            warn(f"Failed to load local calendar {name}: {e}")
            continue
        _add_source(merged, name, color, events)
        color_index += 1

    if not merged.events:
        raise NoCalendarsError("no calendars found")

    return merged


def sample_calendar(now: Optional[datetime] = None) -> MergedCalendarSet:
    """Built-in calendar shown when nothing could be loaded."""
    if now is None:
        now = local_now()

    def today_at(hour: int, minute: int = 0) -> datetime:
        return now.replace(hour=hour, minute=minute, second=0, microsecond=0)

    work_color = color_for_index(0)
    personal_color = color_for_index(1)
    return MergedCalendarSet(
        events=[
            Event(
                summary="Team Standup",
                start=today_at(9),
                end=today_at(9, 30),
                calendar_name="Work",
                calendar_color=work_color,
            ),
            Event(
                summary="Lunch Break",
                start=today_at(12),
                end=today_at(13),
                calendar_name="Personal",
                calendar_color=personal_color,
            ),
        ],
        colors={"Work": work_color, "Personal": personal_color},
    )


def load_calendars_or_sample(
    config: Config,
    now: Optional[datetime] = None
) -> tuple[MergedCalendarSet, Optional[NoCalendarsError]]:
    """
    Load all calendars, falling back to the sample calendar.

    Returns:
        (calendars, None) on success, (sample calendar, error) otherwise.
    """
    try:
        return load_all_calendars(config, now), None
    except NoCalendarsError as e:
        return sample_calendar(now), e


def next_event(events: list[Event], now: Optional[datetime] = None) -> Optional[Event]:
    """Get the first event that starts after now."""
    if now is None:
        now = local_now()
    upcoming = [e for e in events if e.start > now]
    if not upcoming:
        return None
    return min(upcoming, key=lambda e: e.start)


def repeat_event(
    event: Event,
    repeat: str,
    repeat_until: Optional[datetime] = None
) -> list[Event]:
    """
    Turn a new event plus a "repeat" choice into separate events.

    Args:
        event: The first occurrence
        repeat: "daily", "weekly", "monthly"; anything else means no repeat
        repeat_until: Last day (inclusive) on which an occurrence may start;
            without it the series stops after a year's worth of weeks

    Returns:
        The events to create, starting with `event` itself.
    """
    step = _REPEAT_STEPS.get((repeat or '').lower())
    if step is None:
        return [event]

    limit = MAX_REPEATS if repeat_until is not None else MAX_OPEN_ENDED_REPEATS
    last_day = repeat_until.date() if repeat_until is not None else None
    duration = event.end - event.start

    events = []
    for i in range(limit):
        start = event.start + step * i
        if last_day is not None and start.date() > last_day:
            break
        events.append(replace(event, start=start, end=start + duration))
    return events


def create_event(
    merged: MergedCalendarSet,
    calendar_name: str,
    event: Event,
    client: Optional[CalDAVClient] = None,
    now: Optional[datetime] = None
) -> Event:
    """
    Create a new event in a calendar.

    The event is uploaded when the calendar lives on the server and a
    client is given; it is then added to the merged set either way.

    Raises:
        UploadError: if the server rejects the event (the set is unchanged)
    """
    event.calendar_name = calendar_name
    event.calendar_color = merged.get_color(calendar_name) or event.calendar_color

    url = merged.urls.get(calendar_name)
    if client is not None and url:
        client.upload_event(url, event, now)

    merged.events.append(event)
    return event
