"""
Event data model for cbracal.

Events are plain records with their source metadata (calendar name and
display color) attached. Recurring iCalendar events are expanded into one
Event per occurrence when they are decoded, so everything downstream only
ever sees concrete start/end pairs.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional


NO_TITLE = "(No title)"


@dataclass
class Event:
    """A single scheduled item, as displayed and as uploaded."""
    summary: str
    start: datetime
    end: datetime
    description: str = ""
    calendar_name: str = ""
    calendar_color: str = ""
    uid: str = ""  # Empty for locally authored events until upload

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def __repr__(self):
        return f"Event(uid={self.uid!r}, summary={self.summary!r}, start={self.start})"


@dataclass(frozen=True)
class Occurrence:
    """One concrete (start, end) instance of a recurring event."""
    start: datetime
    end: datetime


@dataclass(frozen=True)
class CalendarCollection:
    """A calendar collection discovered on the CalDAV server."""
    display_name: str
    href: str  # Server path, absolute and slash-terminated
    url: str   # Full URL used for requests


@dataclass
class MergedCalendarSet:
    """
    Result of loading every configured calendar.

    Attributes:
        events: All events, in load order
        colors: Calendar name -> display color
        urls: Calendar name -> writable collection URL (server calendars only)
    """
    events: list[Event] = field(default_factory=list)
    colors: dict[str, str] = field(default_factory=dict)
    urls: dict[str, str] = field(default_factory=dict)

    def is_writable(self, calendar_name: str) -> bool:
        """Check if new events for this calendar can be uploaded to a server."""
        return bool(self.urls.get(calendar_name))

    def get_color(self, calendar_name: str) -> Optional[str]:
        return self.colors.get(calendar_name)
