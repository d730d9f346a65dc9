"""
Recurrence rule parsing and expansion.

Only the FREQ / INTERVAL / UNTIL / COUNT subset of RRULE is understood.
Expansion only produces what is still relevant: occurrences older than
yesterday are never produced. Single (non-recurring) events are not
affected by this at all.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Union

import pytz
from dateutil.relativedelta import relativedelta

from .events import Occurrence
from .timezone_utils import calendar_day


# Upper bound on expansion steps; protects against INTERVAL=0 and friends
MAX_ITERATIONS = 1000

# Accepted UNTIL literals, tried in order
UNTIL_FORMATS = ("%Y%m%dT%H%M%SZ", "%Y%m%dT%H%M%S", "%Y%m%d")


class Frequency(Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_value(cls, value: str) -> 'Frequency':
        try:
            return cls(value.strip().upper())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class RecurrenceRule:
    """
    Parsed form of an RRULE value such as ``FREQ=WEEKLY;INTERVAL=2;COUNT=10``.

    Attributes:
        frequency: Step unit; UNKNOWN for anything unsupported
        interval: Number of units per step
        until: Optional UTC bound on occurrence starts
        count: Optional bound on the number of produced occurrences
    """
    frequency: Frequency = Frequency.UNKNOWN
    interval: int = 1
    until: Optional[datetime] = None
    count: Optional[int] = None

    @classmethod
    def parse(cls, text: str) -> 'RecurrenceRule':
        """
        Parse an RRULE value. Never raises: unknown keys are ignored and
        unparsable values keep their defaults.
        """
        text = text.strip()
        if text.upper().startswith('RRULE:'):
            text = text[len('RRULE:'):]

        frequency = Frequency.UNKNOWN
        interval = 1
        until = None
        count = None

        for part in text.split(';'):
            key, sep, value = part.strip().partition('=')
            if not sep:
                continue
            key = key.strip().upper()
            value = value.strip()

            if key == 'FREQ':
                frequency = Frequency.from_value(value)
            elif key == 'INTERVAL':
                interval = _parse_int(value, interval)
            elif key == 'UNTIL':
                until = _parse_until(value)
            elif key == 'COUNT':
                parsed = _parse_int(value, 0)
                count = parsed if parsed > 0 else None

        return cls(frequency=frequency, interval=interval, until=until, count=count)

    def shift(self, start: datetime, steps: int) -> datetime:
        """
        Return the start of the occurrence `steps` periods after `start`.

        Always computed from the series start so month-end clamping does not
        accumulate (Jan 31 -> Feb 28 -> Mar 31).
        """
        amount = self.interval * steps
        if self.frequency is Frequency.DAILY:
            delta = timedelta(days=amount)
        elif self.frequency is Frequency.WEEKLY:
            delta = timedelta(weeks=amount)
        elif self.frequency is Frequency.MONTHLY:
            delta = relativedelta(months=amount)
        elif self.frequency is Frequency.YEARLY:
            delta = relativedelta(years=amount)
        else:
            raise ValueError(f"Cannot step frequency {self.frequency.value}")
        return _wall_clock_add(start, delta)


def _parse_int(value: str, default: int) -> int:
    try:
        return int(value)
    except ValueError:
        return default


def _parse_until(value: str) -> Optional[datetime]:
    for fmt in UNTIL_FORMATS:
        try:
            return pytz.UTC.localize(datetime.strptime(value, fmt))
        except ValueError:
            continue
    return None


def _wall_clock_add(dt: datetime, delta) -> datetime:
    # pytz zones need re-localizing, otherwise the DST offset of the
    # series start sticks to every later occurrence
    tz = dt.tzinfo
    if tz is not None and hasattr(tz, 'localize'):
        return tz.localize(dt.replace(tzinfo=None) + delta)
    return dt + delta


def _align(value: datetime, like: datetime) -> datetime:
    """Make value comparable with like (both naive or both aware)."""
    if like.tzinfo is None and value.tzinfo is not None:
        return value.astimezone(pytz.UTC).replace(tzinfo=None)
    if like.tzinfo is not None and value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value


def expand(
    start: datetime,
    end: datetime,
    rule: Union[RecurrenceRule, str],
    horizon: datetime,
    now: datetime
) -> list[Occurrence]:
    """
    Expand a recurring event into concrete occurrences.

    Args:
        start: Start of the first occurrence of the series
        end: End of the first occurrence (sets the duration of all of them)
        rule: A RecurrenceRule, or RRULE text to parse
        horizon: Never produce occurrences starting at or after this
        now: Reference time; "today"/"yesterday" are taken in its timezone

    Returns:
        Occurrences starting yesterday, today or in the future, in
        chronological order. Empty for unknown frequencies.
    """
    if isinstance(rule, str):
        rule = RecurrenceRule.parse(rule)

    occurrences: list[Occurrence] = []
    if rule.frequency is Frequency.UNKNOWN:
        return occurrences

    duration = end - start

    limit = _align(horizon, start)
    if rule.until is not None:
        until = _align(rule.until, start)
        if until < limit:
            limit = until

    now_cmp = _align(now, start)
    today = calendar_day(now, now)
    yesterday = today - timedelta(days=1)

    # Skip whole periods that lie before yesterday without looking at them
    index = 0
    if rule.interval >= 1 and calendar_day(start, now) < yesterday:
        while calendar_day(rule.shift(start, index), now) < yesterday:
            index += 1

    iterations = 0
    while iterations < MAX_ITERATIONS:
        current = rule.shift(start, index)
        if current >= limit:
            break
        if rule.count is not None and len(occurrences) >= rule.count:
            break

        day = calendar_day(current, now)
        if day == yesterday or day == today or current > now_cmp:
            occurrences.append(Occurrence(start=current, end=current + duration))

        index += 1
        iterations += 1

    return occurrences
