"""Shared fixtures for cbracal tests."""

from datetime import datetime

import pytest
import pytz


@pytest.fixture
def now():
    """Fixed reference time: Monday 2026-10-19 12:00 UTC."""
    return datetime(2026, 10, 19, 12, 0, tzinfo=pytz.UTC)


@pytest.fixture
def make_vevent():
    """Build the text of one VEVENT from property lines."""
    def _make(*lines):
        return "\n".join(["BEGIN:VEVENT", *lines, "END:VEVENT"])
    return _make


@pytest.fixture
def make_calendar():
    """Wrap VEVENT blocks in a VCALENDAR."""
    def _make(*vevents):
        return "\n".join([
            "BEGIN:VCALENDAR",
            "VERSION:2.0",
            "PRODID:-//Test//EN",
            *vevents,
            "END:VCALENDAR",
        ]) + "\n"
    return _make


@pytest.fixture
def simple_calendar(make_calendar, make_vevent):
    """A calendar with one plain event."""
    return make_calendar(make_vevent(
        "UID:standup-1@test",
        "DTSTART:20261020T090000Z",
        "DTEND:20261020T093000Z",
        "SUMMARY:Standup",
        "DESCRIPTION:Daily sync",
    ))
