"""Unit tests for loading and combining calendars."""
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest
import pytz
import responses

from cbracal import diagnostics
from cbracal.caldav_client import CalDAVClient, candidate_addresses
from cbracal.calendar_loader import (
    MAX_OPEN_ENDED_REPEATS,
    MAX_REPEATS,
    create_event,
    load_all_calendars,
    load_calendars_or_sample,
    next_event,
    repeat_event,
    resolve_local_calendar,
    sample_calendar,
)
from cbracal.config import CALENDAR_COLORS, CalendarConfig, Config, RadicaleConfig
from cbracal.errors import NoCalendarsError, UploadError
from cbracal.events import Event, MergedCalendarSet


SERVER_URL = "http://radicale.test"
FEED_URL = "https://feeds.test/remote.ics"

PROPFIND_LISTING = """<?xml version="1.0"?>
<D:multistatus xmlns:D="DAV:">
  <D:response>
    <D:href>/alice/</D:href>
    <D:propstat><D:prop><D:displayname/></D:prop><D:status>HTTP/1.1 200 OK</D:status></D:propstat>
  </D:response>
  <D:response>
    <D:href>/alice/broken/</D:href>
    <D:propstat><D:prop><D:displayname>Broken</D:displayname></D:prop><D:status>HTTP/1.1 200 OK</D:status></D:propstat>
  </D:response>
  <D:response>
    <D:href>/alice/home/</D:href>
    <D:propstat><D:prop><D:displayname>Home</D:displayname></D:prop><D:status>HTTP/1.1 200 OK</D:status></D:propstat>
  </D:response>
</D:multistatus>"""


def _event(summary, start, hours=1):
    return Event(summary=summary, start=start, end=start + timedelta(hours=hours))


@pytest.fixture
def write_local(tmp_path, simple_calendar):
    """Write a local calendar file next to the (virtual) config file."""
    def _write(name, text=None):
        path = tmp_path / f"{name}.ics"
        path.write_text(text if text is not None else simple_calendar, encoding="utf-8")
        return path
    return _write


class TestLoadAllCalendars:
    """Test cases for load_all_calendars."""

    @responses.activate
    def test_failing_feed_does_not_block_local_file(self, tmp_path, write_local, now, capsys):
        responses.add(responses.GET, FEED_URL, status=500, body="Internal Server Error")
        write_local("home")
        config = Config(
            calendars=[CalendarConfig(name="Remote", url=FEED_URL)],
            local_calendars=["home"],
            base_dir=tmp_path,
        )

        merged = load_all_calendars(config, now)

        assert {e.calendar_name for e in merged.events} == {"home"}
        assert merged.colors == {"home": CALENDAR_COLORS[0]}
        assert merged.urls == {}
        assert "Failed to load calendar Remote" in capsys.readouterr().err

    @responses.activate
    def test_all_sources_failing(self, tmp_path, now, capsys):
        responses.add(responses.GET, FEED_URL, status=404, body="Not Found")
        config = Config(
            calendars=[CalendarConfig(name="Remote", url=FEED_URL)],
            local_calendars=["missing"],
            base_dir=tmp_path,
        )

        with pytest.raises(NoCalendarsError):
            load_all_calendars(config, now)

        assert "Local calendar file not found" in capsys.readouterr().err

    def test_nothing_configured(self, tmp_path, now):
        with pytest.raises(NoCalendarsError):
            load_all_calendars(Config(base_dir=tmp_path), now)

    def test_colors_cycle_through_palette(self, tmp_path, write_local, now):
        names = [f"cal{i}" for i in range(len(CALENDAR_COLORS) + 1)]
        for name in names:
            write_local(name)
        config = Config(local_calendars=names, base_dir=tmp_path)

        merged = load_all_calendars(config, now)

        assert [merged.colors[name] for name in names] == CALENDAR_COLORS + [CALENDAR_COLORS[0]]

    def test_local_calendar_with_extension(self, tmp_path, write_local, now):
        write_local("home")
        config = Config(local_calendars=["home.ics"], base_dir=tmp_path)

        merged = load_all_calendars(config, now)

        assert list(merged.colors) == ["home"]

    def test_undecodable_local_file_is_skipped(self, tmp_path, write_local, now, capsys):
        write_local("broken", text="not a calendar")
        write_local("home")
        config = Config(local_calendars=["broken", "home"], base_dir=tmp_path)

        merged = load_all_calendars(config, now)

        assert merged.colors == {"home": CALENDAR_COLORS[0]}
        assert "Failed to load local calendar broken" in capsys.readouterr().err

    def test_malformed_record_does_not_stop_load(self, tmp_path, write_local, make_calendar,
                                                 make_vevent, now):
        write_local("bad", make_calendar(
            make_vevent("UID:a@test", "DTSTART:garbage", "SUMMARY:a"),
            make_vevent("UID:b@test", "DTSTART:20261020T090000Z", "SUMMARY:b"),
        ))
        write_local("good", make_calendar(
            make_vevent("UID:c@test", "DTSTART:20261021T090000Z", "SUMMARY:c"),
        ))
        config = Config(local_calendars=["bad", "good"], base_dir=tmp_path)

        merged = load_all_calendars(config, now)

        assert {e.summary for e in merged.events} == {"b", "c"}

    def test_non_utf8_file_is_skipped(self, tmp_path, write_local, make_calendar, make_vevent,
                                      now, capsys):
        latin1 = make_calendar(make_vevent("UID:x@test", "DTSTART:20261020T090000Z", "SUMMARY:Café"))
        (tmp_path / "bad.ics").write_bytes(latin1.encode("latin-1"))
        write_local("good")
        config = Config(local_calendars=["bad", "good"], base_dir=tmp_path)

        merged = load_all_calendars(config, now)

        assert list(merged.colors) == ["good"]
        assert "Failed to load local calendar bad" in capsys.readouterr().err

    def test_debug_output(self, tmp_path, write_local, now, capsys, monkeypatch):
        monkeypatch.setattr(diagnostics, "_debug_enabled", False)
        write_local("home")
        config = Config(local_calendars=["home"], base_dir=tmp_path, debug=True)

        load_all_calendars(config, now)

        captured = capsys.readouterr()
        assert "LOADER: Loaded 1 events from 'home'" in captured.err
        assert captured.out == ""

    def test_radicale_entries_are_not_fetched_as_feeds(self, tmp_path, write_local, now):
        write_local("home")
        config = Config(
            calendars=[CalendarConfig(name="Radicale", type="radicale")],
            local_calendars=["home"],
            base_dir=tmp_path,
        )

        merged = load_all_calendars(config, now)

        assert list(merged.colors) == ["home"]

    @responses.activate
    def test_server_calendars(self, tmp_path, simple_calendar, now, capsys):
        responses.add("PROPFIND", f"{SERVER_URL}/alice/", status=207, body=PROPFIND_LISTING)
        for url in candidate_addresses(f"{SERVER_URL}/alice/broken/"):
            responses.add(responses.GET, url, status=404, body="Not Found")
        responses.add(responses.GET, f"{SERVER_URL}/alice/home/.ics", status=200, body=simple_calendar)
        config = Config(
            radicale=RadicaleConfig(server_url=SERVER_URL, username="alice", password="secret"),
            base_dir=tmp_path,
        )

        merged = load_all_calendars(config, now)

        assert merged.colors == {"Home": CALENDAR_COLORS[0]}
        assert merged.urls == {"Home": f"{SERVER_URL}/alice/home/"}
        assert merged.is_writable("Home")
        assert [e.calendar_color for e in merged.events] == [CALENDAR_COLORS[0]]
        assert "Failed to load Radicale calendar Broken" in capsys.readouterr().err

    @responses.activate
    def test_unreachable_server_falls_back_to_other_sources(self, tmp_path, write_local, now, capsys):
        responses.add("PROPFIND", f"{SERVER_URL}/alice/", status=401, body="Unauthorized")
        responses.add("PROPFIND", f"{SERVER_URL}/", status=401, body="Unauthorized")
        write_local("home")
        config = Config(
            radicale=RadicaleConfig(server_url=SERVER_URL, username="alice", password="wrong"),
            local_calendars=["home"],
            base_dir=tmp_path,
        )

        merged = load_all_calendars(config, now)

        assert list(merged.colors) == ["home"]
        assert not merged.is_writable("home")
        assert "Failed to connect to Radicale server" in capsys.readouterr().err


class TestSampleCalendar:
    """Test cases for the built-in sample calendar."""

    def test_sample_events(self, now):
        merged = sample_calendar(now)

        assert [e.summary for e in merged.events] == ["Team Standup", "Lunch Break"]
        assert merged.events[0].start == datetime(2026, 10, 19, 9, 0, tzinfo=pytz.UTC)
        assert merged.events[1].end == datetime(2026, 10, 19, 13, 0, tzinfo=pytz.UTC)
        assert merged.urls == {}

    def test_fallback_when_nothing_loads(self, tmp_path, now):
        merged, error = load_calendars_or_sample(Config(base_dir=tmp_path), now)

        assert isinstance(error, NoCalendarsError)
        assert {e.calendar_name for e in merged.events} == {"Work", "Personal"}

    def test_no_fallback_when_something_loads(self, tmp_path, write_local, now):
        write_local("home")

        merged, error = load_calendars_or_sample(Config(local_calendars=["home"], base_dir=tmp_path), now)

        assert error is None
        assert list(merged.colors) == ["home"]


class TestNextEvent:
    """Test cases for next_event."""

    def test_earliest_upcoming(self, now):
        events = [
            _event("Past", now - timedelta(hours=2)),
            _event("Later", now + timedelta(hours=5)),
            _event("Soon", now + timedelta(hours=1)),
        ]

        assert next_event(events, now).summary == "Soon"

    def test_none_upcoming(self, now):
        assert next_event([_event("Past", now - timedelta(days=1))], now) is None
        assert next_event([], now) is None


class TestRepeatEvent:
    """Test cases for repeat_event."""

    def test_no_repeat(self, now):
        event = _event("Once", now)

        assert repeat_event(event, "none") == [event]
        assert repeat_event(event, "") == [event]

    def test_daily_until_is_inclusive(self, now):
        event = _event("Daily", datetime(2026, 10, 20, 10, 0, tzinfo=pytz.UTC), hours=2)

        events = repeat_event(event, "daily", datetime(2026, 10, 25, tzinfo=pytz.UTC))

        assert [e.start.day for e in events] == [20, 21, 22, 23, 24, 25]
        assert all(e.duration == timedelta(hours=2) for e in events)

    def test_weekly_open_ended(self, now):
        events = repeat_event(_event("Weekly", now), "weekly")

        assert len(events) == MAX_OPEN_ENDED_REPEATS
        assert events[-1].start - events[0].start == timedelta(weeks=MAX_OPEN_ENDED_REPEATS - 1)

    def test_monthly(self):
        event = _event("Rent", datetime(2026, 1, 31, 9, 0, tzinfo=pytz.UTC))

        events = repeat_event(event, "monthly", datetime(2026, 4, 30, tzinfo=pytz.UTC))

        assert [e.start.day for e in events] == [31, 28, 31, 30]

    def test_long_daily_series_is_capped(self, now):
        events = repeat_event(_event("Daily", now), "daily", now + timedelta(days=5000))

        assert len(events) == MAX_REPEATS


class TestCreateEvent:
    """Test cases for create_event."""

    def _merged(self):
        return MergedCalendarSet(
            colors={"Work": "#4285f4", "Local": "#34a853"},
            urls={"Work": f"{SERVER_URL}/alice/work/"},
        )

    def test_uploads_to_server_calendar(self, now):
        merged = self._merged()
        client = Mock(spec=CalDAVClient)
        event = _event("Planning", now)

        created = create_event(merged, "Work", event, client=client, now=now)

        client.upload_event.assert_called_once_with(f"{SERVER_URL}/alice/work/", event, now)
        assert created.calendar_name == "Work"
        assert created.calendar_color == "#4285f4"
        assert merged.events == [event]

    def test_local_calendar_is_not_uploaded(self, now):
        merged = self._merged()
        client = Mock(spec=CalDAVClient)

        create_event(merged, "Local", _event("Walk", now), client=client, now=now)

        client.upload_event.assert_not_called()
        assert len(merged.events) == 1

    def test_unknown_calendar_keeps_event_color(self, now):
        merged = self._merged()
        event = _event("Walk", now)
        event.calendar_color = "#123456"

        create_event(merged, "Elsewhere", event, now=now)

        assert merged.get_color("Elsewhere") is None
        assert event.calendar_color == "#123456"
        assert event.calendar_name == "Elsewhere"

    def test_failed_upload_leaves_set_unchanged(self, now):
        merged = self._merged()
        client = Mock(spec=CalDAVClient)
        client.upload_event.side_effect = UploadError("denied", status=403, body="Forbidden")

        with pytest.raises(UploadError):
            create_event(merged, "Work", _event("Planning", now), client=client, now=now)

        assert merged.events == []

    def test_resolve_local_calendar(self, tmp_path):
        assert resolve_local_calendar("home", tmp_path) == tmp_path / "home.ics"
        assert resolve_local_calendar("home.ics", tmp_path) == tmp_path / "home.ics"
