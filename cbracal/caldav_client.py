"""
CalDAV client for Radicale-style servers.

Discovers calendar collections with a Depth: 1 PROPFIND, downloads each
collection as a whole with plain GETs and stores new events with PUT.
Every request carries basic authentication and a fixed timeout.
"""

import posixpath
import re
from typing import Callable, Optional
from urllib.parse import urlparse, unquote, quote
from datetime import datetime

import requests
import lxml.etree as etree

from .config import DEFAULT_TIMEOUT, RadicaleConfig
from .diagnostics import debug_print
from .errors import DiscoveryError, FetchError, UploadError, DecodeError
from .events import CalendarCollection, Event
from .ics_codec import decode_calendar, encode_event, combine_calendar_blocks


DAV_NS = 'DAV:'
CALDAV_NS = 'urn:ietf:params:xml:ns:caldav'

ICS_EXTENSION = '.ics'
ICS_START_MARKER = 'BEGIN:VCALENDAR'
USER_AGENT = 'cbracal/1.0'

# Collections that are never calendars
SYSTEM_COLLECTIONS = ('user', 'principals')

ERROR_BODY_LIMIT = 200

PROPFIND_BODY = """<?xml version="1.0" encoding="utf-8" ?>
<D:propfind xmlns:D="DAV:">
  <D:prop>
    <D:displayname/>
  </D:prop>
</D:propfind>"""

_STATUS_OK = re.compile(r'\b2\d\d\b')
_XML_PARSER = etree.XMLParser(resolve_entities=False, no_network=True)


def _with_extension(url: str) -> str:
    return url + ICS_EXTENSION


def _stripped_with_extension(url: str) -> str:
    return url.rstrip('/') + ICS_EXTENSION


def _stripped(url: str) -> str:
    return url.rstrip('/')


def _verbatim(url: str) -> str:
    return url


# Servers disagree on where a collection's iCalendar export lives; these are
# tried in order until one answers with calendar data
CANDIDATE_ADDRESSES: tuple[Callable[[str], str], ...] = (
    _with_extension,
    _stripped_with_extension,
    _stripped,
    _verbatim,
)


def candidate_addresses(calendar_url: str) -> list[str]:
    """Get the addresses to try, in order, when downloading a collection."""
    return [shape(calendar_url) for shape in CANDIDATE_ADDRESSES]


def _truncate(text: str, limit: int = ERROR_BODY_LIMIT) -> str:
    return text if len(text) <= limit else text[:limit] + '...'


def unwrap_multistatus(content: bytes) -> str:
    """
    Extract all calendar-data blocks from a multistatus response.

    Returns:
        One synthetic VCALENDAR containing every block.

    Raises:
        DecodeError: if the XML is invalid or holds no calendar data
    """
    try:
        root = etree.fromstring(content, parser=_XML_PARSER)
    except etree.XMLSyntaxError as e:
        raise DecodeError(f"Invalid multistatus response: {e}") from e

    blocks = [el.text for el in root.iter(f'{{{CALDAV_NS}}}calendar-data') if el.text]
    if not blocks:
        raise DecodeError("no calendar-data found in multistatus response")
    return combine_calendar_blocks(blocks)


def _normalize_href(href: str, base_path: str) -> str:
    """Turn an href into an absolute, slash-terminated server path."""
    if href.startswith(('http://', 'https://')):
        href = urlparse(href).path or '/'
    elif not href.startswith('/'):
        href = base_path.rstrip('/') + '/' + href
    if not href.endswith('/'):
        href += '/'
    return href


def _successful_propstat(response):
    for propstat in response.findall(f'{{{DAV_NS}}}propstat'):
        status = propstat.findtext(f'{{{DAV_NS}}}status') or ''
        if _STATUS_OK.search(status):
            return propstat
    return None


class CalDAVClient:
    """Client for a Radicale (or other plain CalDAV) server."""

    def __init__(self, url: str, username: str, password: str, timeout: int = DEFAULT_TIMEOUT):
        """
        Initialize the CalDAV client.

        Args:
            url: Server URL, optionally with a path prefix (https://host/radicale)
            username: Account name; also the name of the user's home collection
            password: Password for basic authentication
            timeout: Per-request timeout in seconds
        """
        self.server_url = url.rstrip('/')
        self.username = username
        self.password = password
        self.timeout = timeout

        parsed = urlparse(self.server_url)
        self._origin = f"{parsed.scheme}://{parsed.netloc}"
        self._prefix = parsed.path.rstrip('/')

    @classmethod
    def from_config(
        cls,
        radicale: RadicaleConfig,
        password_program: str = "/usr/bin/pass",
        timeout: int = DEFAULT_TIMEOUT
    ) -> 'CalDAVClient':
        return cls(
            url=radicale.server_url,
            username=radicale.username,
            password=radicale.get_password(password_program),
            timeout=timeout,
        )

    def _request(self, method: str, url: str, headers: Optional[dict] = None, **kwargs) -> requests.Response:
        all_headers = {'User-Agent': USER_AGENT}
        if headers:
            all_headers.update(headers)
        debug_print(f"{method} {url}", tag="CALDAV")
        return requests.request(
            method,
            url,
            auth=(self.username, self.password),
            headers=all_headers,
            timeout=self.timeout,
            **kwargs
        )

    # ==================== Discovery ====================

    def discover_calendars(self) -> list[CalendarCollection]:
        """
        Find the calendar collections of this account.

        Lists /<username>/ first and falls back to / when that yields
        nothing usable. Results of the two paths are never merged.

        Raises:
            DiscoveryError: if no path produced at least one calendar
        """
        last_error = None

        for base_path in (f"/{self.username}/", "/"):
            full_url = self.server_url + base_path
            try:
                response = self._request(
                    'PROPFIND',
                    full_url,
                    headers={'Depth': '1', 'Content-Type': 'application/xml; charset=utf-8'},
                    data=PROPFIND_BODY.encode('utf-8'),
                )
            except requests.RequestException as e:
                last_error = f"PROPFIND {full_url} failed: {e}"
                continue

            if response.status_code != 207:
                last_error = (
                    f"failed to discover calendars at {full_url} "
                    f"(status {response.status_code}): {_truncate(response.text, 500)}"
                )
                continue

            try:
                calendars = self._parse_collections(response.content, base_path)
            except etree.XMLSyntaxError as e:
                last_error = f"invalid multistatus response from {full_url}: {e}"
                continue

            if calendars:
                debug_print(f"Found {len(calendars)} calendars at {full_url}", tag="CALDAV")
                return calendars

        raise DiscoveryError(
            last_error or "no calendars found",
            details={'server_url': self.server_url, 'username': self.username}
        )

    def _parse_collections(self, content: bytes, base_path: str) -> list[CalendarCollection]:
        root = etree.fromstring(content, parser=_XML_PARSER)
        request_path = self._prefix + base_path

        calendars = []
        for response in root.iter(f'{{{DAV_NS}}}response'):
            href_text = (response.findtext(f'{{{DAV_NS}}}href') or '').strip()
            if not href_text:
                continue

            propstat = _successful_propstat(response)
            if propstat is None:
                continue

            href = _normalize_href(href_text, request_path)
            # Path below the server prefix, used for the structural checks
            relative = href
            if self._prefix and href.startswith(self._prefix + '/'):
                relative = href[len(self._prefix):]

            if href == request_path or not relative.strip('/'):
                continue

            path_name = unquote(posixpath.basename(relative.rstrip('/')))
            if path_name in SYSTEM_COLLECTIONS:
                continue
            # /alice/ is the home collection, /alice/alice/ is a calendar
            if path_name == self.username and relative.count('/') <= 2:
                continue

            display_name = (propstat.findtext(f'{{{DAV_NS}}}prop/{{{DAV_NS}}}displayname') or '').strip()
            calendars.append(CalendarCollection(
                display_name=display_name or path_name,
                href=href,
                url=self._origin + href,
            ))

        return calendars

    # ==================== Fetching ====================

    def fetch_events(
        self,
        calendar_url: str,
        name: str,
        color: str = "",
        now: Optional[datetime] = None
    ) -> list[Event]:
        """
        Download and decode all events of a collection.

        Args:
            calendar_url: Collection URL as returned by discover_calendars()
            name: Calendar name the events are tagged with
            color: Display color the events are tagged with
            now: Reference time for recurrence expansion

        Raises:
            FetchError: if none of the candidate addresses returned calendar data
        """
        candidates = candidate_addresses(calendar_url)
        last_status = None
        last_body = ''
        last_error = None

        for candidate in candidates:
            try:
                response = self._request('GET', candidate, headers={'Accept': 'text/calendar'})
            except requests.RequestException as e:
                last_error = f"{type(e).__name__}: {e}"
                continue

            response.encoding = 'utf-8'
            last_status = response.status_code
            last_body = response.text

            if response.status_code == 200:
                if not last_body.lstrip().startswith(ICS_START_MARKER):
                    last_error = f"response is not calendar data (status: {last_status})"
                    continue
                try:
                    return decode_calendar(last_body, name, color, now)
                except DecodeError as e:
                    last_error = f"failed to parse calendar data: {e}"
            elif response.status_code == 207:
                try:
                    return decode_calendar(unwrap_multistatus(response.content), name, color, now)
                except DecodeError as e:
                    last_error = f"failed to parse multistatus calendar data: {e}"
            else:
                last_error = f"HTTP {last_status}: {_truncate(last_body)}"

        raise FetchError(
            f"failed to load calendar '{name}' from {calendar_url} "
            f"(tried {len(candidates)} URLs, last: {last_status} - {last_error})",
            status=last_status,
            body=_truncate(last_body),
            details={'calendar_url': calendar_url},
        )

    # ==================== Uploading ====================

    def upload_event(self, calendar_url: str, event: Event, now: Optional[datetime] = None) -> str:
        """
        Store a new event in a collection.

        The event gets a UID first if it has none; it is stored at
        <calendar_url>/<uid>.ics.

        Returns:
            The URL the event was stored at.

        Raises:
            UploadError: if the server did not answer 201 Created or 204 No Content
        """
        ical_text = encode_event(event, now)
        event_url = f"{calendar_url.rstrip('/')}/{quote(event.uid, safe='@')}{ICS_EXTENSION}"

        try:
            response = self._request(
                'PUT',
                event_url,
                headers={'Content-Type': 'text/calendar; charset=utf-8'},
                data=ical_text.encode('utf-8'),
            )
        except requests.RequestException as e:
            raise UploadError(
                f"failed to create event: {e}", details={'url': event_url}
            ) from e

        if response.status_code not in (201, 204):
            raise UploadError(
                f"failed to create event: {response.status_code} {response.reason} - {response.text}",
                status=response.status_code,
                body=response.text,
                details={'url': event_url},
            )

        debug_print(f"Uploaded event {event.uid} to {event_url}", tag="CALDAV")
        return event_url
