"""
Single-file calendar feeds: an ICS file behind a URL, or one on disk.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

import requests

from .config import DEFAULT_TIMEOUT, CalendarConfig
from .errors import ConfigurationError, DecodeError, FetchError
from .events import Event
from .ics_codec import decode_calendar


USER_AGENT = 'cbracal/1.0'


class ICSSubscription:
    """
    Handler for a read-only ICS calendar.

    Exactly one of url and file is used; url wins when both are set.
    """

    def __init__(
        self,
        name: str,
        url: str = "",
        file: str = "",
        timeout: int = DEFAULT_TIMEOUT
    ):
        """
        Initialize an ICS subscription.

        Args:
            name: Display name; events are tagged with it
            url: URL to fetch the ICS file from
            file: Path of a local ICS file
            timeout: Request timeout in seconds
        """
        self.name = name
        self.url = url
        self.file = file
        self.timeout = timeout

    @classmethod
    def from_config(cls, calendar: CalendarConfig, base_dir: Optional[Path] = None,
                    timeout: int = DEFAULT_TIMEOUT) -> 'ICSSubscription':
        file = calendar.file
        if file and base_dir is not None and not Path(file).expanduser().is_absolute():
            file = str(base_dir / file)
        return cls(name=calendar.name, url=calendar.url, file=file, timeout=timeout)

    def fetch(self) -> str:
        """
        Fetch the raw VCALENDAR text.

        Raises:
            FetchError: on network errors or a non-200 answer
            DecodeError: if a local file is not UTF-8
            OSError: if a local file cannot be read
            ConfigurationError: if neither url nor file is set
        """
        if self.url:
            return self._fetch_url()
        if self.file:
            return self._read_file()
        raise ConfigurationError(f"Calendar '{self.name}' has neither url nor file")

    def _read_file(self) -> str:
        path = Path(self.file).expanduser()
        try:
            return path.read_bytes().decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecodeError(f"Calendar file {path} is not UTF-8: {e}",
                              details={'file': str(path)}) from e

    def _fetch_url(self) -> str:
        try:
            response = requests.get(
                self.url,
                timeout=self.timeout,
                headers={
                    'User-Agent': USER_AGENT,
                    'Accept': 'text/calendar'
                }
            )
        except requests.RequestException as e:
            raise FetchError(f"Network error fetching {self.url}: {e}",
                             details={'url': self.url}) from e

        # Ensure proper UTF-8 decoding
        response.encoding = 'utf-8'
        if response.status_code != 200:
            raise FetchError(
                f"failed to fetch calendar: {response.status_code} {response.reason}",
                status=response.status_code,
                body=response.text[:200],
                details={'url': self.url},
            )
        return response.text

    def load(self, color: str = "", now: Optional[datetime] = None) -> list[Event]:
        """Fetch and decode the feed into events tagged with this calendar."""
        return decode_calendar(self.fetch(), self.name, color, now)
