"""Exception types for cbracal."""

from typing import Optional, Dict, Any


class CalendarError(Exception):
    """Base exception for cbracal."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(CalendarError):
    """Configuration could not be read or a password could not be retrieved."""


class DiscoveryError(CalendarError):
    """No collection-listing path on the server succeeded."""


class DecodeError(CalendarError):
    """A calendar payload is structurally unparsable."""


class FetchError(CalendarError):
    """No candidate address for a calendar returned usable data."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: str = "",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.status = status
        self.body = body


class UploadError(CalendarError):
    """The server rejected a write, or the write never reached it."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        body: str = "",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.status = status
        self.body = body


class NoCalendarsError(CalendarError):
    """Loading every configured source produced zero events."""
