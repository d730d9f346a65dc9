"""
Configuration parser for cbracal.

Handles TOML file parsing (and the older calendars.json layout) and secure
password retrieval via external programs.
"""

import json
import tomllib
import subprocess
import os
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

from .errors import ConfigurationError


DEFAULT_TIMEOUT = 10  # Per-request timeout in seconds


@dataclass
class RadicaleConfig:
    """Configuration for a Radicale (CalDAV) server account."""
    server_url: str
    username: str
    password: str = ""
    password_key: str = ""

    _password: Optional[str] = field(default=None, repr=False)

    def get_password(self, password_program: str = "/usr/bin/pass") -> str:
        """Return the literal password, or retrieve it via the password program."""
        if self.password or not self.password_key:
            return self.password
        if self._password is None:
            try:
                result = subprocess.run(
                    [password_program, self.password_key],
                    capture_output=True,
                    text=True,
                    timeout=30
                )
            except subprocess.TimeoutExpired:
                raise ConfigurationError(f"Password program timed out for key '{self.password_key}'")
            except FileNotFoundError:
                raise ConfigurationError(f"Password program not found: {password_program}")
            if result.returncode != 0:
                raise ConfigurationError(
                    f"Password program failed for key '{self.password_key}': {result.stderr}"
                )
            self._password = result.stdout.strip()
        return self._password


@dataclass
class CalendarConfig:
    """A single-file calendar feed, read from a URL or a local file."""
    name: str
    url: str = ""
    file: str = ""
    type: str = ""  # "radicale", "url", "file", or empty for auto-detect


@dataclass
class Config:
    """Main configuration container for cbracal."""

    password_program: str = "/usr/bin/pass"
    timezone: str = ""
    timeout: int = DEFAULT_TIMEOUT
    debug: bool = False
    radicale: Optional[RadicaleConfig] = None
    calendars: list[CalendarConfig] = field(default_factory=list)
    local_calendars: list[str] = field(default_factory=list)
    base_dir: Path = field(default_factory=Path.cwd)

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the default configuration file path."""
        local_config = Path('cbracal.toml')
        if local_config.exists():
            return local_config
        xdg_config = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
        return Path(xdg_config) / 'cbracal' / 'cbracal.toml'

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'Config':
        """Load configuration from a TOML (or legacy JSON) file."""
        if config_path is None:
            config_path = cls.get_default_config_path()
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            if config_path.suffix == '.json':
                with open(config_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            else:
                with open(config_path, 'rb') as f:
                    data = tomllib.load(f)
        except (tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Invalid configuration file {config_path}: {e}")

        return cls.from_dict(data, base_dir=config_path.resolve().parent)

    @classmethod
    def from_dict(cls, data: dict, base_dir: Optional[Path] = None) -> 'Config':
        """Build a Config from already-parsed TOML/JSON data."""
        general = data.get('General', {})

        # Accept both [Radicale] (TOML) and "radicale" (calendars.json)
        radicale = None
        radicale_data = data.get('Radicale', data.get('radicale'))
        if isinstance(radicale_data, dict) and radicale_data.get('server_url'):
            radicale = RadicaleConfig(
                server_url=radicale_data.get('server_url', ''),
                username=radicale_data.get('username', ''),
                password=radicale_data.get('password', ''),
                password_key=radicale_data.get('password_key', ''),
            )

        calendars = []
        for entry in data.get('calendars', []):
            if not isinstance(entry, dict):
                raise ConfigurationError(f"Invalid calendar entry: {entry!r}")
            calendars.append(CalendarConfig(
                name=entry.get('name', ''),
                url=entry.get('url', ''),
                file=entry.get('file', ''),
                type=entry.get('type', ''),
            ))

        return cls(
            password_program=general.get('password_program', '/usr/bin/pass'),
            timezone=general.get('timezone', ''),
            timeout=general.get('timeout', DEFAULT_TIMEOUT),
            debug=bool(general.get('debug', False)),
            radicale=radicale,
            calendars=calendars,
            local_calendars=list(data.get('local_calendars', [])),
            base_dir=base_dir or Path.cwd(),
        )


# Colors palette for auto-assignment to calendars
CALENDAR_COLORS = [
    '#4285f4',  # Blue
    '#34a853',  # Green
    '#ea4335',  # Red
    '#fbbc05',  # Yellow
    '#9c27b0',  # Purple
    '#00bcd4',  # Cyan
    '#ff5722',  # Deep Orange
    '#607d8b',  # Blue Grey
]


def color_for_index(index: int) -> str:
    """Get the palette color for the n-th loaded calendar, cycling when exhausted."""
    return CALENDAR_COLORS[index % len(CALENDAR_COLORS)]
