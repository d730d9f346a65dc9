"""
Diagnostic output for cbracal.

All messages go to stderr with a timestamp so they never mix with
whatever the presentation layer writes to stdout.
"""

import sys
from datetime import datetime


_debug_enabled: bool = False


def set_debug(enabled: bool):
    """Enable or disable debug output."""
    global _debug_enabled
    _debug_enabled = enabled


def _emit(tag: str, message: str) -> None:
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] {tag}: {message}", file=sys.stderr)


def debug_print(message: str, tag: str = "DEBUG") -> None:
    if _debug_enabled:
        _emit(tag, message)


def warn(message: str) -> None:
    """Report a non-fatal problem (a calendar that could not be loaded etc)."""
    _emit("Warning", message)
