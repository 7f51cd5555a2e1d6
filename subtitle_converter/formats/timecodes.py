"""Timestamp parsing and formatting for SRT, WebVTT, and ASS/SSA.

WHY: The three formats write time differently (00:01:02,500 vs
00:01:02.500 vs 0:01:02.50), and real files are sloppy about fraction
digits. One parser handles every variant; one formatter per format
writes the canonical form.

RULES:
- Fractions of 1–3 digits are read as the leading digits of
  milliseconds ("5" → 500, "50" → 500, "500" → 500)
- The hours field is optional (mm:ss.fff is valid WebVTT)
- ASS centiseconds are rounded to the nearest 10 ms on output
"""

from __future__ import annotations

import re

_TIMESTAMP_RE = re.compile(
    r"^\s*(?:(?P<h>\d+):)?(?P<m>\d{1,2}):(?P<s>\d{1,2})(?:[.,](?P<f>\d{1,3}))?\s*$"
)


def parse_timestamp(value: str) -> int:
    """Parse an SRT, VTT, or ASS timestamp into integer milliseconds.

    Raises:
        ValueError: If value is not a recognizable timestamp.
    """
    match = _TIMESTAMP_RE.match(value)
    if match is None:
        raise ValueError("Invalid timestamp: {!r}".format(value))
    hours = int(match.group("h") or 0)
    minutes = int(match.group("m"))
    seconds = int(match.group("s"))
    fraction = (match.group("f") or "0").ljust(3, "0")
    return ((hours * 60 + minutes) * 60 + seconds) * 1000 + int(fraction)


def _split(ms: int) -> tuple[int, int, int, int]:
    ms = max(0, int(ms))
    hours, rem = divmod(ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    seconds, millis = divmod(rem, 1000)
    return hours, minutes, seconds, millis


def format_srt_timestamp(ms: int) -> str:
    """Format milliseconds as HH:MM:SS,mmm (comma separator)."""
    h, m, s, f = _split(ms)
    return "{:02d}:{:02d}:{:02d},{:03d}".format(h, m, s, f)


def format_vtt_timestamp(ms: int) -> str:
    """Format milliseconds as HH:MM:SS.mmm (period separator)."""
    h, m, s, f = _split(ms)
    return "{:02d}:{:02d}:{:02d}.{:03d}".format(h, m, s, f)


def format_ass_timestamp(ms: int) -> str:
    """Format milliseconds as H:MM:SS.cc (centiseconds)."""
    h, m, s, f = _split((max(0, int(ms)) + 5) // 10 * 10)
    return "{:d}:{:02d}:{:02d}.{:02d}".format(h, m, s, f // 10)
