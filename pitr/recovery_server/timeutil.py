"""Timestamp helpers. All instants are Unix milliseconds internally."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone

DAY_MS = 24 * 60 * 60 * 1000
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def now_ms() -> int:
    return int(time.time() * 1000)


def ms_to_iso(timestamp_ms: int) -> str:
    """Render Unix ms as an ISO-8601 UTC string with millisecond precision."""
    dt = _EPOCH + timedelta(milliseconds=timestamp_ms)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def iso_slug(timestamp_ms: int) -> str:
    """ISO timestamp with ':' and '.' replaced, safe for file names."""
    return ms_to_iso(timestamp_ms).replace(":", "-").replace(".", "-")


def parse_instant(value: int | float | str | datetime | None) -> int | None:
    """Parse a caller-supplied instant into Unix ms.

    Accepts Unix ms (int/float), an ISO-8601 string (a trailing 'Z' is
    allowed, naive values are taken as UTC) or a datetime.

    Raises:
        ValueError: If the string is not a valid ISO-8601 instant
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        return int(value)
    else:
        text = value.strip()
        if text.isdigit():
            return int(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - _EPOCH) // timedelta(milliseconds=1)
