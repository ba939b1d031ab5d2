"""Time utilities for the POS payment engine.

All wall-clock values handled by the engine are timezone‑aware UTC
datetimes.  Processor responses carry ISO‑8601 expirations; the monitor
compares them against ``utc_now()`` and turns them into timer delays.

Functions provided:

* ``utc_now()`` – current UTC datetime.
* ``to_timestamp_ms(dt)`` – convert a datetime to integer Unix milliseconds.
* ``parse_iso8601(s)`` – parse an ISO‑8601 string into a UTC datetime.
* ``seconds_until(deadline, now)`` – non-negative delay until a deadline.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return the current time as a timezone‑aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` in UTC; naive datetimes are assumed to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_timestamp_ms(dt: datetime) -> int:
    """Convert a datetime to an integer Unix timestamp in milliseconds."""
    return int(ensure_utc(dt).timestamp() * 1000)


def parse_iso8601(s: str) -> datetime:
    """Parse an ISO‑8601 formatted string into a UTC datetime.

    Strings ending with 'Z' (e.g. ``2025-08-22T13:45:00Z``) are treated
    as UTC.  Processors sometimes send seven fractional digits, which
    ``datetime.fromisoformat`` rejects on older interpreters, so the
    fraction is truncated to microseconds first.
    """
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    if "." in s:
        head, _, tail = s.partition(".")
        digits = ""
        rest = tail
        while rest and rest[0].isdigit():
            digits, rest = digits + rest[0], rest[1:]
        s = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    return ensure_utc(datetime.fromisoformat(s))


def seconds_until(deadline: datetime, now: Optional[datetime] = None) -> float:
    """Seconds from ``now`` (default: current time) until ``deadline``, floored at 0."""
    current = now or utc_now()
    return max(0.0, (ensure_utc(deadline) - ensure_utc(current)).total_seconds())
