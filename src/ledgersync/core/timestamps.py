"""
Timestamp and identifier helpers.

All persisted timestamps are aware UTC datetimes serialized with a fixed
microsecond precision, so that lexical ordering of the stored strings
matches chronological ordering (the dispatch query relies on this).

Identifiers are ULID-like: 26 Crockford base32 characters, time-sortable.
"""

from __future__ import annotations

import secrets
import time
from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def generate_ulid() -> str:
    """
    Generate a ULID-like identifier.

    Format: 26 characters, base32 encoded, time-sortable.
    """
    # Time component: milliseconds since epoch (48 bits -> 10 chars)
    timestamp_chars = _encode_base32(int(time.time() * 1000), 10)
    # Random component (80 bits -> 16 chars)
    random_chars = _encode_base32(secrets.randbits(80), 16)
    return timestamp_chars + random_chars


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Serialize an aware datetime in UTC with microsecond precision."""
    if dt is None:
        return None
    return as_utc(dt).isoformat(timespec="microseconds")


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware datetime."""
    if s is None:
        return None
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def format_duration(seconds: float) -> str:
    """Human-readable duration: ``"45m"``, ``"2h 5m"``, ``"3d 4h"``."""
    minutes = int(round(seconds / 60))
    if minutes < 60:
        return f"{minutes}m"
    hours, minutes = divmod(minutes, 60)
    if hours < 24:
        return f"{hours}h {minutes}m"
    days, hours = divmod(hours, 24)
    return f"{days}d {hours}h"


class FrozenClock:
    """Manually advanced clock for deterministic tests and simulations.

    Example:
        >>> clock = FrozenClock(datetime(2026, 1, 1, tzinfo=UTC))
        >>> clock.advance(seconds=30)
        >>> clock().second
        30
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or utc_now()

    def __call__(self) -> datetime:
        return self._now

    def advance(self, **delta: float) -> None:
        self._now = self._now + timedelta(**delta)

    def set(self, value: datetime) -> None:
        self._now = value


# ULID base32 alphabet (Crockford's)
_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
_ENCODING_LEN = len(_ENCODING)


def _encode_base32(value: int, length: int) -> str:
    """Encode integer to base32 string of fixed length."""
    result = []
    for _ in range(length):
        result.append(_ENCODING[value % _ENCODING_LEN])
        value //= _ENCODING_LEN
    return "".join(reversed(result))
