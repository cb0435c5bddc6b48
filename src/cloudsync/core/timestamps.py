"""ISO-8601 timestamp helpers shared by client and server.

All instants are handled as timezone-aware UTC datetimes. Naive values
coming from clients are assumed to be UTC.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def utc_now() -> datetime:
    """Return the current UTC time (default clock)."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 string (``Z`` suffix accepted).

    Returns:
        Aware UTC datetime, or None when value is empty.

    Raises:
        ValueError: If the string is not a valid ISO-8601 instant.
    """
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def format_timestamp(value: datetime | None) -> str | None:
    """Format an instant as ISO-8601 in UTC, or None."""
    if value is None:
        return None
    return ensure_utc(value).isoformat()
