"""Datetime utilities for timezone-aware UTC timestamps.

Records, saved views and preferences all carry ISO-8601 timestamps. This
module keeps their creation and parsing in one place.

Usage:
    from ingredient_library.utils.datetime_utils import utc_now, utc_now_iso

    # For SQLAlchemy Column defaults
    created_at = Column(DateTime, default=utc_now)

    # For JSON payloads
    payload["last_updated"] = utc_now_iso()
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Return current UTC time as an ISO-8601 string."""
    return to_iso(utc_now())


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """
    Format a datetime as ISO-8601, treating naive values as UTC.

    SQLite drops tzinfo on round trip, so values read back from the
    database are naive even though they were written as UTC.

    Args:
        value: Datetime to format (None passes through)

    Returns:
        ISO-8601 string or None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 string, accepting a trailing 'Z'.

    Returns:
        Timezone-aware datetime, or None if value is empty or unparseable
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
