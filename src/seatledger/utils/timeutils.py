"""
Time helpers.

All timestamps are stored as naive UTC datetimes so values read back from
SQLite and PostgreSQL compare the same way.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_timestamp(value) -> Optional[datetime]:
    """Convert a processor epoch timestamp (seconds) to a naive UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)
