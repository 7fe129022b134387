"""
Time helpers

All timestamps are stored and compared as timezone-aware UTC. Some
database drivers (SQLite) hand back naive datetimes, so values read from
storage go through ensure_utc() before arithmetic.
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
