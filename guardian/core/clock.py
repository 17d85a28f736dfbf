"""UTC time helpers.

SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
columns; everything stored by this service is UTC, so naive values are
tagged rather than converted.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
