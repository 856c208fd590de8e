"""
Time helpers.

All timestamps are stored and compared as naive UTC datetimes so that values
round-trip through SQLite unchanged.
"""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat_z(value: Optional[datetime]) -> Optional[str]:
    """Render a naive UTC datetime as ISO 8601 with a Z suffix."""
    if value is None:
        return None
    return value.isoformat(timespec="milliseconds") + "Z"


def epoch_ms(value: datetime) -> int:
    """Milliseconds since the epoch for a naive UTC datetime."""
    return int(value.replace(tzinfo=timezone.utc).timestamp() * 1000)
