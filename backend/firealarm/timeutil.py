"""Timestamp normalization helpers."""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def to_utc_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to naive UTC, the storage representation."""
    if value is None:
        return None
    # Naive input is taken to be UTC already
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def isoformat_utc(value: Optional[datetime]) -> Optional[str]:
    """Render a stored naive-UTC datetime as ISO-8601 with an explicit offset."""
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat()


def format_local(value: Optional[datetime], tz_name: str) -> str:
    """Render a stored naive-UTC datetime as wall-clock time in ``tz_name``."""
    if value is None:
        return ""
    local = value.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name))
    return local.strftime("%Y-%m-%d %H:%M:%S")


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
