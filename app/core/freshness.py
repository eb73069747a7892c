"""Record age helpers for the staleness and cleanup policies."""

from datetime import datetime, timezone
from typing import Optional


def as_utc(timestamp: datetime) -> datetime:
    """Treat naive timestamps (e.g. read back from SQLite) as UTC."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def record_age_seconds(timestamp: datetime, now: Optional[datetime] = None) -> float:
    """Seconds elapsed since timestamp (negative if it lies in the future)."""
    now = as_utc(now) if now is not None else datetime.now(timezone.utc)
    return (now - as_utc(timestamp)).total_seconds()


def is_stale(
    timestamp: datetime, max_age_seconds: float, now: Optional[datetime] = None
) -> bool:
    """
    Check whether a record is too old to be shown as current.

    Args:
        timestamp: When the record was stored
        max_age_seconds: Staleness threshold (10s for location polling)
        now: Reference time, defaults to the current UTC time

    Returns:
        True if the record is older than max_age_seconds
    """
    return record_age_seconds(timestamp, now) > max_age_seconds
