"""
Low-level timezone and timestamp utilities.

All persisted timestamps are timezone-aware UTC. SQLite drops tzinfo on
round-trip, so comparisons go through ``ensure_utc``.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def now_utc() -> datetime:
    """Return the current timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from the database."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def seconds_since(start: datetime, end: datetime | None = None) -> float:
    """Seconds elapsed between *start* and *end* (default: now)."""
    end = end or now_utc()
    return (ensure_utc(end) - ensure_utc(start)).total_seconds()


def window_start(seconds: float, reference: datetime | None = None) -> datetime:
    """Return the start of a trailing window of *seconds* ending at *reference*."""
    reference = reference or now_utc()
    return ensure_utc(reference) - timedelta(seconds=seconds)
