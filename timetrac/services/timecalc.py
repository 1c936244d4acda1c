from __future__ import annotations

from datetime import datetime, timezone


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes and convert aware ones. ``None`` passes through."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_seconds(start: datetime | None, end: datetime | None, now: datetime | None = None) -> int:
    """Whole seconds between start and end (or ``now`` for a running entry), never negative."""
    s = as_utc(start)
    if s is None:
        return 0
    e = as_utc(end) or as_utc(now) or datetime.now(timezone.utc)
    return max(int((e - s).total_seconds()), 0)
