from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def start_of_day(dt: datetime) -> datetime:
    """Midnight at the start of dt's calendar day."""
    return datetime.combine(dt.date(), time.min)


def end_of_day(dt: datetime) -> datetime:
    """Last microsecond of dt's calendar day."""
    return datetime.combine(dt.date(), time.max)


def day_range(days: int, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """
    Closed range covering the last `days` calendar days, today included.

    days=1 -> [today 00:00:00, today 23:59:59.999999]
    """
    end = end_of_day(now or utcnow())
    start = start_of_day(end - timedelta(days=max(1, days) - 1))
    return start, end


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")
