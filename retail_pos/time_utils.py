from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

# Timestamps are stored naive and always mean UTC.


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_utc(dt: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive input is already UTC."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def is_in_future(dt: Optional[datetime], *, now: Optional[datetime] = None) -> bool:
    if dt is None:
        return False
    return normalize_utc(dt) > (now or utcnow())


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 to the second with a 'Z' suffix, e.g. 2026-01-31T09:15:00Z."""
    if dt is None:
        return None
    return normalize_utc(dt).replace(microsecond=0).isoformat() + "Z"
