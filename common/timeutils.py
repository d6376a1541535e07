"""Naive-UTC datetime helpers; every timestamp in the database is naive UTC."""
import math
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from ``start`` to ``end``, halves rounded up (may be negative)."""
    return math.floor((end - start).total_seconds() / 60 + 0.5)
