from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from backends that drop tzinfo (SQLite)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def elapsed_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds between two instants, floored and never negative."""
    delta = ensure_utc(end) - ensure_utc(start)
    return max(int(delta.total_seconds()), 0)
