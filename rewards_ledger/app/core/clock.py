from __future__ import annotations

from datetime import UTC, datetime
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands datetimes back without tzinfo.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def is_past(deadline: Optional[datetime], now: datetime) -> bool:
    deadline = as_utc(deadline)
    return deadline is not None and deadline <= as_utc(now)
