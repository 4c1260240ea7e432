from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

Clock = Callable[[], datetime]

FRIDAY = 4


def now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def whole_days_between(earlier: datetime, later: datetime) -> int:
    return (later - earlier) // timedelta(days=1)


def window_bounds(now: datetime, window_minutes: int) -> tuple[datetime, datetime]:
    """Wall-clock aligned window containing ``now``.

    Windows are aligned to the Unix epoch in UTC, so a 1440-minute window
    always starts at UTC midnight and a 60-minute window on the hour.
    """
    size = max(1, window_minutes)
    epoch_minutes = int(now.astimezone(timezone.utc).timestamp() // 60)
    start_minutes = (epoch_minutes // size) * size
    start = datetime.fromtimestamp(start_minutes * 60, tz=timezone.utc)
    return start, start + timedelta(minutes=size)


def is_friday(dt: datetime) -> bool:
    return dt.weekday() == FRIDAY
