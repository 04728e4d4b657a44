"""Time helpers.

Timestamps are naive UTC datetimes, persisted as fixed-width ISO strings so
that string order matches time order.
"""
from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current naive UTC time."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_iso(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


def to_epoch_seconds(value: datetime) -> int:
    """Whole epoch seconds for a naive UTC datetime, rounded up."""
    timestamp = value.replace(tzinfo=timezone.utc).timestamp()
    return int(timestamp) if timestamp == int(timestamp) else int(timestamp) + 1
