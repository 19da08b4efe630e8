"""Time helpers.

Domain objects carry timezone-aware UTC datetimes.  SQL rows store epoch
milliseconds so that expiry comparisons are exact to the millisecond on
every backend.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def format_duration(seconds: float) -> str:
    """Human-readable remaining time, e.g. ``6 days``, ``3 hours``, ``1 minute``."""
    seconds = max(int(seconds), 0)
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            amount = seconds // size
            return f"{amount} {unit}" + ("" if amount == 1 else "s")
    return "less than a minute"
