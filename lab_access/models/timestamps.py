"""
Timestamp values crossing the Slack boundary.

Slack reports times as ``ts`` strings (``"1503435956.000247"``) while the rest
of the application works with aware ``datetime`` objects. ``to_datetime`` is
the single place where the two shapes are told apart.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Union


@dataclass(frozen=True, slots=True)
class ProviderTimestamp:
    """Seconds plus microseconds as reported by the Slack Web API."""

    seconds: int
    micros: int = 0

    @classmethod
    def from_slack_ts(cls, ts: str) -> "ProviderTimestamp":
        whole, _, fraction = ts.partition(".")
        micros = int((fraction or "0")[:6].ljust(6, "0"))
        return cls(seconds=int(whole), micros=micros)

    def to_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.seconds, tz=timezone.utc).replace(
            microsecond=self.micros
        )


TimestampValue = Union[datetime, ProviderTimestamp]


def to_datetime(value: TimestampValue | None) -> datetime:
    """Resolve either timestamp shape to an aware UTC datetime.

    ``None`` resolves to the current time.
    """
    if value is None:
        return datetime.now(timezone.utc)
    if isinstance(value, ProviderTimestamp):
        return value.to_datetime()
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


__all__ = ["ProviderTimestamp", "TimestampValue", "to_datetime", "utcnow"]
