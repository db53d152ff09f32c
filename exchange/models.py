"""
Data models for the Alor ingester.
Timestamps are Unix milliseconds unless the field name says otherwise.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ActiveSlot(Enum):
    A = 0
    B = 1

    @property
    def other(self) -> "ActiveSlot":
        return ActiveSlot.B if self is ActiveSlot.A else ActiveSlot.A


class ConnectionState(Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    SUBSCRIBED = "SUBSCRIBED"
    CLOSED = "CLOSED"           # Terminal, set by stop()


@dataclass
class Credential:
    """Bearer JWT plus the local instant (Unix seconds) after which it is refreshed."""
    token: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return bool(self.token) and now < self.expires_at


@dataclass(frozen=True)
class NormalizedTrade:
    """Single trade from the all-trades history endpoint."""
    timestamp_ms: int
    qty: float
    price: float


@dataclass(frozen=True)
class HourWindow:
    """One exchange-local hour, inclusive on both ends."""
    start_ms: int
    end_ms: int

    def contains(self, ts_ms: float) -> bool:
        return self.start_ms <= ts_ms <= self.end_ms


@dataclass
class VolumeBucket:
    range_start: int
    range_end: Optional[int]    # None for the overflow bucket
    count: int = 0

    @property
    def is_overflow(self) -> bool:
        return self.range_end is None


@dataclass(frozen=True)
class SessionRange:
    """Exchange-local minute-of-day range, inclusive on both ends."""
    start_minute: int
    end_minute: int

    def contains(self, minute_of_day: int) -> bool:
        return self.start_minute <= minute_of_day <= self.end_minute
