"""
Trading Calendar — exchange-local time predicates.

The exchange runs on a fixed UTC offset (MSK, +3h, by default). History
trades are kept only for 09:00..23:58 local; 23:59 is excluded by exchange
convention. The live feed is accepted only inside configured sessions.
"""

from __future__ import annotations
import math
import re
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, List

from exchange.errors import ConfigError
from exchange.models import SessionRange

HISTORY_FIRST_HOUR = 9
HISTORY_LAST_MINUTE = 23 * 60 + 58

_START_DATE_RE = re.compile(r"^([0-3]?\d)\.([01]?\d)\.(\d{4})$")
_SESSION_RE = re.compile(r"^(\d{1,2}):(\d{2})-(\d{1,2}):(\d{2})$")


class TradingCalendar:
    """Exchange-local calendar with a fixed UTC offset."""

    def __init__(self, utc_offset_hours: float = 3.0):
        self.utc_offset_hours = utc_offset_hours
        self.tz = timezone(timedelta(hours=utc_offset_hours))

    def local(self, ts_ms: float) -> datetime:
        return datetime.fromtimestamp(ts_ms / 1000, tz=self.tz)

    def minute_of_day(self, ts_ms: float) -> int:
        dt = self.local(ts_ms)
        return dt.hour * 60 + dt.minute

    def is_allowed_history_minute(self, ts_ms: float) -> bool:
        """True for local 09:00..23:58 inclusive. 23:59 and 00:00..08:59 are rejected."""
        if ts_ms is None or not math.isfinite(ts_ms):
            return False
        minute = self.minute_of_day(ts_ms)
        return HISTORY_FIRST_HOUR * 60 <= minute <= HISTORY_LAST_MINUTE

    def is_within_session(self, ts_ms: float, sessions: Iterable[SessionRange]) -> bool:
        minute = self.minute_of_day(ts_ms)
        return any(s.contains(minute) for s in sessions)

    def should_skip_hour(self, hour_start_ms: float) -> bool:
        """Hours starting before 09:00 local never hold history trades, don't request them."""
        return self.local(hour_start_ms).hour < HISTORY_FIRST_HOUR

    @staticmethod
    def is_weekend(day: date) -> bool:
        return day.weekday() >= 5

    def today(self, now_ms: float) -> date:
        return self.local(now_ms).date()

    def day_start_ms(self, day: date) -> int:
        """Local midnight of day as Unix ms."""
        midnight = datetime(day.year, day.month, day.day, tzinfo=self.tz)
        return int(midnight.timestamp() * 1000)

    def format_local(self, ts_ms: float) -> str:
        return self.local(ts_ms).strftime("%d.%m.%Y %H:%M")


def parse_start_date(value: str) -> date:
    """Parse a dd.mm.yyyy start date."""
    m = _START_DATE_RE.match((value or "").strip())
    if not m:
        raise ConfigError(f"Invalid START_DATE {value!r} (expected dd.mm.yyyy)")
    try:
        return date(int(m.group(3)), int(m.group(2)), int(m.group(1)))
    except ValueError as e:
        raise ConfigError(f"Invalid START_DATE {value!r}: {e}") from e


def parse_sessions(value: str) -> List[SessionRange]:
    """Parse "HH:MM-HH:MM,HH:MM-HH:MM" into ordered, disjoint session ranges."""
    sessions = []
    for part in value.split(","):
        part = part.strip()
        if not part:
            continue
        m = _SESSION_RE.match(part)
        if not m:
            raise ConfigError(f"Invalid trading session {part!r} (expected HH:MM-HH:MM)")
        h1, m1, h2, m2 = (int(g) for g in m.groups())
        if h1 > 23 or h2 > 23 or m1 > 59 or m2 > 59:
            raise ConfigError(f"Invalid trading session {part!r}: not a 24h time")
        start, end = h1 * 60 + m1, h2 * 60 + m2
        if end < start:
            raise ConfigError(f"Invalid trading session {part!r}: ends before it starts")
        sessions.append(SessionRange(start, end))

    if not sessions:
        raise ConfigError("TRADING_SESSIONS is empty")

    sessions.sort(key=lambda s: s.start_minute)
    for prev, cur in zip(sessions, sessions[1:]):
        if cur.start_minute <= prev.end_minute:
            raise ConfigError(f"Trading sessions overlap: {prev} and {cur}")
    return sessions
