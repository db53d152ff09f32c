"""
Historical trades fetcher.

Walks a range of working days hour by hour in exchange-local time and pulls
each hour from the all-trades history endpoint. Requests are strictly
sequential. Any non-2xx answer or a possibly truncated hour aborts the whole
fetch; there is no retry and no partial result.
"""

from __future__ import annotations
import math
import time
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any, Callable, Iterator, List, Optional, Union
import logging

from core.calendar import TradingCalendar, parse_start_date
from exchange.errors import TruncatedWindowError
from exchange.models import HourWindow, NormalizedTrade

if TYPE_CHECKING:
    from exchange.alor_rest import AlorRestClient
    from exchange.auth import TokenProvider

logger = logging.getLogger(__name__)

HOUR_MS = 60 * 60 * 1000
DAY_MS = 24 * HOUR_MS


def _to_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def normalize_trade(raw: Any) -> Optional[NormalizedTrade]:
    """Map a raw history item to a NormalizedTrade. None when the timestamp is unusable."""
    if not isinstance(raw, dict):
        return None
    ts = _to_float(raw.get("timestamp"))
    if not math.isfinite(ts):
        return None
    return NormalizedTrade(
        timestamp_ms=int(ts),
        qty=_to_float(raw.get("qty")),
        price=_to_float(raw.get("price")),
    )


def extract_items(payload: Any) -> List[Any]:
    if isinstance(payload, dict) and isinstance(payload.get("list"), list):
        return payload["list"]
    if isinstance(payload, list):
        return payload
    return []


def reported_total(payload: Any, items: List[Any]) -> int:
    """Server-reported item count; the item count itself when the server sends none."""
    if isinstance(payload, dict):
        total = payload.get("total")
        if isinstance(total, (int, float)) and not isinstance(total, bool):
            return int(total)
    return len(items)


class HistoryWindowFetcher:
    """Fetches NormalizedTrades for N working days, one REST call per allowed hour."""

    def __init__(
        self,
        client: "AlorRestClient",
        tokens: "TokenProvider",
        calendar: TradingCalendar,
        exchange: str,
        symbol: str,
        page_limit: int = 5000,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.tokens = tokens
        self.calendar = calendar
        self.exchange = exchange
        self.symbol = symbol
        self.page_limit = page_limit
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def iter_days(self, start: date, working_day_count: int, now_ms: int) -> Iterator[date]:
        """Working days from start, at most working_day_count, never past today."""
        today = self.calendar.today(now_ms)
        collected = 0
        day = start
        while collected < working_day_count and day <= today:
            if not self.calendar.is_weekend(day):
                collected += 1
                yield day
            day += timedelta(days=1)

    def iter_windows(self, day: date, now_ms: int) -> Iterator[HourWindow]:
        """One-hour windows of a local day, clipped to now, minus the skipped hours."""
        day_start = self.calendar.day_start_ms(day)
        day_end = min(day_start + DAY_MS - 1, now_ms)

        t_start = day_start
        while t_start <= day_end:
            if not self.calendar.should_skip_hour(t_start):
                yield HourWindow(t_start, min(t_start + HOUR_MS - 1, day_end))
            t_start += HOUR_MS

    async def fetch(
        self,
        start_date: Union[date, str],
        working_day_count: int,
    ) -> List[NormalizedTrade]:
        if isinstance(start_date, str):
            start_date = parse_start_date(start_date)

        now_ms = self._now_ms()
        trades: List[NormalizedTrade] = []
        period_logged = False

        for day in self.iter_days(start_date, working_day_count, now_ms):
            if not period_logged:
                day_start = self.calendar.day_start_ms(day)
                day_end = min(day_start + DAY_MS - 1, now_ms)
                logger.info(
                    f"[HISTORY] Request period (working days): "
                    f"{self.calendar.format_local(day_start)} - "
                    f"{self.calendar.format_local(day_end)}"
                )
                period_logged = True

            for window in self.iter_windows(day, now_ms):
                trades.extend(await self.fetch_window(window))

        return trades

    async def fetch_window(self, window: HourWindow) -> List[NormalizedTrade]:
        """Trades of a single hour. Raises HttpError / TruncatedWindowError."""
        logger.info(
            f"[HISTORY] Hour: {self.calendar.format_local(window.start_ms)} - "
            f"{self.calendar.format_local(window.end_ms)}"
        )
        token = await self.tokens.get_token()
        payload = await self.client.get_trades_history(
            exchange=self.exchange,
            symbol=self.symbol,
            from_ms=window.start_ms,
            to_ms=window.end_ms,
            limit=self.page_limit,
            token=token,
        )

        items = extract_items(payload)
        total = reported_total(payload, items)
        if total >= self.page_limit - 1:
            raise TruncatedWindowError(
                f"Window {self.calendar.format_local(window.start_ms)} may be truncated: "
                f"total={total}, limit={self.page_limit}"
            )

        kept = []
        for raw in items:
            trade = normalize_trade(raw)
            if trade is None:
                continue
            if (
                window.contains(trade.timestamp_ms)
                and self.calendar.is_allowed_history_minute(trade.timestamp_ms)
            ):
                kept.append(trade)

        logger.info(f"[HISTORY] Trades received: {total}, kept: {len(kept)}")
        return kept
