"""
Volume histogram — trade counts per fixed-width quantity bucket.

Bucket i (i < interval_count) covers [1 + i*q, (i+1)*q]. The extra last
bucket catches every trade strictly above q*interval_count. A trade of
exactly q*interval_count stays in the last regular bucket.
"""

from __future__ import annotations
import math
from typing import Iterable, List
import logging

from exchange.errors import ConfigError
from exchange.models import NormalizedTrade, VolumeBucket

logger = logging.getLogger(__name__)

MIN_QTY = 1
DEFAULT_INTERVAL_COUNT = 10


def bucket_index(qty: float, qty_interval: int, interval_count: int) -> int:
    if qty > qty_interval * interval_count:
        return interval_count
    if math.isnan(qty):
        return 0
    return min(interval_count - 1, max(0, math.floor((qty - MIN_QTY) / qty_interval)))


def build(
    trades: Iterable[NormalizedTrade],
    qty_interval: int,
    interval_count: int,
) -> List[VolumeBucket]:
    """Build interval_count regular buckets plus one overflow bucket."""
    if qty_interval is None or not qty_interval > 0:
        raise ConfigError(f"Invalid qty interval {qty_interval!r} (expected a positive number)")
    if not interval_count or interval_count <= 0:
        logger.warning(
            f"[VOLUME] Interval count {interval_count!r} is not positive, "
            f"using {DEFAULT_INTERVAL_COUNT}"
        )
        interval_count = DEFAULT_INTERVAL_COUNT

    buckets = [
        VolumeBucket(MIN_QTY + i * qty_interval, (i + 1) * qty_interval)
        for i in range(interval_count)
    ]
    buckets.append(VolumeBucket(MIN_QTY + interval_count * qty_interval, None))

    for trade in trades:
        buckets[bucket_index(trade.qty, qty_interval, interval_count)].count += 1
    return buckets


def format_report(buckets: List[VolumeBucket]) -> List[str]:
    lines = []
    for b in buckets:
        end = "∞" if b.is_overflow else str(b.range_end)
        lines.append(f"[{b.range_start} .. {end}] : {b.count}")
    return lines
