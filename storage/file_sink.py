"""
Daily file sink for the stream dump.

Each flush becomes one newline-delimited blob appended to
{data_dir}/{symbol}_data_{yyyy-mm-dd}.json. The write runs in a worker
thread so the event loop never waits on disk; an asyncio.Lock keeps two
appends from interleaving.
"""

from __future__ import annotations
import asyncio
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Sequence
import logging

from exchange.errors import PersistenceError

logger = logging.getLogger(__name__)


class DailyFileSink:
    """Append-only writer of raw stream records, one file per symbol per UTC day."""

    def __init__(
        self,
        data_dir: str,
        symbol: str,
        clock: Callable[[], float] = time.time,
    ):
        self.data_dir = Path(data_dir)
        self.symbol = symbol
        self._clock = clock
        self._lock = asyncio.Lock()

    def ensure_directory(self):
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"[SINK] Created data directory: {self.data_dir}")

    def file_path_for(self, ts: float) -> Path:
        day = datetime.fromtimestamp(ts, tz=timezone.utc).date().isoformat()
        return self.data_dir / f"{self.symbol}_data_{day}.json"

    async def append(self, records: Sequence[str]) -> Path:
        """Append records, one per line, in order. Raises PersistenceError."""
        started = self._clock()
        path = self.file_path_for(started)
        blob = "".join(f"{r}\n" for r in records)

        async with self._lock:
            try:
                await asyncio.to_thread(self._write_blob, path, blob)
            except OSError as e:
                raise PersistenceError(f"Append to {path} failed: {e}") from e

        elapsed_ms = (self._clock() - started) * 1000
        logger.info(f"[SINK] Saved {len(records)} records to {path.name} in {elapsed_ms:.0f}ms")
        return path

    def _write_blob(self, path: Path, blob: str):
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(blob)
            f.flush()
            os.fsync(f.fileno())
