"""
Stream ingestion pipeline — live frames to daily dump files.

Frames are appended to the active half of a double buffer. Once the active
half holds flush_size records, the next record swaps the halves: it lands in
the fresh half while the full one is written to disk by a background task.
The read loop therefore never waits on disk I/O. Only one flush may run at a
time; a swap that would hit a half still being flushed is a fatal
FlushInProgressError.
"""

from __future__ import annotations
import asyncio
import json
import time
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence
import logging

from exchange.errors import ConfigError, FlushInProgressError, PersistenceError
from exchange.models import ActiveSlot, SessionRange

if TYPE_CHECKING:
    from core.calendar import TradingCalendar
    from exchange.alor_ws import AlorWSClient
    from storage.file_sink import DailyFileSink

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_SIZE = 500
BUFFER_LOG_EVERY = 100


class DoubleBuffer:
    """Two record lists, one active for appends, the other idle or being flushed."""

    def __init__(self, flush_size: int = DEFAULT_FLUSH_SIZE):
        if flush_size <= 0:
            raise ConfigError(f"FLUSH_SIZE must be positive, got {flush_size}")
        self.flush_size = flush_size
        self._slots: Dict[ActiveSlot, List[str]] = {ActiveSlot.A: [], ActiveSlot.B: []}
        self.active = ActiveSlot.A
        self._flushing: Optional[ActiveSlot] = None

    def __len__(self) -> int:
        return len(self._slots[self.active])

    @property
    def flushing(self) -> Optional[ActiveSlot]:
        return self._flushing

    def records(self, slot: ActiveSlot) -> List[str]:
        return self._slots[slot]

    def append(self, record: str) -> Optional[ActiveSlot]:
        """
        Append to the active slot. If it is already full, swap first and
        return the slot that now needs flushing.
        """
        full = None
        if len(self) >= self.flush_size:
            full = self.swap()
        self._slots[self.active].append(record)
        return full

    def swap(self) -> ActiveSlot:
        """Deactivate the active slot, mark it as flushing and return it."""
        if self._flushing is not None:
            raise FlushInProgressError(
                f"Buffer {self._flushing.name} is still being flushed, cannot swap"
            )
        target = self.active.other
        if self._slots[target]:
            raise FlushInProgressError(f"Swap target buffer {target.name} is not empty")

        full = self.active
        self._flushing = full
        self.active = target
        return full

    def complete_flush(self):
        """Empty the flushed slot so it can be the next swap target."""
        if self._flushing is None:
            return
        self._slots[self._flushing].clear()
        self._flushing = None


def to_record(raw: str, message: Dict) -> str:
    """Single-line record text: the frame verbatim, or compacted if it spans lines."""
    text = raw.strip()
    if "\n" in text or "\r" in text:
        return json.dumps(message, ensure_ascii=False, separators=(",", ":"))
    return text


class StreamIngestionPipeline:
    """Owns the live connection, the double buffer and the file sink."""

    def __init__(
        self,
        ws: "AlorWSClient",
        sink: "DailyFileSink",
        calendar: "TradingCalendar",
        sessions: Sequence[SessionRange],
        flush_size: int = DEFAULT_FLUSH_SIZE,
        clock: Callable[[], float] = time.time,
    ):
        self.ws = ws
        self.sink = sink
        self.calendar = calendar
        self.sessions = list(sessions)
        self.buffer = DoubleBuffer(flush_size)
        self._clock = clock

        self._flush_task: Optional[asyncio.Task] = None
        self._accepting = True
        self._closed = asyncio.Event()

        self.received = 0
        self.flush_count = 0
        self.dropped_records = 0

    async def run(self):
        """Stream until shutdown() (or a fatal error) ends the connection loop."""
        self.sink.ensure_directory()
        logger.info(
            f"[DUMP] Streaming {self.ws.exchange}:{self.ws.symbol} to {self.sink.data_dir}, "
            f"flush every {self.buffer.flush_size} records"
        )
        await self.ws.run(self.handle_frame)
        if not self._accepting:
            await self._closed.wait()

    def handle_frame(self, raw: str):
        """Read-loop callback. Never awaits, never touches the disk."""
        if not self._accepting:
            return
        now_ms = self._clock() * 1000
        if not self.calendar.is_within_session(now_ms, self.sessions):
            return

        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug(f"[DUMP] Not JSON, dropped: {raw[:100]}")
            return
        if not isinstance(message, dict):
            logger.debug(f"[DUMP] Not an object, dropped: {raw[:100]}")
            return

        if message.get("data") is None:
            logger.info(f"[DUMP] Message without data: {message.get('opcode', 'unknown')}")
            return

        if len(self.buffer) % BUFFER_LOG_EVERY == 0:
            logger.debug(f"[DUMP] Buffer holds {len(self.buffer)} messages")

        full = self.buffer.append(to_record(raw, message))
        self.received += 1
        if full is not None:
            logger.info(f"[DUMP] Buffer {full.name} full, flushing")
            self._flush_task = asyncio.create_task(self._flush(full))

    async def _flush(self, slot):
        records = self.buffer.records(slot)
        count = len(records)
        try:
            await self.sink.append(records)
            self.flush_count += 1
        except PersistenceError as e:
            self.dropped_records += count
            logger.error(f"[DUMP] Flush failed, {count} records dropped: {e}")
        finally:
            self.buffer.complete_flush()

    async def wait_flushed(self):
        task = self._flush_task
        if task is not None and not task.done():
            await task

    async def shutdown(self):
        """Flush whatever is buffered, then close the socket normally."""
        if not self._accepting:
            return
        logger.info("[DUMP] Shutting down...")
        self._accepting = False
        try:
            await self.wait_flushed()
            if len(self.buffer) > 0:
                logger.info(f"[DUMP] Saving remaining {len(self.buffer)} records...")
                await self._flush(self.buffer.swap())
            await self.ws.stop()
        finally:
            self._closed.set()
        logger.info(
            f"[DUMP] Stopped. Records: {self.received}, flushes: {self.flush_count}, "
            f"dropped: {self.dropped_records}"
        )
