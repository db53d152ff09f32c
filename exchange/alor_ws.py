"""
Alor WebSocket client.
Subscribes to the order book and all-trades feeds of one instrument and hands
every inbound frame to a synchronous handler. Reconnects after a fixed delay
whenever the socket drops, until stop() is called. While subscribed, the
subscriptions are renewed with a fresh token when the cached one expires.
"""

from __future__ import annotations
import asyncio
import json
import time
import uuid
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional
import websockets
import logging

from exchange.errors import AuthError, StreamTransportError
from exchange.models import ConnectionState

if TYPE_CHECKING:
    from exchange.auth import TokenProvider

logger = logging.getLogger(__name__)

# Receives the raw text of one frame
FrameHandler = Callable[[str], Any]

NORMAL_CLOSURE = 1000
TRANSPORT_ERRORS = (
    websockets.WebSocketException,
    StreamTransportError,
    OSError,
    asyncio.TimeoutError,
)


def order_book_request(exchange: str, symbol: str, depth: int, frequency: int, token: str) -> Dict:
    return {
        "opcode": "OrderBookGetAndSubscribe",
        "code": symbol,
        "depth": depth,
        "exchange": exchange,
        "format": "Simple",
        "frequency": frequency,
        "guid": f"ob-{uuid.uuid4()}",
        "token": token,
    }


def all_trades_request(exchange: str, symbol: str, token: str) -> Dict:
    return {
        "opcode": "AllTradesGetAndSubscribe",
        "code": symbol,
        "exchange": exchange,
        "format": "Simple",
        "guid": f"tr-{uuid.uuid4()}",
        "token": token,
    }


class AlorWSClient:
    """Single-connection market-data stream with fixed-delay auto-reconnect."""

    def __init__(
        self,
        url: str,
        tokens: "TokenProvider",
        exchange: str,
        symbol: str,
        depth: int = 20,
        frequency: int = 25,
        reconnect_delay_sec: float = 2.0,
        ping_interval_sec: float = 20.0,
        min_renew_delay_sec: float = 30.0,
        connect: Callable = websockets.connect,
        clock: Callable[[], float] = time.time,
    ):
        self.url = url
        self.tokens = tokens
        self.exchange = exchange
        self.symbol = symbol
        self.depth = depth
        self.frequency = frequency
        self.reconnect_delay_sec = reconnect_delay_sec
        self._ping_interval = ping_interval_sec
        self.min_renew_delay_sec = min_renew_delay_sec
        self._connect = connect
        self._clock = clock

        self._ws = None
        self._running = False
        self._stop_event: Optional[asyncio.Event] = None
        self.state = ConnectionState.DISCONNECTED
        self.connect_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self, handler: FrameHandler):
        """Connect, subscribe and pump frames into handler until stop()."""
        self._running = True
        self._stop_event = asyncio.Event()

        while self._running:
            self.state = ConnectionState.CONNECTING
            renewer: Optional[asyncio.Task] = None
            try:
                async with self._connect(
                    self.url,
                    ping_interval=self._ping_interval,
                    ping_timeout=10,
                    close_timeout=5,
                ) as ws:
                    self._ws = ws
                    # stop() may have run while the handshake was pending
                    if not self._running:
                        await ws.close(code=NORMAL_CLOSURE, reason="shutdown")
                        break
                    self.connect_count += 1
                    logger.info(f"[WS] Connected to {self.url}")

                    await self.subscribe_all()
                    if not self._running:
                        break
                    self.state = ConnectionState.SUBSCRIBED
                    renewer = asyncio.create_task(self._renew_loop())

                    async for raw in ws:
                        if isinstance(raw, bytes):
                            try:
                                raw = raw.decode("utf-8")
                            except UnicodeDecodeError as e:
                                logger.warning(f"[WS] Dropped undecodable binary frame: {e}")
                                continue
                        handler(raw)

                    logger.warning("[WS] Server closed the stream")

            except websockets.ConnectionClosed as e:
                logger.warning(f"[WS] Connection closed: {e}")
            except TRANSPORT_ERRORS as e:
                logger.error(f"[WS] Transport error: {e}")
            finally:
                self._ws = None
                if renewer is not None:
                    renewer.cancel()

            if not self._running:
                break
            self.state = ConnectionState.DISCONNECTED
            logger.info(f"[WS] Reconnecting in {self.reconnect_delay_sec:g}s...")
            await self._sleep_unless_stopped(self.reconnect_delay_sec)

        self.state = ConnectionState.CLOSED

    async def _sleep_unless_stopped(self, delay: float):
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    def _renew_delay(self) -> float:
        """Seconds until the cached token is due for refresh."""
        credential = self.tokens.credential
        if credential is None:
            return self.min_renew_delay_sec
        return max(self.min_renew_delay_sec, credential.expires_at - self._clock())

    async def _renew_loop(self):
        while self._running:
            await self._sleep_unless_stopped(self._renew_delay())
            if not self._running:
                return
            try:
                await self.renew()
            except AuthError as e:
                logger.error(f"[WS] Token renewal failed: {e}")
            except TRANSPORT_ERRORS as e:
                # The read loop sees the same failure and reconnects
                logger.warning(f"[WS] Resubscribe failed: {e}")
                return

    async def send(self, payload: Dict):
        if self._ws is not None:
            await self._ws.send(json.dumps(payload))

    async def subscribe_all(self):
        """Subscribe to order book and all trades with a fresh token."""
        token = await self.tokens.get_token()
        await self.send(order_book_request(
            self.exchange, self.symbol, self.depth, self.frequency, token,
        ))
        await self.send(all_trades_request(self.exchange, self.symbol, token))
        logger.info(f"[WS] Subscribed to order book and trades of {self.exchange}:{self.symbol}")

    async def renew(self):
        """Re-subscribe with a force-refreshed token."""
        if self.state is not ConnectionState.SUBSCRIBED:
            return
        await self.tokens.refresh()
        await self.subscribe_all()

    async def stop(self, reason: str = "shutdown"):
        """Close with a normal-closure code and disable reconnects."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        ws = self._ws
        if ws is not None:
            await ws.close(code=NORMAL_CLOSURE, reason=reason)
        self.state = ConnectionState.CLOSED
        logger.info("[WS] Stopped")
