"""
Alor REST market-data client.
Only the all-trades history endpoint is needed; authentication is a bearer
JWT supplied by the caller.
"""

from __future__ import annotations
import asyncio
import json
import math
from typing import Any, Dict, Optional
from urllib.parse import quote
import aiohttp
import logging

from exchange.errors import HttpError

logger = logging.getLogger(__name__)

MS_THRESHOLD = 1e12     # Anything this large is milliseconds, not seconds


def trades_history_path(base_url: str, exchange: str, symbol: str) -> str:
    """/md/v2/Securities/:exchange/:symbol/alltrades/history"""
    return (
        f"{base_url}/md/v2/Securities/"
        f"{quote(exchange, safe='')}/{quote(symbol, safe='')}/alltrades/history"
    )


def _to_seconds(value: Optional[float]) -> Optional[str]:
    if value is None or not math.isfinite(value):
        return None
    seconds = value // 1000 if value >= MS_THRESHOLD else math.floor(value)
    return str(int(seconds))


def build_trades_history_params(
    from_ms: Optional[float],
    to_ms: Optional[float],
    limit: Optional[int],
) -> Dict[str, str]:
    """Query params with from/to in whole seconds; ms inputs are divided down."""
    params = {}
    from_sec = _to_seconds(from_ms)
    to_sec = _to_seconds(to_ms)
    if from_sec is not None:
        params["from"] = from_sec
    if to_sec is not None:
        params["to"] = to_sec
    if limit is not None:
        params["limit"] = str(limit)
    return params


class AlorRestClient:
    """Async wrapper over the Alor market-data REST API."""

    def __init__(self, base_url: str, timeout_sec: float = 90.0, debug: bool = False):
        self.base_url = base_url.rstrip("/")
        self.timeout_sec = timeout_sec
        self.debug = debug
        self._session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_sec)
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def _get(self, url: str, token: str, params: Dict[str, str]) -> Any:
        session = await self._get_session()
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}

        if self.debug:
            logger.debug(f"[HTTP→] GET {url} {params}")
        try:
            async with session.get(url, headers=headers, params=params) as resp:
                body = await resp.text()
                if self.debug:
                    logger.debug(f"[HTTP←] {resp.status} {url}")
                if resp.status < 200 or resp.status >= 300:
                    raise HttpError(f"HTTP {resp.status}: {body[:500]}", status=resp.status)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"[REST] GET {url} Exception: {e}")
            raise HttpError(f"GET {url} failed: {e}") from e

        try:
            return json.loads(body) if body else None
        except json.JSONDecodeError as e:
            raise HttpError(f"GET {url} returned invalid JSON: {body[:200]}") from e

    async def get_trades_history(
        self,
        exchange: str,
        symbol: str,
        from_ms: int,
        to_ms: int,
        limit: int,
        token: str,
    ) -> Any:
        """
        Raw all-trades history payload for [from, to].
        Either {"list": [...], "total": N} or a bare list.
        """
        url = trades_history_path(self.base_url, exchange, symbol)
        params = build_trades_history_params(from_ms, to_ms, limit)
        return await self._get(url, token, params)
