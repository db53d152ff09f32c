"""
Alor OAuth token provider.
Exchanges the long-lived refresh token for a short-lived JWT and caches it,
refreshing ~30s before the server-side expiry.
"""

from __future__ import annotations
import asyncio
import time
from typing import Callable, Optional
import aiohttp
import logging

from exchange.errors import AuthError
from exchange.models import Credential

logger = logging.getLogger(__name__)

DEFAULT_TTL_SEC = 300
EXPIRY_MARGIN_SEC = 30


class TokenProvider:
    """Caches one bearer credential; concurrent callers share a single refresh."""

    def __init__(
        self,
        auth_url: str,
        refresh_token: str,
        timeout_sec: float = 90.0,
        clock: Callable[[], float] = time.time,
    ):
        self.auth_url = auth_url
        self.refresh_token = refresh_token
        self.timeout_sec = timeout_sec
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._lock = asyncio.Lock()
        self._session: Optional[aiohttp.ClientSession] = None
        self.refresh_count = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_sec)
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    async def get_token(self) -> str:
        """Return a valid JWT, refreshing first if missing or due."""
        cred = self._credential
        if cred is not None and cred.is_valid(self._clock()):
            return cred.token

        async with self._lock:
            # Another caller may have refreshed while we waited
            cred = self._credential
            if cred is not None and cred.is_valid(self._clock()):
                return cred.token
            return await self._refresh_locked()

    async def refresh(self) -> str:
        """Force a refresh regardless of the cached expiry."""
        async with self._lock:
            return await self._refresh_locked()

    async def _refresh_locked(self) -> str:
        if not self.refresh_token:
            raise AuthError("REFRESH_TOKEN is not set")

        data = await self._request_access_token()
        token = data.get("AccessToken") if isinstance(data, dict) else None
        if not token:
            raise AuthError("OAuth response has no AccessToken")

        ttl = data.get("ExpiresIn") or DEFAULT_TTL_SEC
        try:
            ttl = float(ttl)
        except (TypeError, ValueError):
            ttl = DEFAULT_TTL_SEC

        now = self._clock()
        self._credential = Credential(
            token=token,
            expires_at=now + max(EXPIRY_MARGIN_SEC, ttl - EXPIRY_MARGIN_SEC),
        )
        self.refresh_count += 1
        logger.info(f"[AUTH] JWT refreshed, ttl≈{ttl:.0f}s")
        return token

    async def _request_access_token(self) -> dict:
        """POST the refresh token to the OAuth endpoint and return the JSON body."""
        session = await self._get_session()
        logger.debug(f"[AUTH] POST {self.auth_url}")
        try:
            async with session.post(self.auth_url, json={"token": self.refresh_token}) as resp:
                if resp.status < 200 or resp.status >= 300:
                    body = await resp.text()
                    raise AuthError(f"OAuth HTTP {resp.status}: {body[:200]}")
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AuthError(f"OAuth request failed: {e}") from e
