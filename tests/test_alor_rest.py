"""Tests for the REST client and the OAuth request against a local aiohttp server."""

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils

from exchange.alor_rest import AlorRestClient, build_trades_history_params, trades_history_path
from exchange.auth import TokenProvider
from exchange.errors import AuthError, HttpError


class TestParams:
    def test_milliseconds_are_divided_down(self) -> None:
        params = build_trades_history_params(1_741_068_000_000, 1_741_071_599_999, 5000)
        assert params == {"from": "1741068000", "to": "1741071599", "limit": "5000"}

    def test_seconds_are_kept(self) -> None:
        params = build_trades_history_params(1_741_068_000, 1_741_071_599.7, None)
        assert params == {"from": "1741068000", "to": "1741071599"}

    def test_missing_values_are_omitted(self) -> None:
        assert build_trades_history_params(None, float("nan"), None) == {}

    def test_path_is_escaped(self) -> None:
        assert trades_history_path("https://api.example", "MOEX", "Si-3.25") == (
            "https://api.example/md/v2/Securities/MOEX/Si-3.25/alltrades/history"
        )
        assert "A%2FB" in trades_history_path("https://api.example", "MOEX", "A/B")


@pytest_asyncio.fixture
async def server():
    seen = {}

    async def history(request: web.Request) -> web.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["query"] = dict(request.query)
        if request.match_info["symbol"] == "BROKEN":
            return web.json_response({"message": "nope"}, status=500)
        return web.json_response({"list": [{"timestamp": 1, "qty": 2, "price": 3}], "total": 1})

    async def oauth(request: web.Request) -> web.Response:
        body = await request.json()
        if body.get("token") != "good":
            return web.json_response({"error": "invalid"}, status=401)
        return web.json_response({"AccessToken": "jwt-abc", "ExpiresIn": 1800})

    app = web.Application()
    app.router.add_get("/md/v2/Securities/{exchange}/{symbol}/alltrades/history", history)
    app.router.add_post("/refresh", oauth)

    srv = test_utils.TestServer(app)
    await srv.start_server()
    srv.seen = seen
    yield srv
    await srv.close()


def base_url(srv: test_utils.TestServer) -> str:
    return str(srv.make_url("/")).rstrip("/")


@pytest.mark.asyncio
async def test_history_request(server) -> None:
    client = AlorRestClient(base_url(server))
    try:
        payload = await client.get_trades_history(
            "MOEX", "SiH5", 1_741_068_000_000, 1_741_071_599_999, 5000, "jwt-abc",
        )
    finally:
        await client.close()

    assert payload == {"list": [{"timestamp": 1, "qty": 2, "price": 3}], "total": 1}
    assert server.seen["auth"] == "Bearer jwt-abc"
    assert server.seen["query"] == {"from": "1741068000", "to": "1741071599", "limit": "5000"}


@pytest.mark.asyncio
async def test_history_non_2xx_is_http_error(server) -> None:
    client = AlorRestClient(base_url(server), debug=True)
    try:
        with pytest.raises(HttpError) as exc:
            await client.get_trades_history("MOEX", "BROKEN", 0, 1, 10, "jwt")
    finally:
        await client.close()
    assert exc.value.status == 500


@pytest.mark.asyncio
async def test_oauth_refresh(server) -> None:
    tokens = TokenProvider(f"{base_url(server)}/refresh", "good", clock=lambda: 0.0)
    try:
        assert await tokens.get_token() == "jwt-abc"
    finally:
        await tokens.close()
    assert tokens.credential.expires_at == 1770.0


@pytest.mark.asyncio
async def test_oauth_rejection_is_auth_error(server) -> None:
    tokens = TokenProvider(f"{base_url(server)}/refresh", "bad")
    try:
        with pytest.raises(AuthError):
            await tokens.get_token()
    finally:
        await tokens.close()
