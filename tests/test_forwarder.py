from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from rfidzone.config import GatewayConfig
from rfidzone.exceptions import RfidError
from rfidzone.forwarder import BackendClient
from rfidzone.models import TagRead, ZoneEvent

_EPC = "300833B2DDD901400000"


class _Backend:
    """Records requests and serves canned responses."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []
        self.auth: list[str | None] = []
        self.event_status = 201
        self.presence: dict[str, Any] = {}
        self.delay = 0.0

    async def post_event(self, request: web.Request) -> web.Response:
        self.auth.append(request.headers.get("Authorization"))
        self.events.append(await request.json())
        if self.delay:
            await asyncio.sleep(self.delay)
        return web.json_response({"ok": True}, status=self.event_status)

    async def get_presence(self, request: web.Request) -> web.Response:
        epc = request.match_info["epc"]
        if epc not in self.presence:
            return web.json_response({"error": "not found"}, status=404)
        return web.json_response(self.presence[epc])

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/documents/rfid/events", self.post_event)
        app.router.add_get("/api/documents/rfid/epc/{epc}", self.get_presence)
        return app


@pytest_asyncio.fixture
async def backend() -> AsyncIterator[tuple[_Backend, str]]:
    state = _Backend()
    server = TestServer(state.app())
    await server.start_server()
    try:
        yield state, f"http://{server.host}:{server.port}"
    finally:
        await server.close()


def _event() -> ZoneEvent:
    read = TagRead(epc=_EPC, rssi_dbm=-61.5, crc_valid=True)
    return ZoneEvent.build(
        read=read,
        zone="IN",
        reader_id="IN-tcp:10.0.0.5:2022",
        endpoint_meta={"host": "10.0.0.5", "port": 2022},
    )


@pytest.mark.asyncio
async def test_forward_posts_event_body(backend: tuple[_Backend, str]) -> None:
    state, url = backend
    async with BackendClient(url) as client:
        assert await client.forward(_event()) is True

    assert state.events == [
        {
            "epc": _EPC,
            "zone": "IN",
            "reader_id": "IN-tcp:10.0.0.5:2022",
            "payload": {
                "source": "uhf-reader",
                "zone_origin": "IN",
                "mode": "CF",
                "crcOk": True,
                "rssiDbm": -61.5,
                "host": "10.0.0.5",
                "port": 2022,
            },
        }
    ]
    assert state.auth == [None]


@pytest.mark.asyncio
async def test_forward_sends_authorization_header(backend: tuple[_Backend, str]) -> None:
    state, url = backend
    async with BackendClient(url, auth="Bearer secret") as client:
        assert await client.forward(_event()) is True
    assert state.auth == ["Bearer secret"]


@pytest.mark.asyncio
async def test_forward_non_2xx_returns_false(backend: tuple[_Backend, str]) -> None:
    state, url = backend
    state.event_status = 500
    async with BackendClient(url) as client:
        assert await client.forward(_event()) is False


@pytest.mark.asyncio
async def test_forward_timeout_returns_false(backend: tuple[_Backend, str]) -> None:
    state, url = backend
    state.delay = 0.5
    async with BackendClient(url, timeout=0.1) as client:
        assert await client.forward(_event()) is False


@pytest.mark.asyncio
async def test_forward_unreachable_backend_returns_false() -> None:
    async with BackendClient("http://127.0.0.1:9", timeout=1.0) as client:
        assert await client.forward(_event()) is False


@pytest.mark.asyncio
async def test_presence_found(backend: tuple[_Backend, str]) -> None:
    state, url = backend
    state.presence[_EPC] = {"found": True, "presence_status": "in_room", "name": "Jane"}
    async with BackendClient(url) as client:
        assert await client.get_presence(_EPC) == "in_room"


@pytest.mark.asyncio
async def test_presence_not_found_flag(backend: tuple[_Backend, str]) -> None:
    state, url = backend
    state.presence[_EPC] = {"found": False, "presence_status": "in_room"}
    async with BackendClient(url) as client:
        assert await client.get_presence(_EPC) is None


@pytest.mark.asyncio
async def test_presence_http_404_is_unknown(backend: tuple[_Backend, str]) -> None:
    _, url = backend
    async with BackendClient(url) as client:
        assert await client.get_presence(_EPC) is None


@pytest.mark.asyncio
async def test_client_requires_context_manager() -> None:
    client = BackendClient("http://127.0.0.1:9")
    with pytest.raises(RfidError):
        await client.forward(_event())


@pytest.mark.asyncio
async def test_from_config_uses_backend_settings(backend: tuple[_Backend, str]) -> None:
    state, url = backend
    config = GatewayConfig(backend_url=url, backend_auth="Token abc", backend_timeout=2.0)
    async with BackendClient.from_config(config) as client:
        assert await client.forward(_event()) is True
    assert state.auth == ["Token abc"]
