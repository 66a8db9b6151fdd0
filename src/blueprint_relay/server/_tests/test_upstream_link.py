from __future__ import annotations

import asyncio

import pytest

pytest.importorskip("websockets")

import websockets
from websockets.exceptions import ConnectionClosedOK

from blueprint_relay.errors import ConnectError, TransportError
from blueprint_relay.server.upstream import UpstreamLink


class ClosedConnection:
    state = None
    close_code = 1000
    close_reason = "bye"

    def __init__(self) -> None:
        self.close_calls = 0

    async def send(self, data) -> None:
        raise ConnectionClosedOK(None, None)

    async def ping(self) -> None:
        raise ConnectionClosedOK(None, None)

    async def close(self) -> None:
        self.close_calls += 1


def test_open_rejects_invalid_address() -> None:
    async def runner() -> None:
        with pytest.raises(ConnectError) as info:
            await UpstreamLink.open("http://not-a-websocket", open_timeout=1.0)
        assert info.value.address == "http://not-a-websocket"

    asyncio.run(runner())


def test_send_and_ping_on_closed_link_raise_transport_error() -> None:
    async def runner() -> None:
        conn = ClosedConnection()
        link = UpstreamLink("ws://reconciler:46701", conn)
        with pytest.raises(TransportError):
            await link.send("frame")
        with pytest.raises(TransportError):
            await link.ping()
        assert link.close_code == 1000
        assert link.close_reason == "bye"

    asyncio.run(runner())


def test_close_is_idempotent() -> None:
    async def runner() -> None:
        conn = ClosedConnection()
        link = UpstreamLink("ws://reconciler:46701", conn)
        await link.close()
        await link.close()
        assert conn.close_calls == 1

    asyncio.run(runner())


def test_open_and_receive() -> None:
    async def runner() -> None:
        async def reconciler(ws) -> None:
            await ws.send("hello")
            await ws.wait_closed()

        server = await websockets.serve(reconciler, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            link = await UpstreamLink.open(f"ws://127.0.0.1:{port}", open_timeout=2.0)
            assert link.is_open
            frames = []
            async for frame in link:
                frames.append(frame)
                break
            assert frames == ["hello"]
            await link.close()
            assert not link.is_open
        finally:
            server.close()
            await server.wait_closed()

    asyncio.run(runner())
