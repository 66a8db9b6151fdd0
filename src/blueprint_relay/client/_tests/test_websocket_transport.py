from __future__ import annotations

import asyncio

import pytest

pytest.importorskip("websockets")

import websockets

from blueprint_relay.client.transport import WebSocketTransport, open_websocket


class _Listener:
    def __init__(self) -> None:
        self.events: list[tuple] = []
        self.done = asyncio.Event()

    def transport_opened(self, handle) -> None:
        self.events.append(("opened", handle))

    def transport_message(self, handle, data) -> None:
        self.events.append(("message", data))

    def transport_closed(self, handle, code=None, reason="") -> None:
        self.events.append(("closed", code))
        self.done.set()

    def transport_errored(self, handle, error=None) -> None:
        self.events.append(("errored", type(error).__name__))
        self.done.set()


def test_transport_reports_open_messages_and_close() -> None:
    async def runner() -> None:
        async def relay(ws) -> None:
            await ws.send('{"type":"init","devices":{}}')
            await ws.close(1001, "restarting")

        server = await websockets.serve(relay, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            listener = _Listener()
            transport = open_websocket(f"ws://127.0.0.1:{port}/ws", listener)
            await asyncio.wait_for(listener.done.wait(), timeout=2.0)
            kinds = [event[0] for event in listener.events]
            assert kinds == ["opened", "message", "closed"]
            assert listener.events[0][1] is transport
            assert listener.events[1][1] == '{"type":"init","devices":{}}'
            assert listener.events[2][1] == 1001
        finally:
            server.close()
            await server.wait_closed()

    asyncio.run(runner())


def test_transport_reports_connect_failure() -> None:
    async def runner() -> None:
        listener = _Listener()
        WebSocketTransport("ws://127.0.0.1:1/ws", listener, open_timeout=1.0)
        await asyncio.wait_for(listener.done.wait(), timeout=3.0)
        assert [event[0] for event in listener.events] == ["errored"]

    asyncio.run(runner())


def test_close_before_open_is_silent() -> None:
    async def runner() -> None:
        listener = _Listener()
        transport = WebSocketTransport("ws://127.0.0.1:1/ws", listener, open_timeout=1.0)
        transport.close()
        with pytest.raises(asyncio.CancelledError):
            await transport.task
        assert listener.events == []

    asyncio.run(runner())


class _RaisingListener(_Listener):
    def transport_message(self, handle, data) -> None:
        super().transport_message(handle, data)
        raise KeyError("renderer")


def test_listener_failure_reports_error() -> None:
    async def runner() -> None:
        hold = asyncio.Event()

        async def relay(ws) -> None:
            await ws.send('{"type":"update","device":"d1","spec":{},"status":null}')
            await hold.wait()

        server = await websockets.serve(relay, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            listener = _RaisingListener()
            transport = open_websocket(f"ws://127.0.0.1:{port}/ws", listener)
            await asyncio.wait_for(listener.done.wait(), timeout=2.0)
            assert [event[0] for event in listener.events] == ["opened", "message", "errored"]
            assert listener.events[-1][1] == "KeyError"
            await asyncio.wait_for(transport.task, timeout=2.0)
        finally:
            hold.set()
            server.close()
            await server.wait_closed()

    asyncio.run(runner())


def test_close_after_open_keeps_close_task() -> None:
    async def runner() -> None:
        async def relay(ws) -> None:
            await ws.wait_closed()

        server = await websockets.serve(relay, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            listener = _Listener()
            opened = asyncio.Event()
            listener.transport_opened = lambda handle: opened.set()
            transport = open_websocket(f"ws://127.0.0.1:{port}/ws", listener)
            await asyncio.wait_for(opened.wait(), timeout=2.0)
            transport.close()
            transport.close()
            assert transport._close_task is not None
            await asyncio.wait_for(transport._close_task, timeout=2.0)
            await asyncio.wait_for(transport.task, timeout=2.0)
        finally:
            server.close()
            await server.wait_closed()

    asyncio.run(runner())
