"""Websocket transport feeding a :class:`ReconnectionController`.

Each transport is one connection attempt. It reports ``opened``, each
``message`` and exactly one of ``closed``/``errored`` back to its listener,
passing itself as the handle so the controller can drop events from
attempts it has already discarded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, InvalidHandshake, InvalidURI

logger = logging.getLogger(__name__)


class TransportListener(Protocol):
    def transport_opened(self, handle: Any) -> None: ...

    def transport_message(self, handle: Any, data: Any) -> None: ...

    def transport_closed(self, handle: Any, code: Optional[int] = None, reason: str = "") -> None: ...

    def transport_errored(self, handle: Any, error: Optional[BaseException] = None) -> None: ...


class WebSocketTransport:
    def __init__(self, url: str, listener: TransportListener, *, open_timeout: Optional[float] = None) -> None:
        self.url = url
        self._listener = listener
        self._open_timeout = open_timeout
        self._ws: Any = None
        self._close_requested = False
        self._close_task: Optional[asyncio.Task[None]] = None
        self._task: asyncio.Task[None] = asyncio.get_running_loop().create_task(self._run())

    @property
    def task(self) -> asyncio.Task[None]:
        return self._task

    async def _run(self) -> None:
        try:
            async with websockets.connect(
                self.url,
                open_timeout=self._open_timeout,
                compression=None,
                max_size=None,
            ) as ws:
                self._ws = ws
                if self._close_requested:
                    return
                self._listener.transport_opened(self)
                try:
                    async for data in ws:
                        self._listener.transport_message(self, data)
                except ConnectionClosedOK:
                    pass
                self._listener.transport_closed(self, ws.close_code, ws.close_reason or "")
        except (OSError, asyncio.TimeoutError, ConnectionClosed, InvalidHandshake, InvalidURI) as exc:
            if not self._close_requested:
                self._listener.transport_errored(self, exc)
        except Exception as exc:
            # Listener failures end this attempt like any transport error.
            logger.exception("Websocket transport failed")
            if not self._close_requested:
                self._listener.transport_errored(self, exc)
        finally:
            self._ws = None

    def close(self) -> None:
        """Close the connection, or abandon the attempt if it has not opened yet."""

        if self._close_requested:
            return
        self._close_requested = True
        ws = self._ws
        if ws is not None:
            self._close_task = asyncio.get_running_loop().create_task(ws.close())
        else:
            self._task.cancel()


def open_websocket(url: str, listener: TransportListener) -> WebSocketTransport:
    """``OpenTransport`` factory for :class:`ReconnectionController`."""

    return WebSocketTransport(url, listener)


__all__ = ["TransportListener", "WebSocketTransport", "open_websocket"]
