"""Client-role websocket link to the reconciliation engine.

The link owns no retry policy: a failed open raises :class:`ConnectError`
and the caller decides what happens next.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.protocol import State

from blueprint_relay.errors import ConnectError, TransportError

logger = logging.getLogger(__name__)

Frame = Union[str, bytes]


class UpstreamLink:
    """Thin wrapper around one upstream websocket connection."""

    def __init__(self, address: str, connection: Any) -> None:
        self.address = address
        self._connection = connection
        self._close_requested = False

    @classmethod
    async def open(cls, address: str, *, open_timeout: Optional[float] = 10.0) -> "UpstreamLink":
        try:
            # Keepalive is driven by the bridge, so the library pinger stays off.
            connection = await websockets.connect(
                address,
                open_timeout=open_timeout,
                ping_interval=None,
                compression=None,
                max_size=None,
            )
        except (OSError, asyncio.TimeoutError, InvalidHandshake, InvalidURI) as exc:
            raise ConnectError(address, str(exc) or exc.__class__.__name__) from exc
        logger.debug("upstream link open: %s", address)
        return cls(address, connection)

    @property
    def state(self) -> State:
        return self._connection.state

    @property
    def is_open(self) -> bool:
        return self._connection.state is State.OPEN

    @property
    def close_code(self) -> Optional[int]:
        return getattr(self._connection, "close_code", None)

    @property
    def close_reason(self) -> Optional[str]:
        return getattr(self._connection, "close_reason", None)

    async def send(self, data: Frame) -> None:
        try:
            await self._connection.send(data)
        except ConnectionClosed as exc:
            raise TransportError(f"upstream send failed: {exc}") from exc

    async def ping(self) -> None:
        try:
            await self._connection.ping()
        except ConnectionClosed as exc:
            raise TransportError(f"upstream ping failed: {exc}") from exc

    async def close(self) -> None:
        if self._close_requested:
            return
        self._close_requested = True
        await self._connection.close()

    def __aiter__(self) -> AsyncIterator[Frame]:
        return self._connection.__aiter__()


__all__ = ["Frame", "UpstreamLink"]
