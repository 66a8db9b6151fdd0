"""Per-connection bridge between one console websocket and one upstream link.

Reader tasks and the keepalive timer never touch the connections' lifecycle
directly. They post :class:`SessionEvent` values into the session queue and a
single reducer (:meth:`ConnectionBridge.dispatch`) applies them in order, so
teardown only ever runs once no matter which side fails first.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Optional

from websockets.exceptions import ConnectionClosed, ConnectionClosedOK
from websockets.protocol import State

from blueprint_relay.errors import ConnectError, PhantomConnection, TransportError
from blueprint_relay.server.config.logging_policy import LoggingToggles
from blueprint_relay.server.upstream import UpstreamLink
from blueprint_relay.shared.phantom import PhantomPolicy

logger = logging.getLogger(__name__)

EVENT_QUEUE_SIZE = 256

OpenLink = Callable[[str], Awaitable[Any]]


class Side(str, enum.Enum):
    DOWNSTREAM = "downstream"
    UPSTREAM = "upstream"

    @property
    def other(self) -> "Side":
        return Side.UPSTREAM if self is Side.DOWNSTREAM else Side.DOWNSTREAM


class EventKind(str, enum.Enum):
    CONNECTED = "connected"
    MESSAGE = "message"
    CLOSED = "closed"
    ERRORED = "errored"
    TIMER_FIRED = "timer-fired"


@dataclass(frozen=True)
class SessionEvent:
    kind: EventKind
    side: Optional[Side] = None
    data: Any = None
    error: Optional[BaseException] = None


class KeepaliveTimer:
    """Fires ``callback`` every ``interval_s`` seconds until cancelled."""

    def __init__(self, interval_s: float, callback: Callable[[], None]) -> None:
        self.interval_s = float(interval_s)
        self._callback = callback
        self._task: Optional[asyncio.Task[None]] = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self) -> None:
        if self._task is None and not self._cancelled:
            self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            self._callback()

    def cancel(self) -> bool:
        if self._cancelled:
            return False
        self._cancelled = True
        if self._task is not None:
            self._task.cancel()
        return True


@dataclass
class Session:
    """Pairing of one downstream connection and (at most) one upstream link."""

    downstream: Any
    upstream: Any = None
    keepalive: Optional[KeepaliveTimer] = None
    created_at: float = field(default_factory=time.time)
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])


def is_open(conn: Any) -> bool:
    return conn is not None and getattr(conn, "state", None) is State.OPEN


def to_wire_text(data: Any) -> Any:
    """Convert binary upstream frames to text for the console.

    Frames that are not valid UTF-8 are passed through as bytes.
    """

    if isinstance(data, (bytes, bytearray, memoryview)):
        raw = bytes(data)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("upstream frame is not UTF-8; forwarding %d bytes as binary", len(raw))
            return raw
    return data


def _frame_len(data: Any) -> int:
    try:
        return len(data)
    except TypeError:
        return 0


class ConnectionBridge:
    """Relay frames between a console connection and the reconciliation engine."""

    def __init__(
        self,
        downstream: Any,
        *,
        address: str,
        policy: Optional[PhantomPolicy] = None,
        keepalive_s: float = 15.0,
        identity: str = "",
        open_link: Optional[OpenLink] = None,
        timer_factory: Callable[[float, Callable[[], None]], KeepaliveTimer] = KeepaliveTimer,
        toggles: Optional[LoggingToggles] = None,
        queue_size: int = EVENT_QUEUE_SIZE,
    ) -> None:
        self.session = Session(downstream=downstream)
        self.address = address
        self.identity = identity
        self._policy = policy or PhantomPolicy()
        self._keepalive_s = float(keepalive_s)
        self._open_link = open_link or UpstreamLink.open
        self._timer_factory = timer_factory
        self._toggles = toggles or LoggingToggles()
        self._events: asyncio.Queue[SessionEvent] = asyncio.Queue(maxsize=queue_size)
        self._closing = False
        self._closed = False

    @property
    def closing(self) -> bool:
        return self._closing

    @property
    def closed(self) -> bool:
        return self._closed

    def _connection(self, side: Side) -> Any:
        return self.session.downstream if side is Side.DOWNSTREAM else self.session.upstream

    @property
    def pending_events(self) -> int:
        return self._events.qsize()

    def post(self, event: SessionEvent) -> bool:
        """Queue *event* without waiting; returns False if the queue is full."""

        try:
            self._events.put_nowait(event)
        except asyncio.QueueFull:
            logger.debug("[%s] event queue full, dropped %s", self.session.session_id, event.kind.value)
            return False
        return True

    # --- lifecycle ------------------------------------------------------------------
    async def run(self) -> None:
        """Set the session up, relay until either side ends, then tear down."""

        sid = self.session.session_id
        try:
            await self._setup()
        except PhantomConnection:
            logger.info("[%s] console disconnected before setup, skipping", sid)
            self._closing = True
            self._closed = True
            return
        except ConnectError as exc:
            logger.warning("[%s] reconciler unreachable (%s); closing console connection", sid, exc.reason)
            self._closing = True
            await self._close_side(Side.DOWNSTREAM)
            self._closed = True
            return

        self.post(SessionEvent(EventKind.CONNECTED))
        readers = [
            asyncio.create_task(self._read(Side.DOWNSTREAM)),
            asyncio.create_task(self._read(Side.UPSTREAM)),
        ]
        try:
            while not self._closed:
                event = await self._events.get()
                await self.dispatch(event)
        finally:
            for task in readers:
                task.cancel()
            await asyncio.gather(*readers, return_exceptions=True)
            if not self._closing:
                await self.teardown(Side.DOWNSTREAM, reason="bridge stopped")
                await self._close_side(Side.DOWNSTREAM)

    async def _setup(self) -> None:
        downstream = self.session.downstream
        delay = self._policy.delay_for(self.identity)
        if delay > 0:
            await asyncio.sleep(delay)
        if not is_open(downstream):
            raise PhantomConnection("downstream closed before setup")

        self.session.upstream = await self._open_link(self.address)
        if self._keepalive_s > 0:
            timer = self._timer_factory(self._keepalive_s, self._on_keepalive)
            self.session.keepalive = timer
            timer.start()

    def _on_keepalive(self) -> None:
        self.post(SessionEvent(EventKind.TIMER_FIRED))

    async def _read(self, side: Side) -> None:
        conn = self._connection(side)
        try:
            async for data in conn:
                await self._events.put(SessionEvent(EventKind.MESSAGE, side, data))
        except ConnectionClosedOK:
            pass
        except (ConnectionClosed, TransportError, OSError) as exc:
            await self._events.put(SessionEvent(EventKind.ERRORED, side, error=exc))
            return
        code = getattr(conn, "close_code", None)
        reason = getattr(conn, "close_reason", None) or ""
        await self._events.put(SessionEvent(EventKind.CLOSED, side, data=(code, reason)))

    # --- reducer --------------------------------------------------------------------
    async def dispatch(self, event: SessionEvent) -> None:
        """Apply one session event."""

        sid = self.session.session_id
        kind = event.kind
        if kind is EventKind.CONNECTED:
            logger.info("[%s] connected to reconciler, proxying messages", sid)
            return
        if kind is EventKind.MESSAGE:
            if self._closing or event.side is None:
                return
            await self._forward(event.side, event.data)
            return
        if kind is EventKind.TIMER_FIRED:
            if not self._closing:
                await self._ping_open_sides()
            return
        if kind is EventKind.CLOSED:
            if self._closing:
                return
            code, reason = event.data if isinstance(event.data, tuple) else (None, "")
            logger.info("[%s] %s disconnected: %s %s", sid, event.side.value, code, reason)
            await self.teardown(event.side, reason="closed")
            return
        if kind is EventKind.ERRORED:
            if self._closing:
                return
            logger.error("[%s] %s websocket error: %s", sid, event.side.value, event.error)
            await self.teardown(event.side, reason="error")
            return

    async def _forward(self, source: Side, data: Any) -> None:
        target_side = source.other
        target = self._connection(target_side)
        payload = to_wire_text(data) if source is Side.UPSTREAM else data
        if not is_open(target):
            return
        if self._toggles.log_frames:
            logger.debug(
                "[%s] %s -> %s: %d bytes",
                self.session.session_id,
                source.value,
                target_side.value,
                _frame_len(payload),
            )
        try:
            await target.send(payload)
        except (ConnectionClosed, TransportError, OSError) as exc:
            logger.error("[%s] %s send failed: %s", self.session.session_id, target_side.value, exc)
            await self.teardown(target_side, reason="send failed")

    async def _ping_open_sides(self) -> None:
        for side in (Side.UPSTREAM, Side.DOWNSTREAM):
            conn = self._connection(side)
            if not is_open(conn):
                continue
            if self._toggles.log_keepalive:
                logger.debug("[%s] keepalive ping -> %s", self.session.session_id, side.value)
            try:
                await conn.ping()
            except (ConnectionClosed, TransportError, OSError):
                # The reader for this side reports the closure.
                logger.debug("keepalive ping failed on %s", side.value, exc_info=True)

    async def teardown(self, origin: Side, *, reason: str) -> None:
        """Cancel the keepalive and close the side opposite *origin*, once."""

        if self._closing:
            return
        self._closing = True
        keepalive = self.session.keepalive
        if keepalive is not None:
            keepalive.cancel()
        if self._toggles.log_sessions:
            age = time.time() - self.session.created_at
            logger.info(
                "[%s] tearing down session after %.1fs (%s on %s)",
                self.session.session_id,
                age,
                reason,
                origin.value,
            )
        await self._close_side(origin.other)
        self._closed = True

    async def _close_side(self, side: Side) -> None:
        conn = self._connection(side)
        if conn is None:
            return
        try:
            await conn.close()
        except (ConnectionClosed, TransportError, OSError):
            logger.debug("%s close failed", side.value, exc_info=True)


__all__ = [
    "ConnectionBridge",
    "EventKind",
    "KeepaliveTimer",
    "Session",
    "SessionEvent",
    "Side",
    "is_open",
    "to_wire_text",
]
