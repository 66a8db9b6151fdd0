"""Reconnection controller for the console's single relay connection.

States run ``IDLE -> CONNECTING -> OPEN -> CLOSED -> CONNECTING ...``. A closed
connection is retried after a fixed delay forever; a connect request while
already connecting or open is refused so overlapping retry triggers never
create a second transport. Transport events carry their handle, and events
from a handle the controller has already discarded are ignored.
"""

from __future__ import annotations

import asyncio
import enum
import functools
import logging
from typing import Any, Callable, Optional, Protocol

from blueprint_relay.shared.phantom import IdentityPredicate, is_phantom_prone

logger = logging.getLogger(__name__)


class ConnectionState(str, enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class TransportHandle(Protocol):
    def close(self) -> None: ...


OpenTransport = Callable[[str, "ReconnectionController"], TransportHandle]


class AsyncioScheduler:
    """Schedule timers on an asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(max(0.0, float(delay)), callback)


class ReconnectionController:
    def __init__(
        self,
        url: Optional[str],
        *,
        open_transport: OpenTransport,
        scheduler: Scheduler,
        identity: str = "",
        reconnect_delay_s: float = 2.0,
        connect_timeout_s: float = 1.5,
        phantom_predicate: IdentityPredicate = is_phantom_prone,
        on_open: Optional[Callable[[], None]] = None,
        on_message: Optional[Callable[[Any], None]] = None,
        on_close: Optional[Callable[[], None]] = None,
        on_reload: Optional[Callable[[], None]] = None,
    ) -> None:
        self.url = url
        self.identity = identity
        self.reconnect_delay_s = float(reconnect_delay_s)
        self.connect_timeout_s = float(connect_timeout_s)
        self.on_open = on_open
        self.on_message = on_message
        self.on_close = on_close
        self.on_reload = on_reload
        self._open_transport = open_transport
        self._scheduler = scheduler
        self._phantom_predicate = phantom_predicate
        self._state = ConnectionState.IDLE
        self._handle: Optional[TransportHandle] = None
        self._watchdog: Optional[TimerHandle] = None
        self._retry: Optional[TimerHandle] = None
        self._stopped = False
        self.attempts = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def handle(self) -> Optional[TransportHandle]:
        return self._handle

    @property
    def retry_pending(self) -> bool:
        return self._retry is not None

    # --- requests -------------------------------------------------------------------
    def connect(self) -> bool:
        """Start a connection attempt unless one is already in flight or open."""

        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            logger.debug("connect ignored; state=%s", self._state.value)
            return False
        if not self.url:
            logger.error("No reconcilerWsUrl in config")
            return False
        self._stopped = False
        self._cancel_retry()
        self._state = ConnectionState.CONNECTING
        self.attempts += 1
        logger.info("Connecting to relay: %s (attempt %d)", self.url, self.attempts)
        try:
            handle = self._open_transport(self.url, self)
        except (OSError, ValueError, RuntimeError) as exc:
            logger.error("Failed to create websocket: %s", exc)
            self._enter_closed()
            return False
        self._handle = handle
        self._watchdog = self._scheduler.call_later(
            self.connect_timeout_s,
            functools.partial(self._on_watchdog, handle),
        )
        return True

    def handle_resume(self) -> bool:
        """Force a fresh connection after the host resumes from suspension."""

        if self._handle is not None:
            logger.info("Resumed from suspension, reconnecting websocket")
        return self.reset()

    def reset(self) -> bool:
        self._discard_handle()
        self._cancel_watchdog()
        self._cancel_retry()
        self._state = ConnectionState.IDLE
        return self.connect()

    def stop(self) -> None:
        self._stopped = True
        self._discard_handle()
        self._cancel_watchdog()
        self._cancel_retry()
        self._state = ConnectionState.IDLE

    # --- transport events -----------------------------------------------------------
    def transport_opened(self, handle: TransportHandle) -> None:
        if handle is not self._handle:
            return
        self._cancel_watchdog()
        self._state = ConnectionState.OPEN
        logger.info("Websocket connected")
        if self.on_open is not None:
            self.on_open()

    def transport_message(self, handle: TransportHandle, data: Any) -> None:
        if handle is not self._handle or self._state is not ConnectionState.OPEN:
            return
        if self.on_message is not None:
            self.on_message(data)

    def transport_closed(self, handle: TransportHandle, code: Optional[int] = None, reason: str = "") -> None:
        if handle is not self._handle:
            return
        logger.info("Websocket closed: %s %s", code, reason)
        self._handle = None
        self._enter_closed()

    def transport_errored(self, handle: TransportHandle, error: Optional[BaseException] = None) -> None:
        if handle is not self._handle:
            return
        logger.error("Websocket error: %s", error)
        self._handle = None
        self._enter_closed()

    # --- internals ------------------------------------------------------------------
    def _on_watchdog(self, handle: TransportHandle) -> None:
        self._watchdog = None
        if handle is not self._handle or self._state is not ConnectionState.CONNECTING:
            return
        logger.info("Websocket connection timeout")
        self._discard_handle()
        if self.on_reload is not None and self._phantom_predicate(self.identity or ""):
            logger.info("Phantom-prone client detected, reloading console")
            self._state = ConnectionState.IDLE
            self.on_reload()
            return
        self._enter_closed()

    def _enter_closed(self) -> None:
        if self._state is ConnectionState.CLOSED:
            return
        self._cancel_watchdog()
        self._state = ConnectionState.CLOSED
        if not self._stopped:
            self._retry = self._scheduler.call_later(self.reconnect_delay_s, self._on_retry)
        if self.on_close is not None:
            self.on_close()

    def _on_retry(self) -> None:
        self._retry = None
        if self._stopped:
            return
        self.connect()

    def _discard_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            handle.close()
        except (OSError, RuntimeError):
            logger.debug("transport close failed", exc_info=True)

    def _cancel_watchdog(self) -> None:
        watchdog, self._watchdog = self._watchdog, None
        if watchdog is not None:
            watchdog.cancel()

    def _cancel_retry(self) -> None:
        retry, self._retry = self._retry, None
        if retry is not None:
            retry.cancel()


__all__ = [
    "AsyncioScheduler",
    "ConnectionState",
    "OpenTransport",
    "ReconnectionController",
    "Scheduler",
    "TimerHandle",
    "TransportHandle",
]
