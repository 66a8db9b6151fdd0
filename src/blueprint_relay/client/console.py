"""
ConsoleSession - headless operator console.

Wires the startup config and blueprint snapshot, the reconnection controller
and the reconciliation model together the way the browser page does, and
renders activity entries and device views to the log.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Any, Callable, List, Optional

from blueprint_relay.client.config import BrowserConfig, ConsoleConfig, fetch_browser_config
from blueprint_relay.client.reconnect import (
    AsyncioScheduler,
    OpenTransport,
    ReconnectionController,
    Scheduler,
)
from blueprint_relay.client.snapshot import DEVICE_KIND, BlueprintSource, JsonFileBlueprintSource, devices_from_blueprints
from blueprint_relay.client.state_model import (
    ActivityEntry,
    DeviceView,
    ReconciliationStateModel,
    Severity,
)
from blueprint_relay.client.transport import open_websocket
from blueprint_relay.errors import ConfigError, MalformedMessage
from blueprint_relay.protocol import decode_frame, parse_relayed_message
from blueprint_relay.server.config.logging_policy import configure_logging, load_debug_policy
from blueprint_relay.utils.env import capture_env

logger = logging.getLogger(__name__)


class ConsoleSession:
    def __init__(
        self,
        browser_cfg: BrowserConfig,
        console_cfg: Optional[ConsoleConfig] = None,
        *,
        source: Optional[BlueprintSource] = None,
        open_transport: OpenTransport = open_websocket,
        scheduler: Optional[Scheduler] = None,
        model: Optional[ReconciliationStateModel] = None,
    ) -> None:
        self.browser_cfg = browser_cfg
        self.console_cfg = console_cfg or ConsoleConfig()
        self.source = source
        self.model = model or ReconciliationStateModel(self.console_cfg.history_capacity)
        self.connected = False
        self.reloads = 0
        self._connection_listeners: List[Callable[[bool], None]] = []
        self.controller = ReconnectionController(
            browser_cfg.reconciler_ws_url,
            open_transport=open_transport,
            scheduler=scheduler or AsyncioScheduler(),
            identity=self.console_cfg.identity,
            reconnect_delay_s=self.console_cfg.reconnect_delay_s,
            connect_timeout_s=self.console_cfg.connect_timeout_s,
            on_open=self._on_open,
            on_message=self.handle_frame,
            on_close=self._on_close,
            on_reload=self.reload,
        )

    def add_connection_listener(self, listener: Callable[[bool], None]) -> None:
        self._connection_listeners.append(listener)

    # --- lifecycle ------------------------------------------------------------------
    def bootstrap(self) -> bool:
        """Apply the blueprint snapshot once, before any stream message."""

        if self.source is None:
            return False
        try:
            blueprints = self.source.get_blueprints(self.browser_cfg.colony_name, DEVICE_KIND) or []
            devices = devices_from_blueprints(blueprints)
        except (OSError, ValueError, MalformedMessage) as exc:
            logger.error("Failed to load device snapshot: %s", exc)
            return False
        logger.info("Loaded %d device blueprint(s)", len(devices))
        return self.model.apply_snapshot(devices)

    def start(self) -> bool:
        self.bootstrap()
        return self.controller.connect()

    def reload(self) -> None:
        """Drop in-memory state and start over, like a page reload."""

        logger.info("Reloading console")
        self.reloads += 1
        self.controller.stop()
        self._set_connected(False)
        self.model.reset()
        self.bootstrap()
        self.controller.reset()

    def resume(self) -> bool:
        return self.controller.handle_resume()

    def stop(self) -> None:
        self.controller.stop()
        self._set_connected(False)

    # --- controller callbacks -------------------------------------------------------
    def _on_open(self) -> None:
        self._set_connected(True)
        self.model.log.append("Connected to reconciler", Severity.SUCCESS)

    def _on_close(self) -> None:
        self._set_connected(False)
        self.model.log.append("Disconnected from reconciler", Severity.ERROR)

    def handle_frame(self, data: Any) -> None:
        try:
            message = parse_relayed_message(decode_frame(data))
        except MalformedMessage as exc:
            logger.error("Error processing relayed message: %s", exc)
            self.model.log.append(f"Error: {exc}", Severity.ERROR)
            return
        if message is None:
            logger.info("Unknown message type ignored")
            return
        try:
            self.model.apply(message)
        except Exception as exc:
            logger.exception("Relayed message dispatch failed")
            self.model.log.append(f"Error: {exc}", Severity.ERROR)

    def _set_connected(self, connected: bool) -> None:
        if self.connected == connected:
            return
        self.connected = connected
        for listener in list(self._connection_listeners):
            listener(connected)


def _render_activity(entry: ActivityEntry) -> None:
    logger.info("%s [%s] %s", entry.time_label, entry.severity.value, entry.message)


def _render_device(view: DeviceView) -> None:
    logger.info(
        "%s desired=v%s actual=%s sync=%s",
        view.device_id,
        view.state.desired_version,
        f"v{view.state.actual_version}" if view.state.actual_version else "unknown",
        view.sync_status.value,
    )


async def _run_console(args: Any, console_cfg: ConsoleConfig) -> int:
    try:
        browser_cfg = await asyncio.to_thread(fetch_browser_config, args.config_url)
    except ConfigError as exc:
        logger.error("Failed to load config: %s", exc)
        return 1
    source = JsonFileBlueprintSource(args.snapshot) if args.snapshot else None
    session = ConsoleSession(browser_cfg, console_cfg, source=source)
    session.model.log.add_listener(_render_activity)
    session.model.add_listener(_render_device)
    session.model.add_removal_listener(lambda device_id: logger.info("%s removed", device_id))
    session.add_connection_listener(lambda up: logger.info("Connection: %s", "Connected" if up else "Disconnected"))

    loop = asyncio.get_running_loop()
    sigcont = getattr(signal, "SIGCONT", None)
    if sigcont is not None:
        try:
            loop.add_signal_handler(sigcont, session.resume)
        except (NotImplementedError, RuntimeError):
            logger.debug("SIGCONT handler unavailable", exc_info=True)

    session.start()
    try:
        await asyncio.Future()
    finally:
        session.stop()
    return 0


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="blueprint-relay headless console")
    parser.add_argument("--config-url", default="http://localhost:3000/api/config", help="Relay config endpoint")
    parser.add_argument("--identity", default=None, help="Client identity string (User-Agent)")
    parser.add_argument("--snapshot", default=None, help="JSON file with device blueprints")
    parser.add_argument("--debug", action="store_true", help="Enable DEBUG for blueprint_relay loggers")
    args = parser.parse_args()

    env = capture_env()
    configure_logging(load_debug_policy(env), debug=bool(args.debug))
    console_cfg = ConsoleConfig.from_env(env, identity=args.identity)
    try:
        code = asyncio.run(_run_console(args, console_cfg))
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
