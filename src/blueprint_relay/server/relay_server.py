"""
RelayServer - accept loop for console websockets.

Serves the relay path and a tiny HTTP surface (``/api/config``, ``/healthz``)
on one port, and runs a :class:`ConnectionBridge` per accepted console
connection. Sessions share nothing but the immutable :class:`RelayConfig`.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import sys
from http import HTTPStatus
from typing import Any, Optional
from urllib.parse import urlsplit

import websockets
from websockets.datastructures import Headers
from websockets.http11 import Request, Response

from blueprint_relay.errors import ConfigError
from blueprint_relay.server.bridge import ConnectionBridge
from blueprint_relay.server.config import RelayConfig, apply_overrides, load_relay_config
from blueprint_relay.server.config.logging_policy import configure_logging, load_debug_policy
from blueprint_relay.server.config_endpoint import build_browser_config
from blueprint_relay.server.upstream import UpstreamLink
from blueprint_relay.shared.phantom import PhantomPolicy
from blueprint_relay.utils.env import capture_env

logger = logging.getLogger(__name__)

CONFIG_PATH = "/api/config"
HEALTH_PATH = "/healthz"

_NO_CACHE_HEADERS = (
    ("Cache-Control", "no-store, no-cache, must-revalidate, proxy-revalidate"),
    ("Pragma", "no-cache"),
    ("Expires", "0"),
    ("Connection", "close"),
)


def _http_response(status: HTTPStatus, body: bytes, content_type: str) -> Response:
    headers = Headers(_NO_CACHE_HEADERS)
    headers["Content-Type"] = content_type
    headers["Content-Length"] = str(len(body))
    return Response(status.value, status.phrase, headers, body)


class RelayServer:
    """Accept console connections and bridge each one to the reconciler."""

    def __init__(self, cfg: RelayConfig, *, policy: Optional[PhantomPolicy] = None) -> None:
        self.cfg = cfg
        self.policy = policy or PhantomPolicy(delay_s=cfg.phantom_delay_s)
        self._toggles = cfg.debug_policy.logging
        self._open_link = functools.partial(UpstreamLink.open, open_timeout=cfg.open_timeout_s)
        self._server: Any = None

    # --- HTTP surface ---------------------------------------------------------------
    def process_request(self, connection: Any, request: Request) -> Optional[Response]:
        """Answer plain HTTP requests; return None to continue the websocket handshake."""

        path = urlsplit(request.path).path
        if path == self.cfg.ws_path:
            return None
        if path == CONFIG_PATH:
            payload = build_browser_config(self.cfg, request.headers.get("Host"))
            body = json.dumps(payload).encode("utf-8")
            return _http_response(HTTPStatus.OK, body, "application/json")
        if path == HEALTH_PATH:
            return _http_response(HTTPStatus.OK, b"ok\n", "text/plain; charset=utf-8")
        logger.debug("rejecting request for %s", path)
        return _http_response(HTTPStatus.NOT_FOUND, b"not found\n", "text/plain; charset=utf-8")

    # --- websocket sessions ---------------------------------------------------------
    def build_bridge(self, ws: Any) -> ConnectionBridge:
        request = getattr(ws, "request", None)
        headers = request.headers if request is not None else Headers()
        identity = headers.get("User-Agent", "unknown")
        origin = headers.get("Origin", "no-origin")
        logger.info("Console websocket connected from %s", getattr(ws, "remote_address", None))
        logger.info("  User-Agent: %s", "phantom-prone" if self.policy.matches(identity) else identity)
        logger.info("  Origin: %s", origin)
        return ConnectionBridge(
            ws,
            address=self.cfg.upstream_url,
            policy=self.policy,
            keepalive_s=self.cfg.keepalive_s,
            identity=identity,
            open_link=self._open_link,
            toggles=self._toggles,
        )

    async def handle_console(self, ws: Any) -> None:
        await self.build_bridge(ws).run()

    async def listen(self) -> Any:
        # Keepalive pings are the bridge's job; disable the library pinger.
        self._server = await websockets.serve(
            self.handle_console,
            self.cfg.host,
            self.cfg.port,
            process_request=self.process_request,
            ping_interval=None,
            compression=None,
            max_size=None,
        )
        logger.info(
            "Relay listening at http://%s:%d | websocket ws://%s:%d%s -> %s",
            self.cfg.host,
            self.cfg.port,
            self.cfg.host,
            self.cfg.port,
            self.cfg.ws_path,
            self.cfg.upstream_url,
        )
        logger.info("ColonyOS server: %s:%d", self.cfg.colonies.host, self.cfg.colonies.port)
        logger.info("Colony: %s", self.cfg.colony_name)
        return self._server

    async def start(self) -> None:
        server = await self.listen()
        try:
            await asyncio.Future()
        finally:
            server.close()
            await server.wait_closed()


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="blueprint-relay websocket bridge")
    parser.add_argument("--host", default=None, help="Bind address (default: BLUEPRINT_RELAY_HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Listen port (default: WEB_PORT or 3000)")
    parser.add_argument("--upstream-host", default=None, help="Reconciler host (default: RECONCILER_WS_HOST)")
    parser.add_argument("--upstream-port", type=int, default=None, help="Reconciler port (default: RECONCILER_WS_PORT)")
    parser.add_argument("--debug", action="store_true", help="Enable DEBUG for blueprint_relay loggers")
    args = parser.parse_args()

    env = capture_env()
    try:
        cfg = load_relay_config(env)
    except ConfigError as exc:
        configure_logging(load_debug_policy(env))
        logger.error("Error: %s", exc)
        sys.exit(1)
    cfg = apply_overrides(
        cfg,
        host=args.host,
        port=args.port,
        upstream_host=args.upstream_host,
        upstream_port=args.upstream_port,
    )
    configure_logging(cfg.debug_policy, debug=bool(args.debug))
    logger.debug("Resolved RelayConfig: host=%s port=%d upstream=%s", cfg.host, cfg.port, cfg.upstream_url)

    asyncio.run(RelayServer(cfg).start())


if __name__ == "__main__":
    main()
