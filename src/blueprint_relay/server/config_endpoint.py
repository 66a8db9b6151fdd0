"""Payload builder for ``GET /api/config``.

The console reaches the relay through whatever host and port it used to load
the page, so the websocket URL is derived from the request's ``Host`` header
rather than from the bind address.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlsplit

from blueprint_relay.server.config.models import RelayConfig


def split_host_header(value: Optional[str], default_port: int) -> Tuple[str, int]:
    """Return ``(host, port)`` from a ``Host`` header value."""

    if not value:
        return "localhost", int(default_port)
    parts = urlsplit("//" + value.strip())
    try:
        port = parts.port
    except ValueError:
        port = None
    host = parts.hostname or "localhost"
    return host, int(port) if port is not None else int(default_port)


def _format_host(host: str) -> str:
    return f"[{host}]" if ":" in host else host


def build_browser_config(cfg: RelayConfig, host_header: Optional[str]) -> Dict[str, Any]:
    browser_host, browser_port = split_host_header(host_header, cfg.port)
    colonies_host = browser_host if cfg.colonies.host == "localhost" else cfg.colonies.host
    payload: Dict[str, Any] = {
        "colonies": {
            "host": colonies_host,
            "port": int(cfg.colonies.port),
            "tls": bool(cfg.colonies.tls),
        },
        "colonyName": cfg.colony_name,
        "colonyPrvKey": cfg.colony_prv_key,
        "reconcilerWsUrl": f"ws://{_format_host(browser_host)}:{browser_port}{cfg.ws_path}",
    }
    if cfg.executor_prv_key:
        payload["executorPrvKey"] = cfg.executor_prv_key
    return payload
