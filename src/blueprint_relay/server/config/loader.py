"""Resolve :class:`RelayConfig` from an environment mapping."""

from __future__ import annotations

from dataclasses import replace
from typing import Mapping, Optional

from blueprint_relay.errors import ConfigError
from blueprint_relay.server.config.logging_policy import load_debug_policy
from blueprint_relay.server.config.models import ColoniesEndpoint, RelayConfig
from blueprint_relay.utils.env import env_bool, env_float, env_int, env_str


def load_relay_config(env: Mapping[str, str]) -> RelayConfig:
    """Build the relay configuration; raises ConfigError without a colony key."""

    colony_key = env_str("COLONIES_COLONY_PRVKEY", None, env)
    if not colony_key:
        raise ConfigError("COLONIES_COLONY_PRVKEY environment variable is required")

    ws_path = env_str("BLUEPRINT_RELAY_WS_PATH", "/ws", env) or "/ws"
    if not ws_path.startswith("/"):
        ws_path = "/" + ws_path

    colonies = ColoniesEndpoint(
        host=env_str("COLONIES_SERVER_HOST", "localhost", env) or "localhost",
        port=env_int("COLONIES_SERVER_PORT", 50080, env),
        tls=env_bool("COLONIES_TLS", False, env),
    )
    return RelayConfig(
        colony_prv_key=colony_key,
        host=env_str("BLUEPRINT_RELAY_HOST", "0.0.0.0", env) or "0.0.0.0",
        port=env_int("WEB_PORT", 3000, env),
        ws_path=ws_path,
        upstream_host=env_str("RECONCILER_WS_HOST", "localhost", env) or "localhost",
        upstream_port=env_int("RECONCILER_WS_PORT", 46701, env),
        keepalive_s=max(0.0, env_float("BLUEPRINT_RELAY_KEEPALIVE_S", 15.0, env)),
        phantom_delay_s=max(0, env_int("BLUEPRINT_RELAY_PHANTOM_DELAY_MS", 200, env)) / 1000.0,
        open_timeout_s=env_float("BLUEPRINT_RELAY_OPEN_TIMEOUT_S", 10.0, env),
        colonies=colonies,
        colony_name=env_str("COLONIES_COLONY_NAME", "dev", env) or "dev",
        executor_prv_key=env_str("COLONIES_PRVKEY", None, env),
        debug_policy=load_debug_policy(env),
    )


def apply_overrides(
    cfg: RelayConfig,
    *,
    host: Optional[str] = None,
    port: Optional[int] = None,
    upstream_host: Optional[str] = None,
    upstream_port: Optional[int] = None,
) -> RelayConfig:
    """Return *cfg* with command-line overrides applied."""

    updates: dict[str, object] = {}
    if host:
        updates["host"] = host
    if port is not None:
        updates["port"] = int(port)
    if upstream_host:
        updates["upstream_host"] = upstream_host
    if upstream_port is not None:
        updates["upstream_port"] = int(upstream_port)
    return replace(cfg, **updates) if updates else cfg
